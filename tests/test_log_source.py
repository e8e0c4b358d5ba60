import json
import subprocess
from types import SimpleNamespace

import pytest

from crawlscope.exceptions import LogSourceError, MalformedRecordError
from crawlscope.services.ingestion.log_source import FileLogSource, JournalLogSource, parse_access_entry

from factories import RESIDENTIAL_IP, access_line, utc


class TestParseAccessEntry:
    def test_full_entry(self):
        line = access_line(utc(2026, 3, 1, 12, 0, 5), uri='/articles/42?ref=home', host='Example.org',
                           cf_ray='8a1b2c3d4e5f-LHR')
        record = parse_access_entry(line)

        assert record.timestamp == utc(2026, 3, 1, 12, 0, 5)
        assert record.method == 'GET'
        assert record.uri == '/articles/42?ref=home'
        assert record.host == 'Example.org'
        assert record.status == 200
        assert record.size == 5120
        assert record.duration == pytest.approx(0.0021)
        assert record.record_id == '8a1b2c3d4e5f-LHR'
        assert record.client_address == RESIDENTIAL_IP

    def test_other_loggers_are_skipped(self):
        assert parse_access_entry(json.dumps({'logger': 'tls.obtain', 'msg': 'http.log.access'})) is None
        assert parse_access_entry('{"level":"info","logger":"admin","msg":"started"}') is None
        assert parse_access_entry('') is None
        assert parse_access_entry('   \n') is None

    def test_invalid_json(self):
        with pytest.raises(MalformedRecordError):
            parse_access_entry('{"logger": "http.log.access.log0", ')

    def test_entry_without_request(self):
        with pytest.raises(MalformedRecordError):
            parse_access_entry(json.dumps({'logger': 'http.log.access.log0', 'ts': 1772366400.0}))

    def test_entry_without_timestamp(self):
        line = json.dumps({'logger': 'http.log.access.log0', 'request': {'uri': '/'}})
        with pytest.raises(MalformedRecordError):
            parse_access_entry(line)

    def test_header_values_are_lists(self):
        line = json.dumps({
            'logger': 'http.log.access.log0',
            'ts': 1772366400.5,
            'request': {'uri': '/', 'host': 'example.org', 'remote_ip': '81.2.69.142',
                        'headers': {'User-Agent': 'curl/8.4.0', 'Accept': ['*/*', None], 'X-Empty': None}},
            'status': '404',
        })
        record = parse_access_entry(line)

        assert record.headers == {'User-Agent': ['curl/8.4.0'], 'Accept': ['*/*']}
        assert record.status == 404
        assert record.size == 0
        assert record.duration is None
        assert record.record_id is None


def completed(returncode=0, stdout='', stderr=''):
    return SimpleNamespace(returncode=returncode, stdout=stdout, stderr=stderr)


class FakeRunner:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        if self.error:
            raise self.error
        return self.result


class TestJournalLogSource:
    def test_command_line(self):
        runner = FakeRunner(completed(stdout='a\n\nb\n'))
        source = JournalLogSource(unit='caddy', runner=runner)

        assert source.fetch_since(utc(2026, 3, 1, 12, 0, 0)) == ['a', 'b']
        assert runner.commands[0] == [
            'journalctl', '-u', 'caddy', '--since', '2026-03-01 12:00:00 UTC', '--output=cat', '--no-pager',
        ]

    def test_bounded_window(self):
        runner = FakeRunner(completed(stdout=''))
        JournalLogSource(runner=runner).fetch_between(utc(2026, 3, 1), utc(2026, 3, 2))

        command = runner.commands[0]
        assert command[command.index('--until') + 1] == '2026-03-02 00:00:00 UTC'

    def test_no_entries_exit_code(self):
        source = JournalLogSource(runner=FakeRunner(completed(returncode=1, stdout='')))
        assert source.fetch_since(utc(2026, 3, 1)) == []

    def test_failure_exit_code(self):
        source = JournalLogSource(runner=FakeRunner(completed(returncode=2, stderr='Permission denied')))
        with pytest.raises(LogSourceError, match='Permission denied'):
            source.fetch_since(utc(2026, 3, 1))

    def test_timeout(self):
        runner = FakeRunner(error=subprocess.TimeoutExpired(['journalctl'], 120))
        with pytest.raises(LogSourceError, match='timed out'):
            JournalLogSource(runner=runner).fetch_since(utc(2026, 3, 1))

    def test_missing_binary(self):
        runner = FakeRunner(error=FileNotFoundError('journalctl'))
        with pytest.raises(LogSourceError):
            JournalLogSource(runner=runner).fetch_since(utc(2026, 3, 1))


class TestFileLogSource:
    def test_reads_non_blank_lines(self, tmp_path):
        path = tmp_path / 'access.log'
        path.write_text('one\n\ntwo\n', encoding='utf-8')

        lines = FileLogSource(str(path)).fetch_since(utc(2026, 3, 1))
        assert [line.strip() for line in lines] == ['one', 'two']

    def test_missing_file(self, tmp_path):
        with pytest.raises(LogSourceError):
            FileLogSource(str(tmp_path / 'nope.log')).fetch_between(utc(2026, 3, 1), utc(2026, 3, 2))
