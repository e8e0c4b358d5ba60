"""Access log extraction and parsing.

Sources return raw lines; ``parse_access_entry`` turns one Caddy JSON access
log line into a ``RawLogRecord``. Time bounds passed to a source are a hint:
the coordinator re-checks every record's timestamp.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from datetime import datetime, timezone

from crawlscope.domain.records import RawLogRecord, ensure_utc
from crawlscope.exceptions import LogSourceError, MalformedRecordError

logger = logging.getLogger(__name__)

ACCESS_LOGGER_PREFIX = 'http.log.access'

# journalctl exits 1 when nothing matches the time window.
JOURNAL_NO_ENTRIES = 1


def _as_header_map(raw) -> dict[str, list[str]]:
    if not isinstance(raw, dict):
        return {}
    headers: dict[str, list[str]] = {}
    for name, value in raw.items():
        if value is None:
            continue
        if isinstance(value, list):
            headers[str(name)] = [str(v) for v in value if v is not None]
        else:
            headers[str(name)] = [str(value)]
    return headers


def _as_int(value, default=0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_access_entry(line: str) -> RawLogRecord | None:
    """Parse one log line.

    Returns None for lines that are not access log entries (other Caddy
    loggers, blank lines). Raises MalformedRecordError for access entries that
    cannot be used.
    """
    text = (line or '').strip()
    if not text or ACCESS_LOGGER_PREFIX not in text:
        return None
    try:
        entry = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedRecordError(f'invalid JSON: {exc.msg}') from exc
    if not isinstance(entry, dict):
        raise MalformedRecordError('log entry is not an object')

    logger_name = entry.get('logger')
    if logger_name is not None and not str(logger_name).startswith(ACCESS_LOGGER_PREFIX):
        return None

    request = entry.get('request')
    if not isinstance(request, dict):
        raise MalformedRecordError('access entry without request')

    try:
        timestamp = datetime.fromtimestamp(float(entry['ts']), tz=timezone.utc)
    except (KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
        raise MalformedRecordError('access entry without a usable ts') from exc

    headers = _as_header_map(request.get('headers'))
    cf_ray = headers.get('Cf-Ray') or []
    duration = entry.get('duration')
    return RawLogRecord(
        timestamp=timestamp,
        method=str(request.get('method') or 'GET'),
        uri=str(request.get('uri') or '/'),
        host=str(request.get('host') or 'unknown'),
        status=_as_int(entry.get('status')),
        size=_as_int(entry.get('size')),
        remote_ip=request.get('client_ip') or request.get('remote_ip'),
        headers=headers,
        duration=float(duration) if isinstance(duration, (int, float)) else None,
        record_id=cf_ray[0] if cf_ray else None,
    )


def _journal_time(value: datetime) -> str:
    return ensure_utc(value).strftime('%Y-%m-%d %H:%M:%S UTC')


class JournalLogSource:
    """Reads a systemd unit's output through ``journalctl``."""

    def __init__(self, unit: str = 'caddy', timeout: float = 120.0, runner=subprocess.run):
        self.unit = unit
        self.timeout = timeout
        self._runner = runner

    def _command(self, since: datetime, until: datetime | None = None) -> list[str]:
        cmd = ['journalctl', '-u', self.unit, '--since', _journal_time(since)]
        if until is not None:
            cmd += ['--until', _journal_time(until)]
        cmd += ['--output=cat', '--no-pager']
        return cmd

    def _run(self, cmd: list[str]) -> list[str]:
        try:
            result = self._runner(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise LogSourceError(f'journalctl timed out after {self.timeout}s') from exc
        except OSError as exc:
            raise LogSourceError(f'journalctl could not be started: {exc}') from exc

        if result.returncode == JOURNAL_NO_ENTRIES and not (result.stdout or '').strip():
            return []
        if result.returncode != 0:
            raise LogSourceError(
                f'journalctl exited with {result.returncode}: {(result.stderr or "").strip()[:200]}'
            )
        return [line for line in (result.stdout or '').splitlines() if line.strip()]

    def fetch_since(self, since: datetime) -> list[str]:
        return self._run(self._command(since))

    def fetch_between(self, start: datetime, end: datetime) -> list[str]:
        return self._run(self._command(start, end))

    def __repr__(self):
        return f'JournalLogSource(unit={self.unit!r})'


class FileLogSource:
    """JSON-lines file written by Caddy's file log writer (or a test fixture)."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> list[str]:
        if not self.path or not os.path.exists(self.path):
            raise LogSourceError(f'log file not found: {self.path}')
        try:
            with open(self.path, encoding='utf-8', errors='replace') as fh:
                return [line for line in fh if line.strip()]
        except OSError as exc:
            raise LogSourceError(f'log file could not be read: {exc}') from exc

    def fetch_since(self, since: datetime) -> list[str]:
        return self._read()

    def fetch_between(self, start: datetime, end: datetime) -> list[str]:
        return self._read()

    def __repr__(self):
        return f'FileLogSource(path={self.path!r})'
