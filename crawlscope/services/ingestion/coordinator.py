"""Incremental ingestion run.

One call to ``IngestionCoordinator.run()`` walks

    IDLE -> RESOLVE_CURSOR -> EXTRACT -> FILTER -> ENRICH_CLASSIFY
         -> PERSIST -> ADVANCE_CURSOR -> IDLE

and ends in FAILED on the first error. The cursor row is appended only after
every batch has been committed, so a failed or interrupted run is retried
from the previous cursor on the next invocation. A crash between the last
batch and the cursor write re-inserts that window next time; the store does
not deduplicate.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from crawlscope.domain.records import CursorState, NormalizedEvent, RawLogRecord
from crawlscope.exceptions import ConcurrentRunError, CrawlscopeError, MalformedRecordError
from crawlscope.services.ingestion.log_source import parse_access_entry
from crawlscope.services.ingestion.sessions import SessionTracker

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = 'idle'
    RESOLVE_CURSOR = 'resolve_cursor'
    EXTRACT = 'extract'
    FILTER = 'filter'
    ENRICH_CLASSIFY = 'enrich_classify'
    PERSIST = 'persist'
    ADVANCE_CURSOR = 'advance_cursor'
    FAILED = 'failed'


@dataclass
class IngestionReport:
    state: RunState = RunState.IDLE
    failed_in: RunState | None = None
    window_start: datetime | None = None
    extracted: int = 0
    already_processed: int = 0
    malformed: int = 0
    filtered: int = 0
    filter_reasons: Counter = field(default_factory=Counter)
    persisted: int = 0
    batches: int = 0
    categories: Counter = field(default_factory=Counter)
    cursor: CursorState | None = None
    duration_ms: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.IDLE and self.error is None

    def as_dict(self) -> dict:
        return {
            'state': self.state.value,
            'failed_in': self.failed_in.value if self.failed_in else None,
            'window_start': self.window_start.isoformat() if self.window_start else None,
            'extracted': self.extracted,
            'already_processed': self.already_processed,
            'malformed': self.malformed,
            'filtered': self.filtered,
            'filter_reasons': dict(self.filter_reasons),
            'persisted': self.persisted,
            'batches': self.batches,
            'categories': dict(self.categories),
            'cursor': self.cursor.timestamp.isoformat() if self.cursor else None,
            'duration_ms': self.duration_ms,
            'error': self.error,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def chunked(items: list, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def parse_records(lines: Iterable[str], report: IngestionReport) -> list[RawLogRecord]:
    """Parse raw lines, counting malformed access entries."""
    records = []
    for line in lines:
        try:
            record = parse_access_entry(line)
        except MalformedRecordError as exc:
            report.malformed += 1
            logger.debug('Skipping malformed log line: %s', exc)
            continue
        if record is not None:
            records.append(record)
    return records


def enrich_events(enricher, events: list[NormalizedEvent], session_window_seconds: float = 0, workers: int = 1):
    """Enrich and classify ``events`` in place, returning them in input order."""
    tracker = SessionTracker(session_window_seconds)
    sessions = [tracker.observe(e.client_address, e.timestamp) for e in events]
    if workers <= 1 or len(events) < 2:
        return [enricher.enrich(event, session) for event, session in zip(events, sessions)]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(enricher.enrich, events, sessions))


class IngestionCoordinator:
    def __init__(
        self,
        store,
        log_source,
        enricher,
        record_filter,
        lock=None,
        *,
        batch_size: int = 100,
        initial_lookback: timedelta = timedelta(hours=1),
        session_window_seconds: float = 0,
        workers: int = 1,
        clock: Callable[[], datetime] = _utcnow,
        log=None,
    ):
        if batch_size < 1:
            raise ValueError('batch_size must be positive')
        self.store = store
        self.log_source = log_source
        self.enricher = enricher
        self.record_filter = record_filter
        self.lock = lock
        self.batch_size = batch_size
        self.initial_lookback = initial_lookback
        self.session_window_seconds = session_window_seconds
        self.workers = max(1, int(workers))
        self.clock = clock
        self.logger = log or logger

    def run(self) -> IngestionReport:
        report = IngestionReport()
        started = time.monotonic()
        try:
            if self.lock is not None:
                with self.lock:
                    self._run(report, started)
            else:
                self._run(report, started)
        except (CrawlscopeError, SQLAlchemyError) as exc:
            report.failed_in = report.state
            report.state = RunState.FAILED
            report.error = str(exc)
            self.logger.error('Ingestion run failed during %s: %s', report.failed_in.value, exc)
        except Exception as exc:
            report.failed_in = report.state
            report.state = RunState.FAILED
            report.error = str(exc)
            self.logger.error(
                'Ingestion run failed during %s: %s', report.failed_in.value, exc, exc_info=True,
            )
        report.duration_ms = int((time.monotonic() - started) * 1000)
        return report

    def _run(self, report: IngestionReport, started: float) -> None:
        report.state = RunState.RESOLVE_CURSOR
        cursor = self.store.latest_cursor()
        since = cursor.timestamp if cursor else self.clock() - self.initial_lookback
        report.window_start = since
        self.logger.info('Ingestion run starting after %s (%s)', since.isoformat(), 'cursor' if cursor else 'first run')

        report.state = RunState.EXTRACT
        lines = self.log_source.fetch_since(since)
        records = []
        for record in parse_records(lines, report):
            # Only records strictly newer than the resume point are new.
            if record.timestamp <= since:
                report.already_processed += 1
                continue
            records.append(record)
        report.extracted = len(records)

        report.state = RunState.FILTER
        events = self._filter(records, report)
        if not events:
            report.state = RunState.IDLE
            self.logger.info(
                'No new events to store (extracted=%d filtered=%d malformed=%d)',
                report.extracted, report.filtered, report.malformed,
            )
            return

        report.state = RunState.ENRICH_CLASSIFY
        events.sort(key=lambda e: e.timestamp)
        events = enrich_events(self.enricher, events, self.session_window_seconds, self.workers)
        report.categories.update(e.category.value for e in events)

        report.state = RunState.PERSIST
        for batch in chunked(events, self.batch_size):
            report.persisted += self.store.insert_batch(batch)
            report.batches += 1

        report.state = RunState.ADVANCE_CURSOR
        if self.store.latest_cursor() != cursor:
            raise ConcurrentRunError('a newer cursor was written while this run was in progress')
        newest = events[-1]
        duration_ms = int((time.monotonic() - started) * 1000)
        self.store.append_cursor(newest.timestamp, newest.record_id, report.persisted, duration_ms)
        report.cursor = CursorState(
            timestamp=newest.timestamp,
            record_id=newest.record_id,
            records_processed=report.persisted,
            duration_ms=duration_ms,
        )
        report.state = RunState.IDLE
        self.logger.info(
            'Ingestion run stored %d events in %d batches, cursor at %s',
            report.persisted, report.batches, newest.timestamp.isoformat(),
        )

    def _filter(self, records: list[RawLogRecord], report: IngestionReport) -> list[NormalizedEvent]:
        events = []
        for record in records:
            try:
                event = NormalizedEvent.from_record(record)
            except MalformedRecordError as exc:
                report.malformed += 1
                self.logger.debug('Skipping record: %s', exc)
                continue
            reason = self.record_filter.reason_for(event)
            if reason is not None:
                report.filtered += 1
                report.filter_reasons[reason] += 1
                continue
            events.append(event)
        return events
