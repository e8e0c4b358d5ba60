"""Persistence for classified events and ingestion cursors.

All writes go through engine-level transactions: one ``insert_batch`` call
is one transaction, so a failing batch leaves nothing behind.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Iterator

from sqlalchemy import bindparam, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from crawlscope.domain.enums import Category
from crawlscope.domain.records import ClassificationResult, CursorState, NormalizedEvent, ensure_utc
from crawlscope.exceptions import PersistenceError
from crawlscope.extensions import db
from crawlscope.models import IngestionCursor, TrafficEvent
from crawlscope.utils.db_resilience import with_db_resilience

logger = logging.getLogger(__name__)


def _clip(value, limit):
    if value is None:
        return None
    return str(value)[:limit]


def _event_row(event: NormalizedEvent) -> dict[str, Any]:
    if not event.is_classified:
        raise ValueError(f'refusing to store unclassified event from {event.client_address}')
    return {
        'timestamp': event.timestamp,
        'duration': event.duration,
        'client_ip': event.client_address,
        'subnet': event.subnet_key,
        'cf_ray': _clip(event.record_id, 64),
        'site': _clip(event.site, 255),
        'method': _clip(event.method, 12),
        'path': event.path,
        'query_string': event.query_string,
        'status': event.status,
        'response_size': event.response_size,
        'user_agent': event.user_agent,
        'referer': event.referer,
        'accept_language': _clip(event.accept_language, 255),
        'country': _clip(event.country, 8),
        'city': _clip(event.city, 120),
        'latitude': event.latitude,
        'longitude': event.longitude,
        'asn': event.asn,
        'asn_org': _clip(event.asn_org, 255),
        'datacenter_provider': _clip(event.datacenter_provider, 64),
        'has_sec_fetch_headers': event.has_sec_fetch_headers,
        'has_client_hints': event.has_client_hints,
        'is_mobile': event.is_mobile,
        'bot_from_email': _clip(event.bot_from_email, 255),
        'openai_host_hash': _clip(event.openai_host_hash, 255),
        'has_cf_worker': event.has_proxy_worker_header,
        'cf_worker_domain': _clip(event.proxy_worker_domain, 255),
        'is_exploit_attempt': event.is_exploit_attempt,
        'is_bot': bool(event.is_bot),
        'category': event.category.value,
        'identity_name': _clip(event.identity_name, 120),
        'detection_tier': event.detection_tier,
        'reason': event.reason,
        'headers_json': event.headers,
    }


def _row_event(row) -> NormalizedEvent:
    """Rebuild an unclassified event from a stored row (enrichment fields kept)."""
    return NormalizedEvent(
        timestamp=ensure_utc(row.timestamp),
        client_address=row.client_ip,
        subnet_key=row.subnet or '',
        site=row.site,
        method=row.method or 'GET',
        path=row.path,
        query_string=row.query_string,
        status=row.status,
        response_size=row.response_size,
        duration=row.duration,
        user_agent=row.user_agent,
        referer=row.referer,
        accept_language=row.accept_language,
        record_id=row.cf_ray,
        headers=row.headers_json or {},
        country=row.country,
        city=row.city,
        latitude=row.latitude,
        longitude=row.longitude,
        asn=row.asn,
        asn_org=row.asn_org,
        datacenter_provider=row.datacenter_provider,
        has_sec_fetch_headers=bool(row.has_sec_fetch_headers),
        has_client_hints=bool(row.has_client_hints),
        is_mobile=bool(row.is_mobile),
        bot_from_email=row.bot_from_email,
        openai_host_hash=row.openai_host_hash,
        has_proxy_worker_header=bool(row.has_cf_worker),
        proxy_worker_domain=row.cf_worker_domain,
        is_exploit_attempt=bool(row.is_exploit_attempt),
        event_id=row.id,
    )


def _cursor_state(row) -> CursorState:
    return CursorState(
        timestamp=ensure_utc(row.last_processed_timestamp),
        record_id=row.last_record_id,
        records_processed=row.records_processed or 0,
        duration_ms=row.duration_ms,
        created_at=ensure_utc(row.created_at) if row.created_at else None,
    )


class EventStore:
    """Explicit persistence handle handed to the coordinator, backfill and reclassification."""

    def __init__(self, database=db):
        self.db = database

    @property
    def events(self):
        return TrafficEvent.__table__

    @property
    def cursors(self):
        return IngestionCursor.__table__

    def insert_batch(self, events: Iterable[NormalizedEvent]) -> int:
        rows = [_event_row(event) for event in events]
        if not rows:
            return 0
        try:
            with self.db.engine.begin() as conn:
                conn.execute(insert(self.events), rows)
        except SQLAlchemyError as exc:
            raise PersistenceError(f'batch of {len(rows)} events rolled back: {exc}') from exc
        return len(rows)

    @with_db_resilience(max_retries=2, backoff_ms=100)
    def latest_cursor(self) -> CursorState | None:
        stmt = (
            select(self.cursors)
            .order_by(self.cursors.c.created_at.desc(), self.cursors.c.id.desc())
            .limit(1)
        )
        with self.db.engine.connect() as conn:
            row = conn.execute(stmt).first()
        return _cursor_state(row) if row is not None else None

    def cursor_history(self, limit: int = 20) -> list[CursorState]:
        stmt = (
            select(self.cursors)
            .order_by(self.cursors.c.created_at.desc(), self.cursors.c.id.desc())
            .limit(limit)
        )
        with self.db.engine.connect() as conn:
            return [_cursor_state(row) for row in conn.execute(stmt)]

    def append_cursor(self, timestamp: datetime, record_id: str | None, records_processed: int, duration_ms: int) -> None:
        payload = {
            'last_processed_timestamp': ensure_utc(timestamp),
            'last_record_id': _clip(record_id, 64),
            'records_processed': int(records_processed),
            'duration_ms': int(duration_ms),
        }
        try:
            with self.db.engine.begin() as conn:
                conn.execute(insert(self.cursors).values(**payload))
        except SQLAlchemyError as exc:
            raise PersistenceError(f'cursor write failed: {exc}') from exc

    @with_db_resilience(max_retries=2, backoff_ms=100)
    def count_events_between(self, start: datetime, end: datetime, sites: Iterable[str] | None = None) -> int:
        t = self.events
        stmt = select(func.count()).select_from(t).where(t.c.timestamp >= start, t.c.timestamp < end)
        site_list = list(sites or [])
        if site_list:
            stmt = stmt.where(t.c.site.in_(site_list))
        with self.db.engine.connect() as conn:
            return int(conn.execute(stmt).scalar() or 0)

    def iter_events(self, batch_size: int = 500) -> Iterator[NormalizedEvent]:
        """Yield stored events in id order, one page per connection."""
        t = self.events
        last_id = 0
        while True:
            stmt = select(t).where(t.c.id > last_id).order_by(t.c.id).limit(batch_size)
            with self.db.engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
            if not rows:
                return
            for row in rows:
                event = _row_event(row)
                event.apply_classification(ClassificationResult(
                    is_bot=bool(row.is_bot),
                    category=Category(row.category),
                    identity_name=row.identity_name,
                    detection_tier=row.detection_tier,
                    reason=row.reason or '',
                ))
                yield event
            last_id = rows[-1].id

    def update_classifications(self, updates: list[tuple[int, ClassificationResult]]) -> int:
        if not updates:
            return 0
        t = self.events
        stmt = (
            update(t)
            .where(t.c.id == bindparam('b_id'))
            .values(
                is_bot=bindparam('b_is_bot'),
                category=bindparam('b_category'),
                identity_name=bindparam('b_identity_name'),
                detection_tier=bindparam('b_detection_tier'),
                reason=bindparam('b_reason'),
            )
        )
        params = [
            {
                'b_id': event_id,
                'b_is_bot': result.is_bot,
                'b_category': result.category.value,
                'b_identity_name': result.identity_name,
                'b_detection_tier': result.detection_tier,
                'b_reason': result.reason,
            }
            for event_id, result in updates
        ]
        try:
            with self.db.engine.begin() as conn:
                conn.execute(stmt, params)
        except SQLAlchemyError as exc:
            raise PersistenceError(f'classification update of {len(params)} rows failed: {exc}') from exc
        return len(params)

    def category_distribution(self) -> dict[str, int]:
        t = self.events
        stmt = select(t.c.category, func.count()).group_by(t.c.category).order_by(func.count().desc())
        with self.db.engine.connect() as conn:
            return {category: int(count) for category, count in conn.execute(stmt)}
