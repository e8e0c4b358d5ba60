"""Records flowing through the pipeline.

``RawLogRecord`` is what the log source yields, ``NormalizedEvent`` is what
gets enriched, classified and persisted. The small value types (geo, origin,
signals) are produced by the resolvers in ``crawlscope.utils`` and the signal
extractor, and applied to the event in that order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from crawlscope.domain.enums import Category, DetectionTier
from crawlscope.domain.headers import first_header, normalize_headers
from crawlscope.exceptions import MalformedRecordError
from crawlscope.utils.addresses import resolve_client_address, subnet_key


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime (naive values are assumed to be UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RawLogRecord:
    timestamp: datetime
    method: str
    uri: str
    host: str
    status: int
    size: int
    remote_ip: str | None
    headers: dict[str, list[str]]
    duration: float | None = None
    record_id: str | None = None

    @property
    def client_address(self) -> str | None:
        return resolve_client_address(self.headers, self.remote_ip)


@dataclass(frozen=True)
class GeoLocation:
    country: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class NetworkOrigin:
    asn: int | None = None
    asn_org: str | None = None
    datacenter_provider: str | None = None

    @property
    def is_datacenter(self) -> bool:
        return self.datacenter_provider is not None


@dataclass(frozen=True)
class RequestSignals:
    has_sec_fetch_headers: bool = False
    has_client_hints: bool = False
    is_mobile: bool = False
    bot_from_email: str | None = None
    openai_host_hash: str | None = None
    has_proxy_worker_header: bool = False
    proxy_worker_domain: str | None = None
    is_exploit_attempt: bool = False


@dataclass(frozen=True)
class ClassificationResult:
    is_bot: bool
    category: Category
    identity_name: str | None = None
    detection_tier: int | None = None
    reason: str = ''

    def __post_init__(self):
        if self.is_bot == (self.category == Category.HUMAN):
            raise ValueError(f'is_bot={self.is_bot} contradicts category {self.category.value}')
        if self.detection_tier is not None and self.detection_tier not in DetectionTier.ALL:
            raise ValueError(f'unknown detection tier {self.detection_tier!r}')

    @classmethod
    def human(cls, reason: str) -> 'ClassificationResult':
        return cls(is_bot=False, category=Category.HUMAN, reason=reason)

    @classmethod
    def bot(cls, category: Category, identity_name: str | None, tier: int, reason: str) -> 'ClassificationResult':
        return cls(
            is_bot=True,
            category=category,
            identity_name=identity_name,
            detection_tier=tier,
            reason=reason,
        )


@dataclass(frozen=True)
class SessionAggregate:
    """Requests seen from one address over a trailing window."""

    request_count: int
    window_seconds: float

    @property
    def rate(self) -> float:
        if self.window_seconds <= 0:
            return 0.0
        return self.request_count / self.window_seconds


@dataclass(frozen=True)
class CursorState:
    timestamp: datetime
    record_id: str | None = None
    records_processed: int = 0
    duration_ms: int | None = None
    created_at: datetime | None = None


@dataclass
class NormalizedEvent:
    timestamp: datetime
    client_address: str
    subnet_key: str
    site: str
    method: str
    path: str
    query_string: str | None = None
    status: int | None = None
    response_size: int | None = None
    duration: float | None = None
    user_agent: str | None = None
    referer: str | None = None
    accept_language: str | None = None
    record_id: str | None = None
    headers: dict[str, list[str]] = field(default_factory=dict)

    country: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    asn: int | None = None
    asn_org: str | None = None
    datacenter_provider: str | None = None

    has_sec_fetch_headers: bool = False
    has_client_hints: bool = False
    is_mobile: bool = False
    bot_from_email: str | None = None
    openai_host_hash: str | None = None
    has_proxy_worker_header: bool = False
    proxy_worker_domain: str | None = None
    is_exploit_attempt: bool = False

    is_bot: bool | None = None
    category: Category | None = None
    identity_name: str | None = None
    detection_tier: int | None = None
    reason: str | None = None

    event_id: int | None = None

    @classmethod
    def from_record(cls, record: RawLogRecord) -> 'NormalizedEvent':
        address = record.client_address
        if not address:
            raise MalformedRecordError(f'no usable client address in record {record.record_id or "?"}')

        # Origin-form request target; a leading '//' is part of the path.
        path, _, query = (record.uri or '/').partition('?')
        headers = normalize_headers(record.headers)
        return cls(
            timestamp=ensure_utc(record.timestamp),
            client_address=address,
            subnet_key=subnet_key(address),
            site=(record.host or '').lower(),
            method=(record.method or 'GET').upper(),
            path=path or '/',
            query_string=query or None,
            status=record.status,
            response_size=record.size,
            duration=record.duration,
            user_agent=first_header(headers, 'User-Agent'),
            referer=first_header(headers, 'Referer'),
            accept_language=first_header(headers, 'Accept-Language'),
            record_id=record.record_id,
            headers=headers,
        )

    @property
    def is_classified(self) -> bool:
        return self.category is not None

    def apply_geo(self, geo: GeoLocation) -> None:
        self.country = geo.country
        self.city = geo.city
        self.latitude = geo.latitude
        self.longitude = geo.longitude

    def apply_origin(self, origin: NetworkOrigin) -> None:
        self.asn = origin.asn
        self.asn_org = origin.asn_org
        self.datacenter_provider = origin.datacenter_provider

    def apply_signals(self, signals: RequestSignals) -> None:
        self.has_sec_fetch_headers = signals.has_sec_fetch_headers
        self.has_client_hints = signals.has_client_hints
        self.is_mobile = signals.is_mobile
        self.bot_from_email = signals.bot_from_email
        self.openai_host_hash = signals.openai_host_hash
        self.has_proxy_worker_header = signals.has_proxy_worker_header
        self.proxy_worker_domain = signals.proxy_worker_domain
        self.is_exploit_attempt = signals.is_exploit_attempt

    def apply_classification(self, result: ClassificationResult) -> None:
        """Set the verdict. Classification is write-once."""
        if self.is_classified:
            raise ValueError('event is already classified')
        self.is_bot = result.is_bot
        self.category = result.category
        self.identity_name = result.identity_name
        self.detection_tier = result.detection_tier
        self.reason = result.reason

    def classification(self) -> ClassificationResult | None:
        if not self.is_classified:
            return None
        return ClassificationResult(
            is_bot=bool(self.is_bot),
            category=self.category,
            identity_name=self.identity_name,
            detection_tier=self.detection_tier,
            reason=self.reason or '',
        )

    def summary(self) -> dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'address': self.client_address,
            'site': self.site,
            'path': self.path,
            'category': self.category.value if self.category else None,
            'identity': self.identity_name,
            'tier': self.detection_tier,
            'reason': self.reason,
        }
