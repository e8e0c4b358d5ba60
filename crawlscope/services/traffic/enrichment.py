"""Enrichment chain: geo -> network origin -> signals -> classification."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping

from crawlscope.domain.headers import normalize_headers
from crawlscope.domain.records import NormalizedEvent, RawLogRecord, SessionAggregate
from crawlscope.services.traffic.classifier import TrafficClassifier
from crawlscope.services.traffic.signals import extract_signals
from crawlscope.utils.geoip import GeoResolver
from crawlscope.utils.network_origin import NetworkOriginResolver


class Enricher:
    """Populates an event in a fixed order, then classifies it once.

    The classifier reads the datacenter label and headers, so it always runs
    last. Resolvers are read-only; one Enricher can serve several threads.
    """

    def __init__(self, geo: GeoResolver, origin: NetworkOriginResolver, classifier: TrafficClassifier | None = None):
        self.geo = geo
        self.origin = origin
        self.classifier = classifier or TrafficClassifier()

    def enrich(self, event: NormalizedEvent, session: SessionAggregate | None = None) -> NormalizedEvent:
        event.apply_geo(self.geo.lookup(event.client_address))
        event.apply_origin(self.origin.resolve(event.client_address))
        event.apply_signals(extract_signals(event.headers, event.path, self.classifier.attack_rules))
        event.apply_classification(self.classifier.classify(event, session))
        return event


def classify_request(
    enricher: Enricher,
    *,
    user_agent: str | None = None,
    path: str = '/',
    headers: Mapping[str, object] | None = None,
    address: str = '198.51.100.1',
    site: str = 'adhoc',
    method: str = 'GET',
    session: SessionAggregate | None = None,
) -> NormalizedEvent:
    """Classify one ad-hoc request through the same chain used for ingestion."""
    merged = normalize_headers(headers)
    if user_agent and not any(k.lower() == 'user-agent' for k in merged):
        merged['User-Agent'] = [user_agent]
    record = RawLogRecord(
        timestamp=datetime.now(timezone.utc),
        method=method,
        uri=path,
        host=site,
        status=200,
        size=0,
        remote_ip=address,
        headers=merged,
    )
    return enricher.enrich(NormalizedEvent.from_record(record), session)
