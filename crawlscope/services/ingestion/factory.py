"""Build pipeline components from the Flask app config."""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from crawlscope.exceptions import ConfigurationError
from crawlscope.extensions import db
from crawlscope.services.ingestion.backfill import Backfill
from crawlscope.services.ingestion.coordinator import IngestionCoordinator
from crawlscope.services.ingestion.denylist import CrowdSecLapiSource, CscliDecisionSource, DenylistCache
from crawlscope.services.ingestion.filters import ExclusionRules, RecordFilter
from crawlscope.services.ingestion.log_source import FileLogSource, JournalLogSource
from crawlscope.services.ingestion.run_lock import RunLock
from crawlscope.services.ingestion.store import EventStore
from crawlscope.services.traffic.attacks import AttackRules
from crawlscope.services.traffic.classifier import TrafficClassifier
from crawlscope.services.traffic.enrichment import Enricher
from crawlscope.utils.addresses import split_list


def _app(app=None):
    return app or current_app._get_current_object()


def build_classifier(app=None) -> TrafficClassifier:
    app = _app(app)
    return TrafficClassifier(AttackRules.from_config(app.config.get('WEBSHELL_SUSPICIOUS_TOKENS')))


def build_enricher(app=None) -> Enricher:
    app = _app(app)
    resolvers = app.extensions['crawlscope']
    return Enricher(resolvers['geo'], resolvers['origin'], build_classifier(app))


def build_denylist(app=None) -> DenylistCache | None:
    app = _app(app)
    mode = (app.config.get('CROWDSEC_MODE') or 'off').lower()
    timeout = app.config.get('CROWDSEC_TIMEOUT', 5.0)
    if mode == 'off':
        return None
    if mode == 'lapi':
        api_key = app.config.get('CROWDSEC_API_KEY')
        if not api_key:
            raise ConfigurationError('CROWDSEC_MODE=lapi requires CROWDSEC_API_KEY')
        source = CrowdSecLapiSource(app.config['CROWDSEC_LAPI_URL'], api_key, timeout=timeout)
    elif mode == 'cscli':
        source = CscliDecisionSource()
    else:
        raise ConfigurationError(f'unknown CROWDSEC_MODE {mode!r} (expected lapi, cscli or off)')
    return DenylistCache(source, ttl_seconds=app.config.get('DENYLIST_TTL_SECONDS', 60))


def build_log_source(app=None):
    app = _app(app)
    kind = (app.config.get('LOG_SOURCE') or 'journal').lower()
    if kind == 'journal':
        return JournalLogSource(app.config.get('LOG_SOURCE_UNIT') or 'caddy', timeout=app.config.get('LOG_SOURCE_TIMEOUT', 120.0))
    if kind == 'file':
        path = app.config.get('LOG_SOURCE_PATH')
        if not path:
            raise ConfigurationError('LOG_SOURCE=file requires LOG_SOURCE_PATH')
        return FileLogSource(path)
    raise ConfigurationError(f'unknown LOG_SOURCE {kind!r} (expected journal or file)')


def build_record_filter(app=None, denylist=None) -> RecordFilter:
    app = _app(app)
    return RecordFilter(ExclusionRules.from_config(app.config), denylist)


def build_coordinator(app=None, log_source=None) -> IngestionCoordinator:
    app = _app(app)
    cfg = app.config
    return IngestionCoordinator(
        EventStore(db),
        log_source or build_log_source(app),
        build_enricher(app),
        build_record_filter(app, build_denylist(app)),
        RunLock(db.engine, cfg.get('INGEST_LOCK_PATH')),
        batch_size=cfg.get('INGEST_BATCH_SIZE', 100),
        initial_lookback=timedelta(minutes=cfg.get('INGEST_INITIAL_LOOKBACK_MINUTES', 60)),
        session_window_seconds=cfg.get('INGEST_SESSION_WINDOW_SECONDS', 0),
        workers=cfg.get('INGEST_WORKERS', 1),
        log=app.logger,
    )


def build_backfill(app=None, log_source=None, included_sites=None) -> Backfill:
    app = _app(app)
    cfg = app.config
    if included_sites is None:
        included_sites = split_list(cfg.get('BACKFILL_INCLUDED_SITES'))
    return Backfill(
        EventStore(db),
        log_source or build_log_source(app),
        build_enricher(app),
        build_record_filter(app, build_denylist(app)),
        included_sites=included_sites,
        batch_size=cfg.get('INGEST_BATCH_SIZE', 100),
        session_window_seconds=cfg.get('INGEST_SESSION_WINDOW_SECONDS', 0),
        workers=cfg.get('INGEST_WORKERS', 1),
        log=app.logger,
    )
