"""
Configuration Module for crawlscope

This module defines configuration classes for different environments:
- DevelopmentConfig: Local development with SQLite
- ProductionConfig: Ingestion host with PostgreSQL
- TestingConfig: Automated testing configuration

Every setting can be overridden from the environment; list-valued settings
are comma separated.
"""

import os
import sys
from pathlib import Path


def _env_int(name, default):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        print(f'Ignoring non-integer {name}={raw!r}', file=sys.stderr)
        return default


def _env_float(name, default):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        print(f'Ignoring non-numeric {name}={raw!r}', file=sys.stderr)
        return default


class Config:
    """Base configuration with common settings"""

    SECRET_KEY = os.environ.get('SECRET_KEY')

    # Database configuration
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # MaxMind GeoLite2 datasets. Missing files degrade to null enrichment.
    GEOIP_CITY_DB = os.environ.get('GEOIP_CITY_DB', '/usr/share/GeoIP/GeoLite2-City.mmdb')
    GEOIP_ASN_DB = os.environ.get('GEOIP_ASN_DB', '/usr/share/GeoIP/GeoLite2-ASN.mmdb')
    GEOIP_CACHE_TTL_SECONDS = _env_int('GEOIP_CACHE_TTL_SECONDS', 3600)

    # Extra "asn:label" pairs merged over the built-in provider table.
    # A label of "none" marks an ASN as explicitly not a datacenter.
    DATACENTER_ASN_OVERRIDES = os.environ.get('DATACENTER_ASN_OVERRIDES', '')

    # Reputation service (CrowdSec)
    CROWDSEC_MODE = os.environ.get('CROWDSEC_MODE', 'cscli')  # lapi | cscli | off
    CROWDSEC_LAPI_URL = os.environ.get('CROWDSEC_LAPI_URL', 'http://127.0.0.1:8080')
    CROWDSEC_API_KEY = os.environ.get('CROWDSEC_API_KEY')
    CROWDSEC_TIMEOUT = _env_float('CROWDSEC_TIMEOUT', 5.0)
    DENYLIST_TTL_SECONDS = _env_int('DENYLIST_TTL_SECONDS', 60)

    # Log source
    LOG_SOURCE = os.environ.get('LOG_SOURCE', 'journal')  # journal | file
    LOG_SOURCE_UNIT = os.environ.get('LOG_SOURCE_UNIT', 'caddy')
    LOG_SOURCE_PATH = os.environ.get('LOG_SOURCE_PATH')
    LOG_SOURCE_TIMEOUT = _env_float('LOG_SOURCE_TIMEOUT', 120.0)

    # Ingestion run
    INGEST_BATCH_SIZE = _env_int('INGEST_BATCH_SIZE', 100)
    INGEST_WORKERS = _env_int('INGEST_WORKERS', 1)
    INGEST_INITIAL_LOOKBACK_MINUTES = _env_int('INGEST_INITIAL_LOOKBACK_MINUTES', 60)
    # 0 disables rate aggregates: page asset bursts would trip the human rate rule.
    INGEST_SESSION_WINDOW_SECONDS = _env_int('INGEST_SESSION_WINDOW_SECONDS', 0)
    INGEST_LOCK_PATH = os.environ.get('INGEST_LOCK_PATH', '/tmp/crawlscope-ingest.lock')

    # Static exclusions
    EXCLUDED_ADDRESSES = os.environ.get('EXCLUDED_ADDRESSES', '')
    EXCLUDED_SITES = os.environ.get('EXCLUDED_SITES', '')
    BACKFILL_INCLUDED_SITES = os.environ.get('BACKFILL_INCLUDED_SITES', '')

    # Stage 2 web shell guard tokens; empty keeps the built-in list.
    WEBSHELL_SUSPICIOUS_TOKENS = os.environ.get('WEBSHELL_SUSPICIOUS_TOKENS', '')

    # Health: /health/ready reports stale when the last cursor is older than this.
    HEALTH_MAX_CURSOR_AGE_MINUTES = _env_int('HEALTH_MAX_CURSOR_AGE_MINUTES', 30)


class DevelopmentConfig(Config):
    """Development environment configuration"""

    DEBUG = True
    TESTING = False

    # IMPORTANT (Windows): SQLAlchemy sqlite URLs must use forward slashes.
    _project_root = Path(__file__).resolve().parent.parent
    _default_db_path = (_project_root / 'crawlscope.db').resolve()

    _env_db_url = os.environ.get('DATABASE_URL')
    if _env_db_url and _env_db_url.strip().startswith('sqlite:'):
        _env_db_url = _env_db_url.replace('\\', '/')

    SQLALCHEMY_DATABASE_URI = _env_db_url or f"sqlite:///{_default_db_path.as_posix()}"

    CROWDSEC_MODE = os.environ.get('CROWDSEC_MODE', 'off')


class ProductionConfig(Config):
    """Production environment configuration"""

    DEBUG = False
    TESTING = False

    @property
    def SQLALCHEMY_DATABASE_URI(self):
        """
        Construct the production database URI at access time.

        - Hosting platforms hand out postgres:// URLs; SQLAlchemy wants postgresql://
        - Returns None when DATABASE_URL is missing; create_app() turns that
          into a ConfigurationError.
        """
        db_uri = os.environ.get('DATABASE_URL')
        if not db_uri:
            return None

        if db_uri.startswith('postgres://'):
            db_uri = 'postgresql://' + db_uri[len('postgres://'):]
        return db_uri


class TestingConfig(Config):
    """Testing environment configuration"""

    TESTING = True
    DEBUG = True

    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    GEOIP_CITY_DB = None
    GEOIP_ASN_DB = None
    CROWDSEC_MODE = 'off'
    LOG_SOURCE = 'file'
    INGEST_LOCK_PATH = None


# Configuration dictionary for easy access
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
