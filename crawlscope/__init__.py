"""
crawlscope: access log ingestion and bot classification.

The Flask application only hosts the CLI commands and health endpoints;
the pipeline itself lives in crawlscope.services.
"""

from flask import Flask

from crawlscope.config import config
from crawlscope.exceptions import ConfigurationError
from crawlscope.extensions import db, migrate
from crawlscope.utils.geoip import open_geo_resolver
from crawlscope.utils.network_origin import open_network_origin_resolver


def create_app(config_name='default', overrides=None):
    """
    Application factory function

    Args:
        config_name (str): Configuration name ('development', 'production', 'testing')
        overrides (dict): Extra settings applied after the config class

    Returns:
        Flask: Configured Flask application instance
    """
    config_name = (config_name or 'default').lower()
    app = Flask(__name__)

    # Instantiate so @property values (ProductionConfig.SQLALCHEMY_DATABASE_URI) are evaluated.
    cfg = config.get(config_name) or config['default']
    app.config.from_object(cfg())
    if overrides:
        app.config.update(overrides)

    db_uri = app.config.get('SQLALCHEMY_DATABASE_URI')
    if not db_uri:
        app.logger.error('DATABASE_URL (SQLALCHEMY_DATABASE_URI) is not set')
        raise ConfigurationError('Missing DATABASE_URL')
    if config_name == 'production' and db_uri.strip().startswith('sqlite:'):
        app.logger.error('Production requires PostgreSQL (DATABASE_URL must not be sqlite)')
        raise ConfigurationError('SQLite not allowed in production')

    db.init_app(app)
    migrate.init_app(app, db)

    init_resolvers(app)
    register_blueprints(app)
    register_cli_commands(app)

    return app


def init_resolvers(app):
    """Open the GeoLite2 datasets once per process. Missing files only warn."""
    # Models must be imported before migrations or create_all see the metadata.
    from crawlscope import models  # noqa: F401

    ttl = app.config.get('GEOIP_CACHE_TTL_SECONDS', 3600)
    geo = open_geo_resolver(app.config.get('GEOIP_CITY_DB'), app.logger, cache_ttl_seconds=ttl)
    try:
        origin = open_network_origin_resolver(
            app.config.get('GEOIP_ASN_DB'),
            app.logger,
            overrides=app.config.get('DATACENTER_ASN_OVERRIDES'),
            cache_ttl_seconds=ttl,
        )
    except ValueError as exc:
        raise ConfigurationError(f'Invalid DATACENTER_ASN_OVERRIDES: {exc}') from exc
    app.extensions['crawlscope'] = {'geo': geo, 'origin': origin}


def register_blueprints(app):
    from crawlscope.routes.health import health_bp

    app.register_blueprint(health_bp)


def register_cli_commands(app):
    from crawlscope.cli import register_cli_commands as _register

    _register(app)
