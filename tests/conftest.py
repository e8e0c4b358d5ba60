"""Test configuration and fixtures."""

import os
import tempfile
from pathlib import Path

import pytest

from crawlscope import create_app
from crawlscope.extensions import db as _db
from crawlscope.services.ingestion.store import EventStore
from crawlscope.services.traffic.enrichment import Enricher
from crawlscope.utils.geoip import GeoResolver
from crawlscope.utils.network_origin import NetworkOriginResolver

from factories import DEFAULT_CITIES, DEFAULT_NETWORKS, FakeAsnReader, FakeCityReader


@pytest.fixture
def app():
    """Create application for testing."""
    db_fd, db_path = tempfile.mkstemp(suffix='.db')
    os.close(db_fd)

    app = create_app('testing', {
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SECRET_KEY': 'test-secret-key',
        'INGEST_LOCK_PATH': None,
    })
    app.extensions['crawlscope'] = {
        'geo': GeoResolver(FakeCityReader(DEFAULT_CITIES)),
        'origin': NetworkOriginResolver(FakeAsnReader(DEFAULT_NETWORKS)),
    }

    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()
        _db.engine.dispose()

    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
def client(app):
    """Test client for making requests."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def store(app):
    return EventStore(_db)


@pytest.fixture
def enricher(app):
    resolvers = app.extensions['crawlscope']
    return Enricher(resolvers['geo'], resolvers['origin'])
