from datetime import datetime, timedelta, timezone

from sqlalchemy import insert

from crawlscope.extensions import db
from crawlscope.models import IngestionCursor
from crawlscope.services.ingestion.store import EventStore

from factories import utc


def test_health_does_not_need_the_database(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'


def test_liveness(client):
    response = client.get('/health/live')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'alive'


def test_ready_before_first_run(client):
    response = client.get('/health/ready')
    data = response.get_json()

    assert response.status_code == 200
    assert data['database'] == 'healthy'
    assert data['schema'] == 'complete'
    assert data['ingestion'] == 'no_runs_yet'
    assert data['overall'] == 'healthy'


def test_ready_with_recent_cursor(app, client):
    EventStore(db).append_cursor(utc(2026, 3, 1, 12, 0, 0), 'ray', 5, 100)

    data = client.get('/health/ready').get_json()

    assert data['ingestion'] == 'healthy'
    assert data['last_cursor'] == '2026-03-01T12:00:00+00:00'


def test_ready_reports_stale_ingestion(app, client):
    with db.engine.begin() as conn:
        conn.execute(insert(IngestionCursor.__table__).values(
            last_processed_timestamp=utc(2026, 3, 1, 12, 0, 0),
            records_processed=1,
            created_at=datetime.now(timezone.utc) - timedelta(hours=2),
        ))

    response = client.get('/health/ready')

    assert response.status_code == 503
    assert response.get_json()['ingestion'] == 'stale'


def test_ready_reports_missing_tables(app, client):
    IngestionCursor.__table__.drop(db.engine)

    response = client.get('/health/ready')
    data = response.get_json()

    assert response.status_code == 503
    assert data['schema'] == 'incomplete'
    assert data['missing_tables'] == ['ingestion_cursors']
    assert 'ingestion' not in data
