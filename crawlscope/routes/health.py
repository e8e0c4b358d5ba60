"""
Health check endpoints for the ingestion host.

- /health and /health/live: process is up, no dependencies touched
- /health/ready: database reachable, schema present, last ingestion run recent
"""

import os
from datetime import datetime, timedelta, timezone

from flask import Blueprint, current_app, jsonify
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from crawlscope.extensions import db
from crawlscope.services.ingestion.store import EventStore

health_bp = Blueprint('health', __name__)

REQUIRED_TABLES = {'traffic_events', 'ingestion_cursors'}


def _now():
    return datetime.now(timezone.utc)


@health_bp.route('/health')
def health_check():
    """Lightweight probe; does not touch the database."""
    return jsonify({
        'status': 'healthy',
        'timestamp': _now().isoformat(),
        'service': 'crawlscope',
    }), 200


@health_bp.route('/health/ready')
def readiness_check():
    """
    Returns 200 only if:
    - the database answers SELECT 1
    - traffic_events and ingestion_cursors exist
    - the last cursor (if any) is younger than HEALTH_MAX_CURSOR_AGE_MINUTES
    """
    checks = {
        'application': 'healthy',
        'database': 'unknown',
        'timestamp': _now().isoformat(),
    }
    status_code = 200

    try:
        with db.engine.connect() as conn:
            conn.execute(text('SELECT 1'))
        checks['database'] = 'healthy'
    except SQLAlchemyError as exc:
        checks['database'] = 'unhealthy'
        checks['database_error'] = str(exc)
        status_code = 503
        current_app.logger.error('Database health check failed: %s', exc, exc_info=True)

    if checks['database'] == 'healthy':
        missing = REQUIRED_TABLES - set(inspect(db.engine).get_table_names())
        if missing:
            checks['schema'] = 'incomplete'
            checks['missing_tables'] = sorted(missing)
            status_code = 503
        else:
            checks['schema'] = 'complete'

    if checks.get('schema') == 'complete':
        cursor = EventStore(db).latest_cursor()
        if cursor is None:
            checks['ingestion'] = 'no_runs_yet'
        else:
            max_age = timedelta(minutes=current_app.config.get('HEALTH_MAX_CURSOR_AGE_MINUTES', 30))
            age = _now() - (cursor.created_at or cursor.timestamp)
            checks['last_cursor'] = cursor.timestamp.isoformat()
            checks['last_run_age_seconds'] = int(age.total_seconds())
            if age > max_age:
                checks['ingestion'] = 'stale'
                status_code = 503
            else:
                checks['ingestion'] = 'healthy'

    checks['overall'] = 'healthy' if status_code == 200 else 'unhealthy'
    return jsonify(checks), status_code


@health_bp.route('/health/live')
def liveness_check():
    """Liveness probe for process supervisors."""
    return jsonify({
        'status': 'alive',
        'pid': os.getpid(),
        'timestamp': _now().isoformat(),
    }), 200
