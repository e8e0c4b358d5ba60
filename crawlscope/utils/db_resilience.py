"""
Database resilience utilities for handling transient connection issues.

Reads that run at the start of an ingestion run (latest cursor, day
counts for backfill) go through ``with_db_resilience`` so a dropped pooled
connection does not fail the whole run.
"""

import functools
import time

from flask import current_app
from sqlalchemy.exc import DBAPIError, OperationalError

from crawlscope.extensions import db


def with_db_resilience(max_retries=2, backoff_ms=100):
    """
    Decorator that adds automatic retry logic for database operations.

    Args:
        max_retries: Maximum number of retry attempts (default: 2)
        backoff_ms: Milliseconds to wait between retries, doubled per attempt

    On OperationalError/DBAPIError the session is rolled back, the pool is
    disposed and the call retried. The last error is re-raised.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except (OperationalError, DBAPIError) as exc:
                    db.session.rollback()

                    if attempt >= max_retries:
                        current_app.logger.error(
                            'Database operation failed after %d attempts in %s: %s',
                            max_retries + 1,
                            func.__name__,
                            exc,
                            exc_info=True
                        )
                        raise

                    db.engine.dispose()
                    current_app.logger.warning(
                        'DB connection pool disposed after error in %s (attempt %d/%d): %s',
                        func.__name__,
                        attempt + 1,
                        max_retries + 1,
                        str(exc)
                    )

                    if backoff_ms > 0:
                        time.sleep(backoff_ms * (2 ** attempt) / 1000.0)

            raise RuntimeError('Unexpected retry loop exit')

        return wrapper
    return decorator
