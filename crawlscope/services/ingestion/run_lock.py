"""Single-run guard for ingestion.

PostgreSQL deployments take a session advisory lock on a dedicated
connection; other databases fall back to an exclusive ``flock`` on a file.
Either way the lock dies with the process.
"""

from __future__ import annotations

import fcntl
import logging
import os

from sqlalchemy import text

from crawlscope.exceptions import ConcurrentRunError

logger = logging.getLogger(__name__)

# Arbitrary constant shared by every crawlscope process.
ADVISORY_LOCK_KEY = 0x63726177  # "craw"


class RunLock:
    def __init__(self, engine=None, lock_path: str | None = None, key: int = ADVISORY_LOCK_KEY):
        self.engine = engine
        self.lock_path = lock_path
        self.key = key
        self._conn = None
        self._fh = None

    @property
    def uses_advisory_lock(self) -> bool:
        return self.engine is not None and self.engine.dialect.name == 'postgresql'

    def acquire(self) -> None:
        if self.uses_advisory_lock:
            self._acquire_advisory()
        elif self.lock_path:
            self._acquire_file()

    def _acquire_advisory(self) -> None:
        conn = self.engine.connect()
        acquired = bool(conn.execute(text('SELECT pg_try_advisory_lock(:k)'), {'k': self.key}).scalar())
        if not acquired:
            conn.close()
            raise ConcurrentRunError('another ingestion run holds the advisory lock')
        self._conn = conn

    def _acquire_file(self) -> None:
        fh = open(self.lock_path, 'a+')
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fh.close()
            raise ConcurrentRunError(f'another ingestion run holds {self.lock_path}') from None
        fh.seek(0)
        fh.truncate()
        fh.write(str(os.getpid()))
        fh.flush()
        self._fh = fh

    def release(self) -> None:
        if self._conn is not None:
            try:
                self._conn.execute(text('SELECT pg_advisory_unlock(:k)'), {'k': self.key})
            finally:
                self._conn.close()
                self._conn = None
        if self._fh is not None:
            try:
                fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
            finally:
                self._fh.close()
                self._fh = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
