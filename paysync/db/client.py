from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.pool import SimpleConnectionPool

from paysync.config import Settings

logger = logging.getLogger(__name__)


class Database:
    """psycopg2 connection pool owned by the process bootstrap."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._pool: SimpleConnectionPool | None = None

    def open(self) -> None:
        if self._pool is not None:
            return
        if not self.settings.db_enabled:
            raise RuntimeError("Database is not configured")
        self._pool = SimpleConnectionPool(1, self.settings.db_pool_max, dsn=self.settings.db_dsn)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    @contextmanager
    def connection(self) -> Iterator[psycopg2.extensions.connection]:
        """Yield a pooled connection; commit on success, roll back on error."""
        if self._pool is None:
            self.open()
        assert self._pool is not None
        conn: psycopg2.extensions.connection | None = None
        try:
            # Retry once on connections the server already closed
            for attempt in range(2):
                conn = self._pool.getconn()
                try:
                    if self.settings.db_schema:
                        with conn.cursor() as cur:
                            cur.execute("SELECT set_config('search_path', %s, false)", (self.settings.db_schema,))
                    break
                except (psycopg2.OperationalError, psycopg2.InterfaceError):
                    self._pool.putconn(conn, close=True)
                    conn = None
                    if attempt == 1:
                        raise
            assert conn is not None
            yield conn
            conn.commit()
        except Exception:
            if conn is not None and not conn.closed:
                try:
                    conn.rollback()
                except psycopg2.Error:
                    logger.warning("rollback failed", exc_info=True)
            raise
        finally:
            if conn is not None:
                self._pool.putconn(conn)
