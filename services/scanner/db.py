import time
from contextlib import contextmanager

from psycopg2.extras import RealDictCursor, register_uuid
from psycopg2.pool import ThreadedConnectionPool

register_uuid()


class Database:
    """Pooled psycopg2 connections shared by the queue and the scan repository.

    Built once by the worker entrypoint and closed on shutdown.
    """

    def __init__(self, dsn, minconn=1, maxconn=4):
        self.dsn = dsn
        self._pool = ThreadedConnectionPool(minconn, maxconn, dsn)

    @contextmanager
    def cursor(self):
        conn = self._pool.getconn()
        try:
            # commits on success, rolls back on error
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    yield cur
        finally:
            self._pool.putconn(conn)

    def wait_for_schema(self, timeout_seconds=60):
        deadline = time.time() + timeout_seconds
        while time.time() < deadline:
            try:
                with self.cursor() as cur:
                    cur.execute("SELECT 1 FROM scraper_jobs LIMIT 1;")
                return
            except Exception:
                time.sleep(2)
        raise RuntimeError("schema not ready")

    def close(self):
        if not self._pool.closed:
            self._pool.closeall()
