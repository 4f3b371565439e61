import os
import sys
from pathlib import Path

import pytest
import psycopg2


# Ensure repo root is importable so `services.*` and `common.*` work
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL is not set; export DATABASE_URL to run DB-backed tests.")

    # If DB isn't reachable, skip instead of failing the whole suite.
    try:
        conn = psycopg2.connect(url)
        conn.close()
    except Exception as e:
        pytest.skip(f"Postgres not reachable at DATABASE_URL: {e}")

    return url


@pytest.fixture(scope="session")
def migrated_database_url(database_url) -> str:
    from services.scanner.migrate import apply_migrations

    apply_migrations(database_url)
    return database_url


@pytest.fixture
def db(migrated_database_url):
    from services.scanner.db import Database

    database = Database(migrated_database_url, maxconn=8)
    with database.cursor() as cur:
        cur.execute("TRUNCATE TABLE scraper_job_events, scraper_jobs, mapping_sheet_scans")
    yield database
    database.close()


@pytest.fixture
def settings():
    from fakes import make_settings

    return make_settings()
