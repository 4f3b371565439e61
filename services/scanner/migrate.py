import os
import sys
from pathlib import Path

import psycopg2

from common.logs import log_event


def repo_root() -> Path:
    # services/scanner/migrate.py -> repo root is 2 levels up from services/scanner
    return Path(__file__).resolve().parents[2]


def migrations_dir() -> Path:
    return repo_root() / "migrations"


def list_sql_migrations(dirpath: Path) -> list[Path]:
    return sorted([p for p in dirpath.glob("*.sql") if p.is_file()])


def apply_migrations(database_url: str, dirpath: Path | None = None) -> list[str]:
    mdir = dirpath or migrations_dir()
    files = list_sql_migrations(mdir)
    if not files:
        log_event("migrations_missing", dir=str(mdir))
        return []

    applied_now = []
    with psycopg2.connect(database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                  filename TEXT PRIMARY KEY,
                  applied_at TIMESTAMP NOT NULL DEFAULT NOW()
                );
                """
            )

            cur.execute("SELECT filename FROM schema_migrations;")
            applied = {r[0] for r in cur.fetchall()}

            for path in files:
                name = path.name
                if name in applied:
                    continue

                log_event("migration_applying", filename=name)
                cur.execute(path.read_text(encoding="utf-8"))
                cur.execute("INSERT INTO schema_migrations(filename) VALUES (%s)", (name,))
                applied_now.append(name)
    conn.close()

    log_event("migrations_done", applied=len(applied_now))
    return applied_now


def main():
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        log_event("migrations_failed", level="error", error="DATABASE_URL is not set")
        sys.exit(1)
    apply_migrations(database_url)


if __name__ == "__main__":
    main()
