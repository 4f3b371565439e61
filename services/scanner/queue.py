import uuid
from typing import Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json
from pydantic import ValidationError

from common.config import CLAIM_BATCH_SIZE, STALE_LOCK_WINDOW_MS
from common.errors import PayloadError
from common.logs import log_debug, log_event
from common.states import JobStatus, JobType
from services.scanner import metrics
from services.scanner.models import Job, ScanJobPayload

STALE_LOCK_ERROR = "Lock released due to timeout"

DEFAULT_PRIORITY = 5
DEFAULT_MAX_ATTEMPTS = 3

# Columns mark_job_status() may write besides status.
UPDATABLE_COLUMNS = frozenset(
    {"run_at", "last_error", "lock_token", "locked_at", "completed_at", "progress_completed", "progress_total"}
)


def normalize_priority(priority) -> int:
    try:
        value = int(priority)
    except (TypeError, ValueError):
        return DEFAULT_PRIORITY
    return min(max(value, 1), 10)


class JobQueue:
    """
    Claim/release/status operations on the shared scraper_jobs table.

    Only rows of one job_type are ever read or written. Ownership of a row
    is decided by conditional UPDATEs on (status, lock_token), so several
    worker processes can poll the same table without row locks.

    Database errors on the polling path are logged and reported as
    "nothing happened" (None / False / 0); the worker simply tries again
    on its next tick.
    """

    def __init__(
        self,
        db,
        job_type: JobType = JobType.MAPPING_SHEET_SCAN,
        batch_size: int = CLAIM_BATCH_SIZE,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.db = db
        self.job_type = job_type
        self.batch_size = batch_size
        self.default_max_attempts = default_max_attempts

    # ============================================================
    # Claim
    # ============================================================

    def reserve_next_job(self) -> Optional[Job]:
        try:
            with self.db.cursor() as cur:
                cur.execute(
                    """
                    SELECT id
                    FROM scraper_jobs
                    WHERE job_type = %s
                      AND status = 'queued'
                      AND run_at <= NOW()
                      AND lock_token IS NULL
                      AND attempts < max_attempts
                    ORDER BY priority ASC, created_at ASC
                    LIMIT %s
                    """,
                    (self.job_type.value, self.batch_size),
                )
                candidates = [row["id"] for row in cur.fetchall()]

            if not candidates:
                log_debug("no_jobs_available", job_type=self.job_type.value)
                return None

            for job_id in candidates:
                job = self._try_claim(job_id)
                if job is not None:
                    return job
                metrics.claim_races_lost.inc()
                log_debug("claim_race_lost", job_id=job_id)

        except psycopg2.Error as e:
            log_event("db_error", level="error", op="reserve_next_job", error=str(e))
            return None

        return None

    def _try_claim(self, job_id) -> Optional[Job]:
        lock_token = uuid.uuid4()
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE scraper_jobs
                SET status = 'processing',
                    lock_token = %s,
                    locked_at = NOW(),
                    attempts = attempts + 1,
                    last_error = NULL,
                    updated_at = NOW()
                WHERE id = %s
                  AND job_type = %s
                  AND status = 'queued'
                  AND run_at <= NOW()
                  AND lock_token IS NULL
                  AND attempts < max_attempts
                RETURNING *
                """,
                (lock_token, job_id, self.job_type.value),
            )
            row = cur.fetchone()

        if row is None:
            return None

        log_event("lease_acquired", job_id=row["id"], lock_token=lock_token, attempts=row["attempts"])
        return Job.model_validate(dict(row))

    # ============================================================
    # Status transitions
    # ============================================================
    #
    # Callers holding a claim pass its lock_token; the write then only
    # lands while that token is still on the row. A worker whose lock was
    # swept and re-claimed elsewhere can no longer touch the job.

    def release_job_lock(self, job_id, lock_token=None) -> bool:
        query = """
            UPDATE scraper_jobs
            SET lock_token = NULL,
                locked_at = NULL,
                updated_at = NOW()
            WHERE id = %s AND job_type = %s
            """
        params = [job_id, self.job_type.value]
        if lock_token is not None:
            query += " AND lock_token = %s"
            params.append(lock_token)
        return self._execute_update("release_job_lock", query, tuple(params))

    def mark_job_status(self, job_id, status: JobStatus, updates: Optional[dict] = None, lock_token=None) -> bool:
        fields = dict(updates or {})
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"cannot update scraper_jobs columns: {sorted(unknown)}")

        assignments = [sql.SQL("status = %s")]
        params = [JobStatus(status).value]
        for column, value in fields.items():
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
            params.append(value)

        where = sql.SQL("id = %s AND job_type = %s")
        params.extend([job_id, self.job_type.value])
        if lock_token is not None:
            where = sql.SQL("{} AND lock_token = %s").format(where)
            params.append(lock_token)

        query = sql.SQL("UPDATE scraper_jobs SET {}, updated_at = NOW() WHERE {}").format(
            sql.SQL(", ").join(assignments), where
        )

        return self._execute_update(
            "mark_job_status",
            query,
            tuple(params),
            fence=(job_id, lock_token) if lock_token is not None else None,
        )

    def requeue_interrupted(self, job_id, reason: str, lock_token=None) -> bool:
        """
        Hand a job abandoned by shutdown back to the queue. A job that has
        already used its last attempt is failed instead.
        """
        query = """
            UPDATE scraper_jobs
            SET status = CASE WHEN attempts >= max_attempts THEN 'failed' ELSE 'queued' END,
                run_at = CASE WHEN attempts >= max_attempts THEN run_at ELSE NOW() END,
                completed_at = CASE WHEN attempts >= max_attempts THEN NOW() ELSE completed_at END,
                lock_token = NULL,
                locked_at = NULL,
                last_error = %s,
                updated_at = NOW()
            WHERE id = %s AND job_type = %s AND status = 'processing'
            """
        params = [reason, job_id, self.job_type.value]
        if lock_token is not None:
            query += " AND lock_token = %s"
            params.append(lock_token)
        return self._execute_update(
            "requeue_interrupted",
            query,
            tuple(params),
            fence=(job_id, lock_token) if lock_token is not None else None,
        )

    def update_progress(self, job_id, completed: int, total: Optional[int] = None) -> bool:
        return self._execute_update(
            "update_progress",
            """
            UPDATE scraper_jobs
            SET progress_completed = %s,
                progress_total = COALESCE(%s, progress_total),
                updated_at = NOW()
            WHERE id = %s AND job_type = %s
            """,
            (completed, total, job_id, self.job_type.value),
        )

    def _execute_update(self, op, query, params, fence=None) -> bool:
        try:
            with self.db.cursor() as cur:
                cur.execute(query, params)
                rowcount = cur.rowcount
        except psycopg2.Error as e:
            log_event("db_error", level="error", op=op, error=str(e))
            return False

        if rowcount == 0 and fence is not None:
            job_id, lock_token = fence
            log_event("stale_write_blocked", level="warning", op=op, job_id=job_id, lock_token=lock_token)
        return rowcount > 0

    # ============================================================
    # Stale lock sweep
    # ============================================================

    def cleanup_stale_locks(self, stale_lock_window_ms: int = STALE_LOCK_WINDOW_MS) -> int:
        """
        Release processing rows whose worker is presumed dead.

        Rows that still have attempts left go back to queued and are
        eligible immediately; rows that already used every attempt are
        failed so attempts never exceeds max_attempts.
        """
        try:
            with self.db.cursor() as cur:
                cur.execute(
                    """
                    UPDATE scraper_jobs
                    SET status = CASE WHEN attempts >= max_attempts THEN 'failed' ELSE 'queued' END,
                        run_at = CASE WHEN attempts >= max_attempts THEN run_at ELSE NOW() END,
                        completed_at = CASE WHEN attempts >= max_attempts THEN NOW() ELSE completed_at END,
                        lock_token = NULL,
                        locked_at = NULL,
                        last_error = %s,
                        updated_at = NOW()
                    WHERE job_type = %s
                      AND status = 'processing'
                      AND (locked_at IS NULL OR locked_at < NOW() - %s * INTERVAL '1 millisecond')
                    RETURNING id, status
                    """,
                    (STALE_LOCK_ERROR, self.job_type.value, stale_lock_window_ms),
                )
                rows = cur.fetchall()
        except psycopg2.Error as e:
            log_event("db_error", level="error", op="cleanup_stale_locks", error=str(e))
            return 0

        if rows:
            metrics.stale_locks_released.inc(len(rows))
            log_event(
                "stale_locks_released",
                count=len(rows),
                requeued=[r["id"] for r in rows if r["status"] == JobStatus.QUEUED.value],
                failed=[r["id"] for r in rows if r["status"] == JobStatus.FAILED.value],
            )
        return len(rows)

    # ============================================================
    # Audit trail / producer side
    # ============================================================

    def append_event(self, job_id, event_type: str, payload: Optional[dict] = None) -> bool:
        return self._execute_update(
            "append_event",
            """
            INSERT INTO scraper_job_events (job_id, event_type, payload)
            VALUES (%s, %s, %s)
            """,
            (job_id, event_type, Json(payload) if payload is not None else None),
        )

    def get_job(self, job_id) -> Optional[Job]:
        with self.db.cursor() as cur:
            cur.execute(
                "SELECT * FROM scraper_jobs WHERE id = %s AND job_type = %s",
                (job_id, self.job_type.value),
            )
            row = cur.fetchone()
        return Job.model_validate(dict(row)) if row else None

    def enqueue_scan_job(self, payload: dict, priority=DEFAULT_PRIORITY, max_attempts=None, run_at=None) -> Job:
        try:
            parsed = ScanJobPayload.model_validate(payload)
        except ValidationError as e:
            raise PayloadError(f"Invalid mapping sheet payload: {e.errors(include_url=False)}") from e

        attempts_allowed = max(1, int(max_attempts if max_attempts is not None else self.default_max_attempts))

        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO scraper_jobs
                    (job_type, payload, status, priority, run_at, max_attempts, attempts, progress_total)
                VALUES (%s, %s, 'queued', %s, COALESCE(%s, NOW()), %s, 0, %s)
                RETURNING *
                """,
                (
                    self.job_type.value,
                    Json(payload),
                    normalize_priority(priority),
                    run_at,
                    attempts_allowed,
                    len(parsed.selected_pages) or None,
                ),
            )
            row = cur.fetchone()
            cur.execute(
                "INSERT INTO scraper_job_events (job_id, event_type, payload) VALUES (%s, 'queued', %s)",
                (row["id"], Json({"scanId": str(parsed.scan_id)})),
            )

        log_event("job_enqueued", job_id=row["id"], scan_id=parsed.scan_id)
        return Job.model_validate(dict(row))
