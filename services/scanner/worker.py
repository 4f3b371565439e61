import signal
import sys
import threading
from datetime import timedelta

import psycopg2

from common.clock import clock as default_clock
from common.config import (
    CLEANUP_INTERVAL_MS,
    MAX_BACKOFF_MS,
    STALE_LOCK_WINDOW_MS,
    load_settings,
)
from common.errors import ConfigError
from common.logs import WORKER_ID, configure, log_event
from common.states import JobStatus
from services.scanner import metrics
from services.scanner.db import Database
from services.scanner.extraction import create_client
from services.scanner.health import create_app, start_health_server
from services.scanner.processor import JobProcessor
from services.scanner.queue import JobQueue
from services.scanner.scans import ScanRepository
from services.scanner.storage import SupabaseStorage

SHUTDOWN_INTERRUPTED_ERROR = "Worker shutdown interrupted processing"


def compute_backoff_ms(poll_interval_ms: int, attempts: int) -> int:
    """poll_interval * 2^(attempts-1), capped at MAX_BACKOFF_MS."""
    exponent = max(attempts - 1, 0)
    return min(poll_interval_ms * (2 ** exponent), MAX_BACKOFF_MS)


# ============================================================
# Worker
# ============================================================

class ScannerWorker:
    """
    Polls the queue and handles one job at a time.

    States: idle-polling (run_once finds nothing and the loop waits),
    handling-job (current_job_id is set), shutting-down (the shutdown
    event is set; no further claims are made).
    """

    def __init__(self, queue, processor, settings, clock=default_clock):
        self.queue = queue
        self.processor = processor
        self.settings = settings
        self.clock = clock
        self.current_job_id = None
        self._current_lock_token = None
        self.started_at = clock.monotonic()
        self._shutdown = threading.Event()
        self._last_cleanup = None

    @property
    def is_shutting_down(self):
        return self._shutdown.is_set()

    def uptime_seconds(self):
        return self.clock.monotonic() - self.started_at

    def request_shutdown(self, signum=None, frame=None):
        if not self._shutdown.is_set():
            log_event(
                "shutdown_requested",
                signal=signal.Signals(signum).name if signum else None,
                current_job=self.current_job_id,
            )
        self._shutdown.set()

    # ------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------

    def maybe_cleanup(self):
        now = self.clock.monotonic()
        if self._last_cleanup is not None and (now - self._last_cleanup) * 1000 < CLEANUP_INTERVAL_MS:
            return 0
        self._last_cleanup = now
        return self.queue.cleanup_stale_locks(STALE_LOCK_WINDOW_MS)

    def run_once(self):
        """One poll tick. Returns True when a job was handled."""
        metrics.heartbeat.inc()
        self.maybe_cleanup()

        if self.is_shutting_down:
            return False

        job = self.queue.reserve_next_job()
        if job is None:
            return False

        self.handle_job(job)
        return True

    def poll_loop(self):
        poll_seconds = self.settings.poll_interval_ms / 1000
        while not self._shutdown.is_set():
            try:
                handled = self.run_once()
            except Exception as e:
                log_event("poll_error", level="error", error=str(e), error_type=type(e).__name__)
                handled = False

            if not handled:
                self._shutdown.wait(poll_seconds)

        log_event("poll_loop_stopped")

    # ------------------------------------------------------------
    # Job handling
    # ------------------------------------------------------------

    def handle_job(self, job):
        self.current_job_id = job.id
        self._current_lock_token = job.lock_token
        metrics.jobs_claimed.inc()
        log_event(
            "job_claimed",
            job_id=job.id,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            priority=job.priority,
        )

        try:
            summary = self.processor.process(job)
        except Exception as e:
            self._record_failure(job, e)
        else:
            written = self.queue.mark_job_status(
                job.id,
                JobStatus.SUCCEEDED,
                {"lock_token": None, "locked_at": None, "last_error": None, "completed_at": self.clock.now()},
                lock_token=job.lock_token,
            )
            if written:
                metrics.jobs_succeeded.inc()
                log_event(
                    "job_succeeded",
                    job_id=job.id,
                    scan_id=summary.scan_id,
                    provider=summary.provider,
                    cost_usd=summary.cost_usd,
                    processing_time_ms=summary.processing_time_ms,
                    pages=summary.pages_processed,
                    input_tokens=summary.input_tokens,
                    output_tokens=summary.output_tokens,
                )
        finally:
            self.queue.release_job_lock(job.id, lock_token=job.lock_token)
            self.current_job_id = None
            self._current_lock_token = None

    def _record_failure(self, job, error):
        message = str(error) or type(error).__name__

        if job.attempts < job.max_attempts:
            delay_ms = compute_backoff_ms(self.settings.poll_interval_ms, job.attempts)
            written = self.queue.mark_job_status(
                job.id,
                JobStatus.QUEUED,
                {
                    "run_at": self.clock.now() + timedelta(milliseconds=delay_ms),
                    "last_error": message,
                    "lock_token": None,
                    "locked_at": None,
                },
                lock_token=job.lock_token,
            )
            if not written:
                return
            metrics.retries_total.inc()
            log_event(
                "job_retry_scheduled",
                level="warning",
                job_id=job.id,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                backoff_ms=delay_ms,
                error=message,
                error_type=type(error).__name__,
            )
            return

        written = self.queue.mark_job_status(
            job.id,
            JobStatus.FAILED,
            {"last_error": message, "lock_token": None, "locked_at": None, "completed_at": self.clock.now()},
            lock_token=job.lock_token,
        )
        if not written:
            return
        metrics.jobs_failed.inc()
        log_event(
            "job_failed",
            level="error",
            job_id=job.id,
            attempts=job.attempts,
            error=message,
            error_type=type(error).__name__,
        )

        try:
            self.processor.on_terminal_failure(job, message)
        except Exception as e:
            log_event("terminal_failure_hook_error", level="error", job_id=job.id, error=str(e))

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def stop(self, loop_thread, grace_ms=None):
        """
        Stop claiming, give the in-flight job up to grace_ms to finish, then
        hand it back to the queue. Returns the id of a re-queued job, if any.
        """
        grace_ms = self.settings.graceful_shutdown_timeout_ms if grace_ms is None else grace_ms
        self._shutdown.set()

        if self.current_job_id is not None:
            log_event("shutdown_waiting", job_id=self.current_job_id, grace_ms=grace_ms)

        loop_thread.join(grace_ms / 1000)
        if not loop_thread.is_alive():
            return None

        job_id = self.current_job_id
        if job_id is None:
            return None

        requeued = self.queue.requeue_interrupted(
            job_id, SHUTDOWN_INTERRUPTED_ERROR, lock_token=self._current_lock_token
        )
        log_event("job_requeued_on_shutdown", level="warning", job_id=job_id, requeued=requeued)
        return job_id

    def run(self):
        signal.signal(signal.SIGINT, self.request_shutdown)
        signal.signal(signal.SIGTERM, self.request_shutdown)

        loop_thread = threading.Thread(target=self.poll_loop, name="scanner-poll-loop", daemon=True)
        log_event("worker_started", job_type=self.queue.job_type.value, **self.settings.config_echo())
        loop_thread.start()

        while not self._shutdown.wait(1.0):
            if not loop_thread.is_alive():
                log_event("worker_exit", level="error", reason="poll_loop_died")
                return 1

        self.stop(loop_thread)
        log_event("worker_exit", reason="shutdown")
        return 0


# ============================================================
# Entrypoint
# ============================================================

def build_worker(settings):
    db = Database(settings.database_url)
    db.wait_for_schema()

    queue = JobQueue(db, default_max_attempts=settings.max_retries)
    storage = SupabaseStorage(settings.supabase_url, settings.supabase_service_role_key, settings.storage_bucket)
    client = create_client(settings)
    processor = JobProcessor(client, storage, ScanRepository(db), queue, settings)
    worker = ScannerWorker(queue, processor, settings)

    def close():
        client.close()
        storage.close()
        db.close()

    return worker, close


def main():
    try:
        settings = load_settings()
    except ConfigError as e:
        log_event("worker_exit", level="error", reason="config", error=str(e))
        sys.exit(1)

    configure(settings.verbose_logging)

    if settings.graceful_shutdown_timeout_ms <= settings.minimum_shutdown_timeout_ms:
        log_event(
            "shutdown_timeout_too_short",
            level="warning",
            graceful_shutdown_timeout_ms=settings.graceful_shutdown_timeout_ms,
            minimum_ms=settings.minimum_shutdown_timeout_ms,
        )
    if settings.worker_concurrency > 1:
        log_event(
            "worker_concurrency_unsupported",
            level="warning",
            requested=settings.worker_concurrency,
            effective=1,
        )

    try:
        worker, close = build_worker(settings)
    except (psycopg2.Error, RuntimeError) as e:
        log_event("worker_exit", level="error", reason="startup", error=str(e))
        sys.exit(1)

    try:
        start_health_server(create_app(worker, settings), settings.port)
    except RuntimeError as e:
        log_event("worker_exit", level="error", reason="health_server", error=str(e))
        close()
        sys.exit(1)
    log_event("health_server_started", port=settings.port, worker=WORKER_ID)

    try:
        code = worker.run()
    finally:
        close()
    sys.exit(code)


if __name__ == "__main__":
    main()
