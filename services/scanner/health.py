import threading
import time

import uvicorn
from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from common.logs import WORKER_ID, log_event


def format_uptime(seconds) -> str:
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def create_app(worker, settings) -> FastAPI:
    app = FastAPI(title="mapping-sheet-scanner")

    @app.get("/health")
    def health():
        uptime = worker.uptime_seconds()
        current = worker.current_job_id
        return {
            "status": "healthy",
            "currentJob": str(current) if current is not None else "none",
            "isShuttingDown": worker.is_shutting_down,
            "uptime": round(uptime, 3),
            "uptimeHuman": format_uptime(uptime),
            "worker": WORKER_ID,
            "config": settings.config_echo(),
        }

    if settings.metrics_enabled:
        @app.get("/metrics")
        def metrics():
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def start_health_server(app, port, host="0.0.0.0", startup_timeout=10.0):
    """
    Serve app on a daemon thread and wait until it is listening.

    Raises RuntimeError when uvicorn exits before binding (port in use,
    bad host), instead of leaving the worker running without /health.
    """
    # uvicorn skips signal handler installation off the main thread
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))

    def serve():
        try:
            server.run()
        except SystemExit as e:
            log_event("health_server_stopped", level="error", port=port, exit_code=e.code)

    thread = threading.Thread(target=serve, name="health-server", daemon=True)
    thread.start()

    deadline = time.monotonic() + startup_timeout
    while not server.started:
        if not thread.is_alive():
            raise RuntimeError(f"health server failed to start on {host}:{port}")
        if time.monotonic() > deadline:
            server.should_exit = True
            raise RuntimeError(f"health server did not start on {host}:{port} within {startup_timeout}s")
        time.sleep(0.05)
    return server
