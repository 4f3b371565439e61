import socket
import uuid

import httpx
import pytest
from fastapi.testclient import TestClient

from common.logs import WORKER_ID
from fakes import FakeClock, FakeQueue, StubProcessor, make_settings
from services.scanner.health import create_app, format_uptime, start_health_server
from services.scanner.worker import ScannerWorker


def _setup(**settings_overrides):
    clock = FakeClock()
    settings = make_settings(**settings_overrides)
    worker = ScannerWorker(FakeQueue(clock=clock), StubProcessor(), settings, clock=clock)
    return worker, clock, TestClient(create_app(worker, settings))


def test_health_reports_idle_worker():
    worker, clock, client = _setup(poll_interval_ms=2000)
    clock.advance(3723)

    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["currentJob"] == "none"
    assert body["isShuttingDown"] is False
    assert body["uptime"] == 3723
    assert body["uptimeHuman"] == "1h 2m 3s"
    assert body["worker"] == WORKER_ID
    assert body["config"] == {
        "claudeTimeoutMs": 60000,
        "gracefulShutdownTimeoutMs": 150000,
        "pollIntervalMs": 2000,
    }


def test_health_reports_current_job_and_shutdown():
    worker, _, client = _setup()
    job_id = uuid.uuid4()
    worker.current_job_id = job_id
    worker.request_shutdown()

    body = client.get("/health").json()

    assert body["currentJob"] == str(job_id)
    assert body["isShuttingDown"] is True


def test_metrics_endpoint_exposes_worker_counters():
    _, _, client = _setup()

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "scanner_jobs_claimed_total" in response.text


def test_metrics_endpoint_can_be_disabled():
    _, _, client = _setup(metrics_enabled=False)

    assert client.get("/metrics").status_code == 404


def test_format_uptime():
    assert format_uptime(5.9) == "5s"
    assert format_uptime(65) == "1m 5s"
    assert format_uptime(7200) == "2h 0m 0s"


def _free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _app():
    worker, _, _ = _setup()
    return create_app(worker, make_settings())


def test_health_server_is_listening_when_started():
    port = _free_port()

    server = start_health_server(_app(), port, host="127.0.0.1")
    try:
        assert server.started
        assert httpx.get(f"http://127.0.0.1:{port}/health", trust_env=False).json()["status"] == "healthy"
    finally:
        server.should_exit = True


def test_health_server_reports_port_already_in_use():
    with socket.socket() as blocker:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        port = blocker.getsockname()[1]

        with pytest.raises(RuntimeError, match="failed to start"):
            start_health_server(_app(), port, host="127.0.0.1")
