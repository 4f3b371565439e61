import threading
import time

import pytest

from common.errors import OperationTimeoutError
from common.timeouts import with_timeout, with_timeout_and_retry


def test_returns_result_of_fast_operation():
    assert with_timeout(lambda: 42, 1000, "answer") == 42


def test_times_out_without_cancelling_the_operation():
    finished = threading.Event()

    def slow():
        time.sleep(0.3)
        finished.set()
        return "late"

    with pytest.raises(OperationTimeoutError) as info:
        with_timeout(slow, 50, "claude extraction")

    assert info.value.operation_name == "claude extraction"
    assert info.value.timeout_ms == 50
    assert "claude extraction timed out after 50ms" in str(info.value)
    assert isinstance(info.value, TimeoutError)

    # the underlying call still runs to completion in the background
    assert finished.wait(2)


def test_other_errors_propagate_unchanged():
    def broken():
        raise ValueError("bad input")

    with pytest.raises(ValueError, match="bad input"):
        with_timeout(broken, 1000, "broken")


def test_retries_only_after_timeouts():
    calls = []
    retries = []

    def factory():
        calls.append(1)
        if len(calls) == 1:
            time.sleep(0.3)
        return "ok"

    result = with_timeout_and_retry(factory, 50, 1, "extraction", on_retry=lambda n, e: retries.append((n, e)))

    assert result == "ok"
    assert len(calls) == 2
    assert [n for n, _ in retries] == [1]
    assert isinstance(retries[0][1], OperationTimeoutError)


def test_non_timeout_error_is_not_retried():
    calls = []

    def factory():
        calls.append(1)
        raise ConnectionError("refused")

    with pytest.raises(ConnectionError):
        with_timeout_and_retry(factory, 1000, 3, "extraction")

    assert len(calls) == 1


def test_raises_last_timeout_after_exhausting_retries():
    calls = []
    retries = []

    def factory():
        calls.append(1)
        time.sleep(0.2)

    with pytest.raises(OperationTimeoutError):
        with_timeout_and_retry(factory, 20, 2, "extraction", on_retry=lambda n, e: retries.append(n))

    assert len(calls) == 3
    assert retries == [1, 2]


def test_zero_retries_means_single_attempt():
    calls = []

    def factory():
        calls.append(1)
        time.sleep(0.2)

    with pytest.raises(OperationTimeoutError):
        with_timeout_and_retry(factory, 20, 0, "extraction")

    assert len(calls) == 1
