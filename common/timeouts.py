import threading
from typing import Callable, Optional, TypeVar

from common.errors import OperationTimeoutError

T = TypeVar("T")


def with_timeout(operation: Callable[[], T], timeout_ms: int, operation_name: str = "operation") -> T:
    """
    Run operation() and wait at most timeout_ms for it.

    On expiry raises OperationTimeoutError. The operation is NOT cancelled:
    it keeps running on a daemon thread and whatever it returns or raises
    later is dropped.
    """
    outcome = {}
    done = threading.Event()

    def runner():
        try:
            outcome["value"] = operation()
        except BaseException as e:
            outcome["error"] = e
        finally:
            done.set()

    threading.Thread(target=runner, name=f"timeout:{operation_name}", daemon=True).start()

    if not done.wait(timeout_ms / 1000):
        raise OperationTimeoutError(operation_name, timeout_ms)

    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def with_timeout_and_retry(
    operation_factory: Callable[[], T],
    timeout_ms: int,
    max_retries: int,
    operation_name: str = "operation",
    on_retry: Optional[Callable[[int, OperationTimeoutError], None]] = None,
) -> T:
    """
    Call with_timeout() on a fresh operation up to max_retries + 1 times.

    Only OperationTimeoutError triggers another attempt; any other error
    propagates immediately. on_retry(attempt, error) runs before each retry,
    with the number of the attempt that just timed out.
    """
    last_error = None
    for attempt in range(1, max_retries + 2):
        try:
            return with_timeout(operation_factory, timeout_ms, operation_name)
        except OperationTimeoutError as e:
            last_error = e
            if attempt > max_retries:
                break
            if on_retry is not None:
                on_retry(attempt, e)
    raise last_error
