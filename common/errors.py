class ScannerError(Exception):
    """Base for every error raised by the scanner worker."""


class ConfigError(ScannerError, RuntimeError):
    pass


class OperationTimeoutError(ScannerError, TimeoutError):
    """The wrapped operation did not finish within its deadline.

    The operation itself is not cancelled; it keeps running in the
    background and its result is discarded.
    """

    def __init__(self, operation_name: str, timeout_ms: int):
        super().__init__(f"{operation_name} timed out after {timeout_ms}ms")
        self.operation_name = operation_name
        self.timeout_ms = timeout_ms


class ExtractionError(ScannerError):
    def __init__(self, message: str, *, provider: str | None = None, cost_usd: float = 0.0):
        super().__init__(message)
        self.provider = provider
        self.cost_usd = cost_usd


class EmptyResponseError(ScannerError):
    def __init__(self, message: str = "empty response"):
        super().__init__(message)


class ResponseFormatError(ScannerError):
    pass


class DocumentError(ScannerError):
    pass


class StorageError(ScannerError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PayloadError(ScannerError):
    pass
