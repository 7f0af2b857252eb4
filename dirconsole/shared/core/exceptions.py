from typing import Optional, Dict, Any


class ConsoleError(Exception):
    """Base exception for all directory console errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class NetworkError(ConsoleError):
    """Raised when a list or mutation operation fails on the wire or on the server."""
    def __init__(self, message: str, code: str = "network_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class ValidationError(ConsoleError):
    """Raised when a local precondition fails before any network call."""
    def __init__(self, message: str, code: str = "validation_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class StaleCompletion(ConsoleError):
    """A completion arrived for an operation that is no longer current. Never surfaced."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="stale_completion", details=details)


class ConfigurationError(ConsoleError):
    """Raised when console configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


def as_console_error(exc: BaseException, message: str) -> ConsoleError:
    """Return `exc` unchanged when already typed, else wrap it as a NetworkError."""
    if isinstance(exc, ConsoleError):
        return exc
    wrapped = NetworkError(
        message,
        details={"cause": str(exc), "cause_type": type(exc).__name__},
    )
    wrapped.__cause__ = exc
    return wrapped
