"""
Typed errors raised by the search pipeline.

Every exception that leaves SearchService is an AppError, so callers can
branch on `code` / `status_code` instead of inspecting messages.
"""


class AppError(Exception):
    def __init__(self, message: str, code: str = "UNKNOWN_ERROR", status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class SearchError(AppError):
    """Malformed query or request parameters. Not retryable."""

    def __init__(self, message: str, code: str = "SEARCH_ERROR"):
        super().__init__(message, code, 400)


class NetworkError(AppError):
    """Search backend unreachable or returned a non-success status."""

    def __init__(self, message: str = "Network request failed"):
        super().__init__(message, "NETWORK_ERROR", 503)


class CacheError(AppError):
    def __init__(self, message: str = "Cache operation failed"):
        super().__init__(message, "CACHE_ERROR", 500)


def handle_error(exc: BaseException) -> AppError:
    """Normalize any exception into an AppError, keeping the original message."""
    if isinstance(exc, AppError):
        return exc
    message = str(exc) or exc.__class__.__name__
    return AppError(message, "UNKNOWN_ERROR")
