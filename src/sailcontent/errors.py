from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_URL = "INVALID_URL"
    FETCH_FAILED = "FETCH_FAILED"
    INVALID_DATA = "INVALID_DATA"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    CACHE_UNAVAILABLE = "CACHE_UNAVAILABLE"
    INVALID_INPUT = "INVALID_INPUT"


class ContentFetchError(Exception):
    """Raised for every expected failure of the content pipeline.

    ``status_code`` is set for HTTP failures and ``time_until_reset`` (seconds)
    for ``RATE_LIMITED``, so callers can branch on recoverability without
    parsing the message. Tool handlers let it propagate to server.py, which
    serialises it into the MCP error response.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
        *,
        status_code: int | None = None,
        time_until_reset: float | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable
        self.status_code = status_code
        self.time_until_reset = time_until_reset

    def to_dict(self) -> dict:
        error: dict = {
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion,
            "recoverable": self.recoverable,
        }
        if self.status_code is not None:
            error["status_code"] = self.status_code
        if self.time_until_reset is not None:
            error["time_until_reset"] = round(self.time_until_reset, 1)
        return {"error": error}
