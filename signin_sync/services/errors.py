"""
Classified sync failures.

Every failure that leaves the fetcher, the record store or the sync
orchestrator carries a classification so callers can tell "try again now"
(throttled, transient) from "fix configuration" (forbidden) from "might
still be running" (timeout).
"""

from typing import Any, Dict, Optional


THROTTLED = "throttled"
FORBIDDEN = "forbidden"
TIMEOUT = "timeout"
TRANSIENT = "transient"
CANCELLED = "cancelled"


class SyncError(Exception):
    """Base class for classified sync failures."""

    classification: str = TRANSIENT
    retryable: bool = False

    def __init__(
        self,
        message: str,
        hint: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classification": self.classification,
            "message": self.message,
            "hint": self.hint,
            "retryable": self.retryable,
        }


class ThrottledError(SyncError):
    """Raised when the directory service rejects a request due to rate limits."""

    classification = THROTTLED
    retryable = True

    def __init__(
        self,
        message: str = "Microsoft Graph API rate limit exceeded",
        hint: Optional[str] = (
            "Please wait a few minutes and try again. "
            "Microsoft limits API requests per app."
        ),
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, hint=hint, status_code=status_code)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class ForbiddenError(SyncError):
    """Raised when the directory service denies access (missing consent or credentials)."""

    classification = FORBIDDEN


class SyncTimeoutError(SyncError):
    """The bounding deadline elapsed before the sync finished."""

    classification = TIMEOUT


class TransientError(SyncError):
    """Network failure or unexpected remote/store error."""

    classification = TRANSIENT
    retryable = True
