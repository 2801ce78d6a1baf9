"""
Domain exceptions for the booking engine.

Raised inside a unit of work (which rolls it back) and converted to the
uniform ``{"success": False, ...}`` shape at the service boundary.
"""

from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base class for all expected booking-engine failures."""

    http_status = 400
    default_code = "BookingError"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class InvalidRequestError(BookingError):
    http_status = 400
    default_code = "InvalidRequest"


class ForbiddenError(BookingError):
    http_status = 403
    default_code = "Forbidden"


class NotFoundError(BookingError):
    http_status = 404
    default_code = "NotFound"


class ClassNotFoundError(NotFoundError):
    default_code = "ClassNotFound"


class UserNotFoundError(NotFoundError):
    default_code = "UserNotFound"


class BookingNotFoundError(NotFoundError):
    default_code = "BookingNotFound"


class ConflictError(BookingError):
    http_status = 409
    default_code = "Conflict"


class AlreadyBookedError(ConflictError):
    default_code = "AlreadyBooked"


class AlreadyCancelledError(ConflictError):
    default_code = "AlreadyCancelled"


class AlreadyCheckedInError(ConflictError):
    default_code = "AlreadyCheckedIn"


class WaitlistedError(ConflictError):
    default_code = "Waitlisted"


class PolicyDeniedError(BookingError):
    """A booking rule said no. ``type`` lets the UI branch on the reason."""

    http_status = 422
    default_code = "PolicyDenied"

    def __init__(
        self,
        message: str,
        type: str = "denied",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.type = type

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["type"] = self.type
        return out


class InsufficientCreditsError(BookingError):
    http_status = 402
    default_code = "InsufficientCredits"


class TransactionConflictError(BookingError):
    """Optimistic retries were exhausted; safe for the caller to retry."""

    http_status = 503
    default_code = "TransactionConflict"


_STATUS_BY_CODE: Dict[str, int] = {}


def _register(cls) -> None:
    _STATUS_BY_CODE[cls.default_code] = cls.http_status
    for sub in cls.__subclasses__():
        _register(sub)


_register(BookingError)
_STATUS_BY_CODE["InternalError"] = 500


def http_status_for(result: Dict[str, Any]) -> int:
    """HTTP status for a service result dict."""
    if result.get("success"):
        return 200
    return _STATUS_BY_CODE.get(str(result.get("code") or ""), 400)


def internal_error(exc: Exception) -> Dict[str, Any]:
    return {"success": False, "error": str(exc) or exc.__class__.__name__, "code": "InternalError"}
