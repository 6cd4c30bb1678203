from __future__ import annotations

from typing import Any


class BookingError(Exception):
    """Base for every error the booking core raises on purpose.

    Carries the HTTP status and a stable machine-readable code so the router layer can
    translate it without knowing which service raised it.
    """

    status_code = 400
    code = "BAD_REQUEST"
    # True only when a post-condition check failed after writes were attempted.
    invariant_violation = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
            "invariant_violation": self.invariant_violation,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailed(BookingError):
    status_code = 400
    code = "VALIDATION_FAILED"


class ActorRequired(BookingError):
    status_code = 401
    code = "ACTOR_REQUIRED"


class NotFound(BookingError):
    status_code = 404
    code = "NOT_FOUND"


class StateConflict(BookingError):
    status_code = 409
    code = "STATE_CONFLICT"


class PreconditionFailed(BookingError):
    status_code = 422
    code = "PRECONDITION_FAILED"


class InvariantViolation(BookingError):
    status_code = 409
    code = "USAGE_INVARIANT_FAILED"
    invariant_violation = True
    retryable = False


class StaffIdentityRequired(BookingError):
    status_code = 422
    code = "SSOT_EVENT_STAFF_REQUIRED"
