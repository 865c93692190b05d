"""Structured engine errors with stable codes and retry hints."""

from __future__ import annotations

from typing import Any


class WerewolfError(Exception):
    code = "INTERNAL"
    status_code = 500
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "retryable": self.retryable}


class ValidationError(WerewolfError):
    """Unknown player/match/target or malformed input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class ForbiddenError(WerewolfError):
    """The actor's role (or liveness) does not allow the action."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(WerewolfError):
    code = "NOT_FOUND"
    status_code = 404


class PhaseExpiredError(WerewolfError):
    """The action arrived outside its phase, round or deadline."""

    code = "PHASE_EXPIRED"
    status_code = 409


class IdempotencyConflictError(WerewolfError):
    """An idempotency key was reused by another player or for another match."""

    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409


class RateLimitedError(WerewolfError):
    code = "RATE_LIMITED"
    status_code = 429
    retryable = True


class InternalError(WerewolfError):
    code = "INTERNAL"
    status_code = 500
    retryable = True
