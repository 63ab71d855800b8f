"""
Error taxonomy shared by services, provider adapters and the HTTP layer.

Every error carries a short human-readable message and a stable machine code.
Extra ``details`` are safe to show to API callers; raw provider payloads and
tracebacks belong in the server log only.
"""
from __future__ import annotations

from typing import Any, Optional


class LendingError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.details}


class ValidationError(LendingError):
    code = "validation_error"
    status_code = 422


class AuthorizationError(LendingError):
    code = "forbidden"
    status_code = 403


class AuthenticationRequired(AuthorizationError):
    code = "unauthenticated"
    status_code = 401


class NotFoundError(LendingError):
    code = "not_found"
    status_code = 404


class ProviderError(LendingError):
    code = "provider_error"
    status_code = 502


class ProviderUnavailable(ProviderError):
    code = "provider_unavailable"
    status_code = 503


class VerificationFailed(ProviderError):
    code = "verification_failed"
    status_code = 422


class ExpiredResourceError(LendingError):
    code = "expired"
    status_code = 410


class ConflictError(LendingError):
    code = "conflict"
    status_code = 409


class DuplicateMandate(ConflictError):
    code = "duplicate_mandate"


class MandateLimitExceeded(ConflictError):
    code = "mandate_limit_exceeded"


class AlreadySigned(ConflictError):
    code = "already_signed"


class AlreadyProcessed(ConflictError):
    code = "already_processed"


class StateError(LendingError):
    code = "invalid_state"
    status_code = 409
