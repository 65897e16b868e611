"""
Error taxonomy for the two-factor request gate.

Every denial carries an HTTP status, a machine-readable code and a
human-readable message. Messages are fixed per class so that callers cannot
learn which internal path produced a denial.
"""
from typing import Any, Dict


class TwoFactorError(Exception):
    """Base class for gate denials and failures."""
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: str = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body


class Unauthenticated(TwoFactorError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Unauthorized"


class NotEnabled(TwoFactorError):
    status_code = 400
    code = "2FA_NOT_ENABLED"
    message = "2FA not enabled"


class MissingCode(TwoFactorError):
    status_code = 400
    code = "MISSING_2FA_CODE"
    message = "Missing 2FA code"


class InvalidCode(TwoFactorError):
    """Covers both rejected codes and verifier errors."""
    status_code = 400
    code = "INVALID_2FA_CODE"
    message = "Invalid code"


class RequireStepUp(TwoFactorError):
    status_code = 403
    code = "REQUIRE_2FA"
    message = "2FA verification required"

    def __init__(self, two_factor_id: str):
        super().__init__(two_factor_id=two_factor_id)
        self.two_factor_id = two_factor_id


class RequireStepUpSensitive(TwoFactorError):
    status_code = 403
    code = "REQUIRE_2FA_SENSITIVE"
    message = "2FA verification required for this action"


class TooManyAttempts(TwoFactorError):
    """Too many failed codes; verification is locked for retry_after seconds."""
    status_code = 429
    code = "TOO_MANY_2FA_ATTEMPTS"
    message = "Too many verification attempts"

    def __init__(self, retry_after: int):
        super().__init__(retry_after=retry_after)
        self.retry_after = retry_after


class InfrastructureFailure(TwoFactorError):
    """Store or verifier unreachable. Never exposes the underlying cause."""
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error"


class VerificationError(Exception):
    """
    Raised by the second-factor verifier for domain problems
    (no secret configured, no codes left, ...).

    The gate reports these as InvalidCode.
    """
