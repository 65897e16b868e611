"""
Two-factor authentication core.

- records: domain dataclasses (config, trusted devices, session state)
- policy: device-trust decisions
- verifier: per-method code verification
- gate: request gate stages
"""
from .errors import (
    TwoFactorError,
    Unauthenticated,
    NotEnabled,
    MissingCode,
    InvalidCode,
    RequireStepUp,
    RequireStepUpSensitive,
    TooManyAttempts,
    InfrastructureFailure,
    VerificationError,
)
from .records import (
    VerificationMethod,
    TwoFactorAuthConfig,
    DeviceInfo,
    DeviceLocation,
    TrustedDevice,
    SessionAuthState,
    AuditEvent,
)
from .policy import TrustPolicy
from .verifier import SecondFactorVerifier
from .gate import (
    GateState,
    AuthContext,
    GateResult,
    check_two_factor_required,
    verify_second_factor,
    require_sensitive_verification,
    validate_device_trust,
    trust_device,
    log_two_factor_event,
    device_info_from_headers,
)

__all__ = [
    "TwoFactorError",
    "Unauthenticated",
    "NotEnabled",
    "MissingCode",
    "InvalidCode",
    "RequireStepUp",
    "RequireStepUpSensitive",
    "TooManyAttempts",
    "InfrastructureFailure",
    "VerificationError",
    "VerificationMethod",
    "TwoFactorAuthConfig",
    "DeviceInfo",
    "DeviceLocation",
    "TrustedDevice",
    "SessionAuthState",
    "AuditEvent",
    "TrustPolicy",
    "SecondFactorVerifier",
    "GateState",
    "AuthContext",
    "GateResult",
    "check_two_factor_required",
    "verify_second_factor",
    "require_sensitive_verification",
    "validate_device_trust",
    "trust_device",
    "log_two_factor_event",
    "device_info_from_headers",
]
