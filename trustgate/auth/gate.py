"""
Two-factor request gate.

An authenticated request passes through these stages:

    Stage A  check_two_factor_required   required-2FA gate
    Stage B  verify_second_factor        code verification (verify endpoint)
    Stage C  require_sensitive_verification  step-up for sensitive writes

plus three non-denying helpers: validate_device_trust (annotation),
trust_device (remember this device) and log_two_factor_event (audit).

Stages never mutate shared state. Each takes an immutable AuthContext and
returns a GateResult holding the terminal state, the updated context and,
on denial, the TwoFactorError to report. The caller threads the context
forward and persists context.session.
"""
import os
import uuid
import logging
import functools
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Mapping, Optional

from .errors import (
    InfrastructureFailure,
    InvalidCode,
    MissingCode,
    NotEnabled,
    RequireStepUp,
    RequireStepUpSensitive,
    TwoFactorError,
    Unauthenticated,
    VerificationError,
)
from .policy import TrustPolicy
from .records import (
    AuditEvent,
    DeviceInfo,
    DeviceLocation,
    SessionAuthState,
    TrustedDevice,
    VerificationMethod,
    utcnow,
)
from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)

TRUST_DEVICE_DAYS = int(os.getenv("TRUST_DEVICE_DAYS", "30"))

# Inbound device headers
FINGERPRINT_HEADER = "x-device-fingerprint"
DEVICE_HEADERS = (
    FINGERPRINT_HEADER,
    "x-device-name",
    "x-device-type",
    "x-device-os",
    "x-device-browser",
    "x-device-country",
    "x-device-city",
)


class GateState(str, Enum):
    UNCHECKED = "unchecked"
    REQUIRE_2FA_CHECKED = "require_2fa_checked"
    VERIFIED_CHECKED = "verified_checked"
    SENSITIVE_CHECKED = "sensitive_checked"
    PASS = "pass"
    DENIED_UNAUTHENTICATED = "denied_unauthenticated"
    DENIED_REQUIRE_2FA = "denied_require_2fa"
    DENIED_MISSING_CODE = "denied_missing_code"
    DENIED_NOT_ENABLED = "denied_not_enabled"
    DENIED_BAD_CODE = "denied_bad_code"
    DENIED_SENSITIVE = "denied_sensitive"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthContext:
    """What the gate knows about the current request's principal."""
    user_id: Optional[str]
    session_id: str = ""
    verified_2fa: bool = False
    session: SessionAuthState = field(default_factory=SessionAuthState)
    device: Optional[TrustedDevice] = None
    device_trusted: bool = False
    new_trusted_device: Optional[TrustedDevice] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def has_verified_second_factor(self) -> bool:
        """Verified on this request or earlier in this session."""
        return self.verified_2fa or self.session.verified_2fa

    @property
    def is_two_factor_satisfied(self) -> bool:
        return self.has_verified_second_factor or self.device_trusted


@dataclass(frozen=True)
class GateResult:
    """
    Outcome of one stage.

    Attributes:
        checked: Which check produced the result.
        state: PASS or one of the terminal DENIED_* / FAILED states.
        context: Context to thread into the next stage.
        error: The denial to report when state is not PASS.
    """
    checked: GateState
    state: GateState
    context: AuthContext
    error: Optional[TwoFactorError] = None

    @property
    def passed(self) -> bool:
        return self.state is GateState.PASS

    def raise_for_denial(self) -> AuthContext:
        """Raise the denial, or return the context when the stage passed."""
        if self.error is not None:
            raise self.error
        return self.context


def _passed(checked: GateState, context: AuthContext) -> GateResult:
    return GateResult(checked=checked, state=GateState.PASS, context=context)


def _denied(checked: GateState, state: GateState, context: AuthContext, error: TwoFactorError) -> GateResult:
    return GateResult(checked=checked, state=state, context=context, error=error)


def _stage_boundary(checked: GateState):
    """
    Turn unexpected failures inside a stage into InfrastructureFailure.

    The cause is logged; the caller only ever sees the generic error.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(context: AuthContext, *args, **kwargs) -> GateResult:
            try:
                return func(context, *args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{func.__name__} failed for user {mask_secret(context.user_id)}: {e}",
                    exc_info=True,
                )
                return _denied(checked, GateState.FAILED, context, InfrastructureFailure())
        return wrapper
    return decorator


def resolve_method(
    configured: Optional[VerificationMethod],
    hint: Optional[str],
) -> Optional[VerificationMethod]:
    """
    Pick the verification method.

    The stored method wins; the client's hint is only used when the stored
    value is not a known method.
    """
    return VerificationMethod.parse(configured) or VerificationMethod.parse(hint)


# ==========================================
# Stage A: required-2FA gate
# ==========================================

@_stage_boundary(GateState.REQUIRE_2FA_CHECKED)
def check_two_factor_required(
    context: AuthContext,
    store,
    policy: TrustPolicy,
    fingerprint: str = "",
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> GateResult:
    """
    Decide whether the request may proceed without a fresh second factor.

    Passes when 2FA is not enabled, when the session already verified, or
    when the fingerprint belongs to a trusted device (whose last-use fields
    are refreshed). Otherwise denies with REQUIRE_2FA, returning the session
    id as correlation token and flagging the session.
    """
    checked = GateState.REQUIRE_2FA_CHECKED
    if not context.is_authenticated:
        return _denied(checked, GateState.DENIED_UNAUTHENTICATED, context, Unauthenticated())

    config = store.get_two_factor_config(context.user_id)
    if config is None or not config.enabled:
        return _passed(checked, context)

    if context.has_verified_second_factor:
        return _passed(checked, context)

    if fingerprint:
        now = now or utcnow()
        device = policy.find_trusted_device(context.user_id, fingerprint, now)
        if device is not None:
            device = _refresh_device_usage(store, device, ip_address, now)
            return _passed(checked, replace(context, device=device, device_trusted=True))

    session = replace(context.session, require_2fa=True)
    return _denied(
        checked,
        GateState.DENIED_REQUIRE_2FA,
        replace(context, session=session),
        RequireStepUp(two_factor_id=context.session_id),
    )


def _refresh_device_usage(store, device: TrustedDevice, ip_address: Optional[str], now: datetime) -> TrustedDevice:
    device = device.mark_used(ip_address, now)
    try:
        store.touch_trusted_device(device.device_id, ip_address, now)
    except Exception as e:
        # Usage telemetry only; the skip decision stands
        logger.warning(f"Could not refresh usage of device {mask_secret(device.device_id)}: {e}")
    return device


# ==========================================
# Stage B: verification gate
# ==========================================

@_stage_boundary(GateState.VERIFIED_CHECKED)
def verify_second_factor(
    context: AuthContext,
    store,
    verifier,
    code: Optional[str],
    method_hint: Optional[str] = None,
) -> GateResult:
    """
    Verify a submitted code with the user's method.

    Rejected codes and verifier errors produce the same InvalidCode denial.
    On success both the request principal and the session are marked
    verified.
    """
    checked = GateState.VERIFIED_CHECKED
    if not context.is_authenticated:
        return _denied(checked, GateState.DENIED_UNAUTHENTICATED, context, Unauthenticated())

    if not code or not str(code).strip():
        return _denied(checked, GateState.DENIED_MISSING_CODE, context, MissingCode())

    config = store.get_two_factor_config(context.user_id)
    if config is None or not config.enabled:
        return _denied(checked, GateState.DENIED_NOT_ENABLED, context, NotEnabled())

    method = resolve_method(config.method, method_hint)
    if method is None:
        logger.warning(f"No usable verification method for user {mask_secret(context.user_id)}")
        return _denied(checked, GateState.DENIED_BAD_CODE, context, InvalidCode())

    try:
        verified = verifier.verify(method, context.user_id, str(code).strip())
    except VerificationError as e:
        logger.info(f"{method.value} verification error for user {mask_secret(context.user_id)}: {e}")
        verified = False

    if not verified:
        logger.info(f"Invalid {method.value} code for user {mask_secret(context.user_id)}")
        return _denied(checked, GateState.DENIED_BAD_CODE, context, InvalidCode())

    session = replace(context.session, verified_2fa=True)
    logger.info(f"2FA verified for user {mask_secret(context.user_id)} via {method.value}")
    return _passed(checked, replace(context, verified_2fa=True, session=session))


# ==========================================
# Stage C: sensitive-action gate
# ==========================================

@_stage_boundary(GateState.SENSITIVE_CHECKED)
def require_sensitive_verification(context: AuthContext, store) -> GateResult:
    """
    Step-up check for sensitive operations.

    Only an explicit verification (request or session) satisfies it;
    a trusted device alone does not.
    """
    checked = GateState.SENSITIVE_CHECKED
    if not context.is_authenticated:
        return _denied(checked, GateState.DENIED_UNAUTHENTICATED, context, Unauthenticated())

    config = store.get_two_factor_config(context.user_id)
    if config is None or not config.enabled or not config.require_for_sensitive_actions:
        return _passed(checked, context)

    if not context.has_verified_second_factor:
        return _denied(checked, GateState.DENIED_SENSITIVE, context, RequireStepUpSensitive())

    return _passed(checked, context)


# ==========================================
# Device trust validation (annotation only)
# ==========================================

def validate_device_trust(
    context: AuthContext,
    policy: TrustPolicy,
    fingerprint: str = "",
    now: Optional[datetime] = None,
) -> AuthContext:
    """
    Annotate the context with the calling device's trust status.

    Never denies. Without a fingerprint the context is returned unchanged;
    lookup failures are logged and leave the device untrusted.
    """
    if not fingerprint:
        return context

    try:
        device = policy.find_trusted_device(context.user_id, fingerprint, now)
    except Exception as e:
        logger.error(f"Error validating device trust for user {mask_secret(context.user_id)}: {e}", exc_info=True)
        return context

    if device is None:
        return replace(context, device=None, device_trusted=False)
    return replace(context, device=device, device_trusted=True)


# ==========================================
# Trust-device enrollment (best-effort)
# ==========================================

def device_info_from_headers(headers: Mapping[str, str], ip_address: Optional[str]) -> DeviceInfo:
    """Build DeviceInfo from x-device-* headers and the client address."""
    return DeviceInfo(
        fingerprint=headers.get(FINGERPRINT_HEADER) or "",
        name=headers.get("x-device-name") or "Trusted Device",
        type=headers.get("x-device-type") or "unknown",
        os=headers.get("x-device-os") or "Unknown",
        browser=headers.get("x-device-browser") or "Unknown",
        ip_address=ip_address,
        location=DeviceLocation(
            country=headers.get("x-device-country"),
            city=headers.get("x-device-city"),
        ),
    )


def trust_device(
    context: AuthContext,
    store,
    requested: bool,
    device_info: DeviceInfo,
    trust_days: int = TRUST_DEVICE_DAYS,
    now: Optional[datetime] = None,
) -> AuthContext:
    """
    Remember the calling device after a successful verification.

    Only acts when trust was requested and the principal verified in this
    request. Storage failures are logged and never surface to the caller.

    Returns:
        The context, with new_trusted_device set when a record was stored.
    """
    if not requested or not context.verified_2fa:
        return context

    if not device_info.fingerprint:
        logger.warning(f"Trust requested without device fingerprint for user {mask_secret(context.user_id)}")
        return context

    now = now or utcnow()
    device = TrustedDevice(
        device_id=str(uuid.uuid4()),
        user_id=context.user_id,
        fingerprint=device_info.fingerprint,
        name=device_info.name,
        type=device_info.type,
        os=device_info.os,
        browser=device_info.browser,
        ip_address=device_info.ip_address,
        location=device_info.location,
        is_verified=True,
        is_active=True,
        trust_method="manual",
        trust_expires_at=now + timedelta(days=trust_days),
        last_used_at=now,
        last_used_ip=device_info.ip_address,
        created_at=now,
    )

    try:
        saved = store.save_trusted_device(device)
    except Exception as e:
        logger.error(f"Error adding trusted device for user {mask_secret(context.user_id)}: {e}", exc_info=True)
        return context

    return replace(context, new_trusted_device=saved or device)


# ==========================================
# Audit logging (best-effort)
# ==========================================

def log_two_factor_event(
    context: AuthContext,
    audit,
    action: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Append one security event for the principal, if there is one."""
    if not context.is_authenticated:
        return

    event = AuditEvent(
        user_id=context.user_id,
        action=action,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        audit.append_audit_event(event)
    except Exception as e:
        logger.error(f"Error logging 2FA event {action} for user {mask_secret(context.user_id)}: {e}")
