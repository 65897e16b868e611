"""
Two-Factor Endpoints.

Enrollment (setup wizard backend), verification and configuration of the
second factor.
"""
import os
import logging
import smtplib
from dataclasses import replace
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..models import (
    SetupInitiateResponse,
    SetupVerifyRequest,
    SetupVerifyResponse,
    BackupCodesResponse,
    MethodUpdateRequest,
    TwoFactorStatusResponse,
    EmailCodeResponse,
    VerifyRequest,
    VerifyResponse,
    ErrorResponse,
)
from ..deps import (
    get_db,
    get_current_user,
    get_auth_context,
    get_session_states,
    get_pending_secrets,
    get_verifier,
    get_email_sender,
    get_attempt_limiter,
    require_verified_for_sensitive,
    check_verify_attempts,
    audit,
    audit_action,
    client_ip,
)
from .devices import device_response
from ...auth import gate, mfa
from ...auth.errors import InvalidCode, NotEnabled
from ...auth.gate import AuthContext, GateState
from ...auth.notify import EmailSender
from ...auth.records import TwoFactorAuthConfig, VerificationMethod
from ...auth.verifier import SecondFactorVerifier, EMAIL_CODE_TTL
from ...database.auth_db import AuthDB
from ...database.ephemeral import SessionStateStore, PendingSecretStore, AttemptLimiter
from ...utils.secrets import mask_secret

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/2fa", tags=["Two-Factor Authentication"])

BACKUP_CODE_COUNT = int(os.getenv("BACKUP_CODE_COUNT", "8"))


def _require_enabled_config(db: AuthDB, user_id: str) -> TwoFactorAuthConfig:
    config = db.get_two_factor_config(user_id)
    if config is None or not config.enabled:
        raise NotEnabled()
    return config


def _new_backup_codes(db: AuthDB, user_id: str) -> list:
    codes = mfa.generate_backup_codes(count=BACKUP_CODE_COUNT)
    db.replace_backup_codes(user_id, mfa.hash_backup_codes(codes))
    return codes


# ============================================
# Enrollment
# ============================================

@router.post(
    "/setup/initiate",
    response_model=SetupInitiateResponse,
    responses={400: {"model": ErrorResponse, "description": "2FA already enabled"}},
    dependencies=[Depends(audit_action("2FA_SETUP_INITIATED"))],
)
async def initiate_setup(
    user: Dict = Depends(get_current_user),
    db: AuthDB = Depends(get_db),
    pending: PendingSecretStore = Depends(get_pending_secrets),
):
    """
    Start authenticator enrollment.

    Returns a QR code and the secret for manual entry. 2FA is not active
    until the first code is confirmed with /2fa/setup/verify.
    """
    user_id = str(user["user_id"])

    config = db.get_two_factor_config(user_id)
    if config is not None and config.enabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="2FA is already enabled. Disable it first to set up a new authenticator.",
        )

    secret, uri, qr_code = mfa.setup_totp(user["email"])
    pending.put(user_id, secret)

    logger.info(f"2FA setup initiated for user {mask_secret(user_id)}")

    return SetupInitiateResponse(
        qr_code=qr_code,
        manual_entry_key=secret,
        provisioning_uri=uri,
        expires_in=pending.ttl_seconds,
    )


@router.post(
    "/setup/verify",
    response_model=SetupVerifyResponse,
    responses={400: {"model": ErrorResponse, "description": "No pending setup or invalid code"}},
)
async def verify_setup(
    body: SetupVerifyRequest,
    request: Request,
    context: AuthContext = Depends(check_verify_attempts),
    db: AuthDB = Depends(get_db),
    pending: PendingSecretStore = Depends(get_pending_secrets),
    session_states: SessionStateStore = Depends(get_session_states),
    limiter: AttemptLimiter = Depends(get_attempt_limiter),
):
    """
    Confirm enrollment with the first authenticator code and enable 2FA.

    Returns the backup codes. They are shown only once.
    """
    user_id = context.user_id

    secret = pending.take(user_id)
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No pending 2FA setup found. Please call /2fa/setup/initiate first.",
        )

    if not mfa.verify_totp(secret, body.code):
        # Keep the secret so the user can retry
        pending.put(user_id, secret)
        limiter.record_failure(user_id)
        raise InvalidCode()

    limiter.reset(user_id)

    method = VerificationMethod.parse(body.method) or VerificationMethod.TOTP
    db.save_two_factor_config(TwoFactorAuthConfig(
        user_id=user_id,
        enabled=True,
        method=method,
        require_for_sensitive_actions=body.require_for_sensitive_actions,
        totp_secret=secret,
    ))
    backup_codes = _new_backup_codes(db, user_id)

    session = replace(context.session, verified_2fa=True)
    session_states.save(context.session_id, session)
    audit(request, context, db, "2FA_ENABLED")

    logger.info(f"2FA enabled for user {mask_secret(user_id)} with method {method.value}")

    return SetupVerifyResponse(
        enabled=True,
        method=method.value,
        backup_codes=backup_codes,
    )


@router.post("/backup-codes/regenerate", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    request: Request,
    context: AuthContext = Depends(require_verified_for_sensitive),
    db: AuthDB = Depends(get_db),
):
    """Replace all backup codes. Previously issued codes stop working."""
    _require_enabled_config(db, context.user_id)
    backup_codes = _new_backup_codes(db, context.user_id)
    audit(request, context, db, "BACKUP_CODES_REGENERATED")
    return BackupCodesResponse(backup_codes=backup_codes)


@router.put("/method", response_model=TwoFactorStatusResponse)
async def update_method(
    body: MethodUpdateRequest,
    request: Request,
    context: AuthContext = Depends(require_verified_for_sensitive),
    db: AuthDB = Depends(get_db),
):
    """Change the verification method or the sensitive-action requirement."""
    config = _require_enabled_config(db, context.user_id)

    changes = {}
    if body.method is not None:
        method = VerificationMethod.parse(body.method)
        if method is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unsupported method: {body.method}",
            )
        changes["method"] = method
    if body.require_for_sensitive_actions is not None:
        changes["require_for_sensitive_actions"] = body.require_for_sensitive_actions

    config = replace(config, **changes)
    db.save_two_factor_config(config)
    audit(request, context, db, "2FA_METHOD_CHANGED")

    return TwoFactorStatusResponse(
        enabled=config.enabled,
        method=config.method.value if config.method else None,
        require_for_sensitive_actions=config.require_for_sensitive_actions,
        backup_codes_remaining=db.count_unused_backup_codes(context.user_id),
        session_verified=context.has_verified_second_factor,
    )


@router.post("/disable", status_code=status.HTTP_204_NO_CONTENT)
async def disable_two_factor(
    request: Request,
    context: AuthContext = Depends(require_verified_for_sensitive),
    db: AuthDB = Depends(get_db),
    session_states: SessionStateStore = Depends(get_session_states),
):
    """
    Disable 2FA.

    The configuration is kept but disabled; backup codes are cleared and
    every trusted device is revoked.
    """
    _require_enabled_config(db, context.user_id)

    db.disable_two_factor(context.user_id)
    db.replace_backup_codes(context.user_id, [])
    revoked = db.revoke_all_trusted_devices(context.user_id)
    session_states.clear(context.session_id)
    audit(request, context, db, "2FA_DISABLED")

    logger.info(f"2FA disabled for user {mask_secret(context.user_id)}, {revoked} trusted devices revoked")
    return None


@router.get("/status", response_model=TwoFactorStatusResponse)
async def get_status(
    context: AuthContext = Depends(get_auth_context),
    db: AuthDB = Depends(get_db),
):
    config = db.get_two_factor_config(context.user_id)
    if config is None or not config.enabled:
        return TwoFactorStatusResponse(
            enabled=False,
            session_verified=context.has_verified_second_factor,
        )

    return TwoFactorStatusResponse(
        enabled=True,
        method=config.method.value if config.method else None,
        require_for_sensitive_actions=config.require_for_sensitive_actions,
        backup_codes_remaining=db.count_unused_backup_codes(context.user_id),
        session_verified=context.has_verified_second_factor,
    )


@router.post(
    "/email/send",
    response_model=EmailCodeResponse,
    responses={503: {"model": ErrorResponse, "description": "Email delivery unavailable"}},
)
async def send_email_code(
    user: Dict = Depends(get_current_user),
    verifier: SecondFactorVerifier = Depends(get_verifier),
    sender: EmailSender = Depends(get_email_sender),
):
    """Email a single-use verification code to the account address."""
    if not sender.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Email delivery is not configured",
        )

    user_id = str(user["user_id"])
    code = verifier.issue_email_code(user_id)
    try:
        sender.send_verification_code(user["email"], code, EMAIL_CODE_TTL)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Email code delivery failed for user {mask_secret(user_id)}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Email delivery failed",
        )

    return EmailCodeResponse(sent=True, expires_in=EMAIL_CODE_TTL)


# ============================================
# Verification
# ============================================

@router.post(
    "/verify",
    response_model=VerifyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing or invalid code, or 2FA not enabled"},
    },
)
async def verify(
    body: VerifyRequest,
    request: Request,
    context: AuthContext = Depends(check_verify_attempts),
    db: AuthDB = Depends(get_db),
    verifier: SecondFactorVerifier = Depends(get_verifier),
    session_states: SessionStateStore = Depends(get_session_states),
    limiter: AttemptLimiter = Depends(get_attempt_limiter),
):
    """
    Verify the second factor for the current session.

    With `trust_device`, the calling device (x-device-* headers) is
    remembered so later logins from it skip the second factor.
    """
    result = gate.verify_second_factor(context, db, verifier, body.code, body.method)
    if result.state is GateState.DENIED_BAD_CODE and limiter.record_failure(context.user_id) == 0:
        # Locked out: a pending email code must not survive the lockout
        verifier.discard_email_code(context.user_id)
        logger.warning(f"2FA verification locked for user {mask_secret(context.user_id)}")
    context = result.raise_for_denial()
    limiter.reset(context.user_id)
    session_states.save(context.session_id, context.session)

    device_info = gate.device_info_from_headers(request.headers, client_ip(request))
    context = gate.trust_device(context, db, body.trust_device, device_info)
    audit(request, context, db, "2FA_VERIFIED")

    trusted = None
    if context.new_trusted_device is not None:
        trusted = device_response(context.new_trusted_device, device_info.fingerprint)

    return VerifyResponse(verified=True, trusted_device=trusted)
