"""
Account Endpoints.

Example protected resources: the profile sits behind the required-2FA gate,
the password change additionally behind the sensitive-action gate.
"""
import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, status

from ..models import (
    ProfileResponse,
    PasswordChangeRequest,
    TokenResponse,
    ErrorResponse,
)
from ..deps import (
    get_db,
    get_current_user,
    get_session_states,
    require_two_factor,
    require_verified_for_sensitive,
)
from .auth import SESSION_HOURS
from ...auth.gate import AuthContext
from ...database.auth_db import AuthDB, hash_password, verify_password
from ...database.ephemeral import SessionStateStore
from ...utils.secrets import mask_secret

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/account", tags=["Account"])

GATE_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Not authenticated"},
    403: {"model": ErrorResponse, "description": "Second factor required"},
}


@router.get("/profile", response_model=ProfileResponse, responses=GATE_RESPONSES)
async def get_profile(
    context: AuthContext = Depends(require_two_factor),
    db: AuthDB = Depends(get_db),
):
    """Get current user profile."""
    user = db.get_user_by_id(context.user_id)
    config = db.get_two_factor_config(context.user_id)

    return ProfileResponse(
        user_id=str(user["user_id"]),
        email=user["email"],
        created_at=user["created_at"],
        last_login=user["last_login"],
        two_factor_enabled=bool(config and config.enabled),
        device_trusted=context.device_trusted,
    )


@router.post(
    "/password",
    response_model=TokenResponse,
    responses={**GATE_RESPONSES, 400: {"model": ErrorResponse, "description": "Current password incorrect"}},
)
async def change_password(
    request: PasswordChangeRequest,
    context: AuthContext = Depends(require_verified_for_sensitive),
    user: Dict = Depends(get_current_user),
    db: AuthDB = Depends(get_db),
    session_states: SessionStateStore = Depends(get_session_states),
):
    """
    Change the current user's password.

    Requires the current password. Every session is invalidated and a new
    token is returned; the new session keeps this session's 2FA state.
    """
    full_user = db.get_user_by_id(context.user_id)

    if not verify_password(request.current_password, full_user["password_hash"]):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    db.update_password(context.user_id, hash_password(request.new_password))
    db.invalidate_all_sessions(context.user_id)

    token = db.create_session(
        context.user_id,
        device_fingerprint=user.get("device_fingerprint"),
        expires_hours=SESSION_HOURS,
    )
    new_session = db.validate_session(token)
    session_states.save(new_session["session_id"], context.session)
    session_states.clear(context.session_id)

    logger.info(f"Password changed for user {mask_secret(context.user_id)}")

    config = db.get_two_factor_config(context.user_id)
    return TokenResponse(
        access_token=token,
        expires_in=SESSION_HOURS * 3600,
        user_id=context.user_id,
        email=full_user["email"],
        two_factor_enabled=bool(config and config.enabled),
    )
