"""
Authentication Endpoints.

Provides user registration, login and logout. The second factor is
enforced afterwards by the request gate, not by login itself.
"""
import os
import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..models import (
    UserRegister,
    UserLogin,
    TokenResponse,
    ErrorResponse,
)
from ..deps import (
    get_db,
    get_current_user,
    get_policy,
    get_session_states,
    client_ip,
    device_fingerprint,
)
from ...auth import gate
from ...auth.gate import AuthContext, GateState
from ...auth.policy import TrustPolicy
from ...database.auth_db import AuthDB, hash_password, verify_password
from ...database.ephemeral import SessionStateStore
from ...utils.secrets import mask_secret

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])

SESSION_HOURS = int(os.getenv("SESSION_HOURS", "24"))


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse, "description": "Email already exists"},
    },
)
async def register(
    user_data: UserRegister,
    request: Request,
    db: AuthDB = Depends(get_db),
):
    """
    Register a new user account.

    Returns an access token for immediate use. New accounts start without 2FA.
    """
    password_hash = hash_password(user_data.password)

    try:
        user_id = db.create_user(
            email=user_data.email,
            password_hash=password_hash,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )

    session_token = db.create_session(
        user_id,
        device_fingerprint=device_fingerprint(request) or None,
        expires_hours=SESSION_HOURS,
    )
    db.update_last_login(user_id)

    logger.info(f"New user registered: {mask_secret(user_id)}")

    return TokenResponse(
        access_token=session_token,
        expires_in=SESSION_HOURS * 3600,
        user_id=user_id,
        email=user_data.email.lower(),
    )


@router.post(
    "/login",
    response_model=TokenResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        403: {"model": ErrorResponse, "description": "Account disabled"},
    },
)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AuthDB = Depends(get_db),
    policy: TrustPolicy = Depends(get_policy),
    session_states: SessionStateStore = Depends(get_session_states),
):
    """
    Authenticate user and return access token.

    If 2FA is enabled and the calling device is not trusted, the token is
    still issued but `requires_2fa` is set and `two_factor_id` identifies
    the challenge. Protected endpoints answer 403 REQUIRE_2FA until the
    session is verified with POST /2fa/verify.
    """
    user = db.get_user_by_email(credentials.email)

    if user is None or not verify_password(credentials.password, user["password_hash"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled",
        )

    user_id = str(user["user_id"])
    fingerprint = device_fingerprint(request)
    session_token = db.create_session(
        user_id,
        device_fingerprint=fingerprint or None,
        expires_hours=SESSION_HOURS,
    )
    session = db.validate_session(session_token)
    db.update_last_login(user_id)

    context = AuthContext(user_id=user_id, session_id=session["session_id"])
    result = gate.check_two_factor_required(
        context,
        db,
        policy,
        fingerprint=fingerprint,
        ip_address=client_ip(request),
    )
    if result.state is GateState.FAILED:
        db.invalidate_session(session_token)
        result.raise_for_denial()

    requires_2fa = result.state is GateState.DENIED_REQUIRE_2FA
    if requires_2fa:
        session_states.save(context.session_id, result.context.session)

    config = db.get_two_factor_config(user_id)

    logger.info(f"User logged in: {mask_secret(user_id)} (2FA pending: {requires_2fa})")

    return TokenResponse(
        access_token=session_token,
        expires_in=SESSION_HOURS * 3600,
        user_id=user_id,
        email=user["email"],
        two_factor_enabled=bool(config and config.enabled),
        requires_2fa=requires_2fa,
        two_factor_id=context.session_id if requires_2fa else None,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    user: Dict = Depends(get_current_user),
    db: AuthDB = Depends(get_db),
    session_states: SessionStateStore = Depends(get_session_states),
):
    """
    Logout current session.

    Invalidates the current access token and drops its 2FA state.
    """
    token = user.get("_session_token")
    if token:
        db.invalidate_session(token)
    session_states.clear(user["session_id"])
    logger.info(f"User logged out: {mask_secret(str(user['user_id']))}")

    return None
