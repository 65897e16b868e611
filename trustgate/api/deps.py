"""
FastAPI Dependencies for TRUSTGATE API.

Provides:
- Redis client and ephemeral stores
- Database connection
- Authentication and the 2FA request gate
- Lockout after repeated failed codes
- Audit logging
"""
import os
import logging
from typing import Optional, Dict

import redis
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..auth import gate
from ..auth.errors import Unauthenticated, TooManyAttempts
from ..auth.gate import AuthContext, FINGERPRINT_HEADER
from ..auth.notify import EmailSender
from ..auth.policy import TrustPolicy
from ..auth.verifier import SecondFactorVerifier
from ..database.auth_db import AuthDB, get_auth_db
from ..database.ephemeral import EphemeralStore, SessionStateStore, PendingSecretStore, AttemptLimiter
from ..utils.secrets import get_secret

logger = logging.getLogger(__name__)


# ============================================
# Redis Client
# ============================================

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client singleton.

    Returns None if Redis is not configured or unavailable.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", "6379"))
    password = get_secret("REDIS_PASSWORD", "") or None
    db = int(os.getenv("REDIS_DB", "0"))

    try:
        _redis_client = redis.Redis(
            host=host,
            port=port,
            password=password,
            db=db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        # Test connection
        _redis_client.ping()
        logger.info(f"Redis connected: {host}:{port}")
        return _redis_client
    except redis.ConnectionError as e:
        logger.warning(f"Redis connection failed: {e}. Ephemeral state will use in-memory fallback.")
        _redis_client = None
        return None


# Security scheme
security = HTTPBearer(auto_error=False)


# ============================================
# Storage Dependencies
# ============================================

def get_db() -> AuthDB:
    """Get database connection."""
    return get_auth_db()


_ephemeral_store: Optional[EphemeralStore] = None


def get_ephemeral_store() -> EphemeralStore:
    """Get singleton ephemeral store (Redis-backed if available)."""
    global _ephemeral_store
    if _ephemeral_store is None:
        _ephemeral_store = EphemeralStore(get_redis_client())
    return _ephemeral_store


def get_session_states(store: EphemeralStore = Depends(get_ephemeral_store)) -> SessionStateStore:
    return SessionStateStore(store)


def get_pending_secrets(store: EphemeralStore = Depends(get_ephemeral_store)) -> PendingSecretStore:
    return PendingSecretStore(store)


def get_attempt_limiter(store: EphemeralStore = Depends(get_ephemeral_store)) -> AttemptLimiter:
    return AttemptLimiter(store)


def get_verifier(
    db: AuthDB = Depends(get_db),
    store: EphemeralStore = Depends(get_ephemeral_store),
) -> SecondFactorVerifier:
    return SecondFactorVerifier(db, store)


def get_policy(db: AuthDB = Depends(get_db)) -> TrustPolicy:
    return TrustPolicy(db)


def get_email_sender() -> EmailSender:
    return EmailSender()


# ============================================
# Request Helpers
# ============================================

def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def device_fingerprint(request: Request) -> str:
    return request.headers.get(FINGERPRINT_HEADER, "")


# ============================================
# Authentication Dependencies
# ============================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AuthDB = Depends(get_db),
) -> Dict:
    """
    Validate bearer token and return current user.

    Raises:
        Unauthenticated: If token is missing, invalid, or expired.
    """
    if credentials is None:
        raise Unauthenticated()

    token = credentials.credentials

    # Validate session token
    user = db.validate_session(token)

    if user is None:
        raise Unauthenticated()

    # Store token in user dict for logout
    user["_session_token"] = token
    return user


async def get_auth_context(
    user: Dict = Depends(get_current_user),
    session_states: SessionStateStore = Depends(get_session_states),
) -> AuthContext:
    """Build the gate context for the authenticated principal."""
    session_id = user["session_id"]
    return AuthContext(
        user_id=str(user["user_id"]),
        session_id=session_id,
        session=session_states.get(session_id),
    )


# ============================================
# Request Gate Dependencies
# ============================================

async def require_two_factor(
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    db: AuthDB = Depends(get_db),
    policy: TrustPolicy = Depends(get_policy),
    session_states: SessionStateStore = Depends(get_session_states),
) -> AuthContext:
    """
    Required-2FA gate for protected endpoints.

    Raises:
        RequireStepUp: 2FA enabled, session unverified, device not trusted.
        InfrastructureFailure: Store unavailable.
    """
    result = gate.check_two_factor_required(
        context,
        db,
        policy,
        fingerprint=device_fingerprint(request),
        ip_address=client_ip(request),
    )
    if result.context.session != context.session:
        session_states.save(context.session_id, result.context.session)
    return result.raise_for_denial()


async def require_verified_for_sensitive(
    context: AuthContext = Depends(require_two_factor),
    db: AuthDB = Depends(get_db),
) -> AuthContext:
    """
    Gate for sensitive endpoints: required-2FA, then step-up.

    Both stages run on one context, so a password-only session is denied
    with REQUIRE_2FA even when sensitive actions are not flagged.

    Raises:
        RequireStepUp: 2FA enabled, session unverified, device not trusted.
        RequireStepUpSensitive: Sensitive actions need 2FA and the session
            has not verified (a trusted device does not count).
    """
    return gate.require_sensitive_verification(context, db).raise_for_denial()


async def check_verify_attempts(
    context: AuthContext = Depends(get_auth_context),
    limiter: AttemptLimiter = Depends(get_attempt_limiter),
) -> AuthContext:
    """
    Refuse code submissions while the user is locked out.

    Raises:
        TooManyAttempts: Too many failed codes within the lockout window.
    """
    if limiter.is_locked(context.user_id):
        raise TooManyAttempts(retry_after=limiter.window_seconds)
    return context


def audit(request: Request, context: AuthContext, db: AuthDB, action: str) -> None:
    """Record a security event for the current request."""
    gate.log_two_factor_event(
        context,
        db,
        action,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def audit_action(action: str):
    """
    Dependency factory that audits every request reaching an endpoint.

    Usage:
        @router.post("/setup/initiate", dependencies=[Depends(audit_action("2FA_SETUP_INITIATED"))])
    """
    async def dependency(
        request: Request,
        context: AuthContext = Depends(get_auth_context),
        db: AuthDB = Depends(get_db),
    ) -> None:
        audit(request, context, db, action)

    return dependency
