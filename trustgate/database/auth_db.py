"""
Relational store for accounts, sessions and two-factor state.

This module provides connection management and operations for:
- User accounts and login sessions
- Two-factor configuration (soft-disabled, never deleted)
- Backup codes (single-use, consumed atomically)
- Trusted devices (device trust store)
- Security audit log (append-only)

Works against PostgreSQL in production and SQLite in tests; the SQL below
sticks to the common subset of both.
"""
import os
import secrets
import sqlite3
import uuid
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Tuple

import bcrypt
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from ..auth.records import (
    AuditEvent,
    DeviceLocation,
    TrustedDevice,
    TwoFactorAuthConfig,
    VerificationMethod,
    as_utc,
    utcnow,
)
from ..utils.secrets import get_secret, mask_secret

logger = logging.getLogger(__name__)


def _default_connection_string() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "trustgate")
    user = os.getenv("POSTGRES_USER", "trustgate_user")
    password = get_secret("POSTGRES_PASSWORD", "")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


class AuthDB:
    """
    Connection manager and data access for authentication state.

    Example usage:
        auth_db = AuthDB()

        config = auth_db.get_two_factor_config(user_id)
        device = auth_db.find_trusted_device(user_id, fingerprint)

        # Single-use consumption; False if another request won the race
        consumed = auth_db.consume_backup_code(code_id)
    """

    def __init__(self, connection_string: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy URL. Falls back to DATABASE_URL,
                             then to the POSTGRES_* environment variables.
        """
        if connection_string is None:
            connection_string = _default_connection_string()

        if connection_string.startswith("sqlite"):
            sqlite3.register_adapter(datetime, lambda value: value.isoformat())
            self.engine = create_engine(
                connection_string,
                connect_args={"check_same_thread": False},
                pool_pre_ping=True,
            )
        else:
            self.engine = create_engine(
                connection_string,
                poolclass=QueuePool,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_pre_ping=True,
                pool_recycle=300,
            )
        self.Session = sessionmaker(bind=self.engine)

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic commit/rollback.

        Usage:
            with auth_db.get_session() as session:
                result = session.execute(query)
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ==========================================
    # Users
    # ==========================================

    def create_user(self, email: str, password_hash: str) -> str:
        """
        Create a new user account.

        Returns:
            UUID of created user.

        Raises:
            ValueError: If email already exists.
        """
        user_id = str(uuid.uuid4())
        now = utcnow()
        email = email.lower().strip()

        with self.get_session() as session:
            existing = session.execute(
                text("SELECT user_id FROM users WHERE email = :email"),
                {"email": email}
            ).fetchone()

            if existing:
                raise ValueError(f"User with email '{email}' already exists")

            session.execute(
                text("""
                    INSERT INTO users (
                        user_id, email, password_hash, is_active,
                        created_at, updated_at
                    ) VALUES (
                        :user_id, :email, :password_hash, TRUE,
                        :now, :now
                    )
                """),
                {"user_id": user_id, "email": email, "password_hash": password_hash, "now": now}
            )

        logger.info(f"Created user {mask_secret(user_id)}")
        return user_id

    def get_user_by_email(self, email: str) -> Optional[Dict]:
        with self.get_session() as session:
            result = session.execute(
                text("""
                    SELECT user_id, email, password_hash, is_active, last_login, created_at
                    FROM users
                    WHERE email = :email
                """),
                {"email": email.lower().strip()}
            ).fetchone()
            return dict(result._mapping) if result else None

    def get_user_by_id(self, user_id: str) -> Optional[Dict]:
        with self.get_session() as session:
            result = session.execute(
                text("""
                    SELECT user_id, email, password_hash, is_active, last_login, created_at
                    FROM users
                    WHERE user_id = :user_id
                """),
                {"user_id": user_id}
            ).fetchone()
            return dict(result._mapping) if result else None

    def update_last_login(self, user_id: str) -> None:
        with self.get_session() as session:
            session.execute(
                text("UPDATE users SET last_login = :now, updated_at = :now WHERE user_id = :user_id"),
                {"user_id": user_id, "now": utcnow()}
            )

    def update_password(self, user_id: str, new_password_hash: str) -> None:
        with self.get_session() as session:
            session.execute(
                text("""
                    UPDATE users
                    SET password_hash = :password_hash, updated_at = :now
                    WHERE user_id = :user_id
                """),
                {"user_id": user_id, "password_hash": new_password_hash, "now": utcnow()}
            )

    # ==========================================
    # Sessions
    # ==========================================

    def create_session(
        self,
        user_id: str,
        device_fingerprint: Optional[str] = None,
        expires_hours: int = 24
    ) -> str:
        """
        Create a login session.

        Each session also gets a session_id, which is handed to clients as
        the correlation token of a step-up challenge. The bearer token itself
        is never echoed back.

        Returns:
            Session token (64-char hex string).
        """
        session_token = secrets.token_hex(32)
        now = utcnow()

        with self.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO sessions (
                        session_token, session_id, user_id, device_fingerprint,
                        created_at, expires_at, is_active
                    ) VALUES (
                        :session_token, :session_id, :user_id, :device_fingerprint,
                        :created_at, :expires_at, TRUE
                    )
                """),
                {
                    "session_token": session_token,
                    "session_id": str(uuid.uuid4()),
                    "user_id": user_id,
                    "device_fingerprint": device_fingerprint,
                    "created_at": now,
                    "expires_at": now + timedelta(hours=expires_hours),
                }
            )

        logger.debug(f"Created session for user {user_id}")
        return session_token

    def validate_session(self, session_token: str) -> Optional[Dict]:
        """
        Resolve a bearer token to its user.

        Returns:
            User dict (with session_id) if valid, None if invalid/expired.
        """
        with self.get_session() as session:
            result = session.execute(
                text("""
                    SELECT u.user_id, u.email, u.is_active, s.session_id,
                           s.expires_at, s.device_fingerprint
                    FROM sessions s
                    JOIN users u ON s.user_id = u.user_id
                    WHERE s.session_token = :token
                      AND s.is_active = TRUE
                      AND u.is_active = TRUE
                """),
                {"token": session_token}
            ).fetchone()

        if not result:
            return None

        expires_at = as_utc(result[4])
        if expires_at <= utcnow():
            return None

        return {
            "user_id": str(result[0]),
            "email": result[1],
            "is_active": bool(result[2]),
            "session_id": str(result[3]),
            "session_expires_at": expires_at,
            "device_fingerprint": result[5],
        }

    def invalidate_session(self, session_token: str) -> None:
        with self.get_session() as session:
            session.execute(
                text("UPDATE sessions SET is_active = FALSE WHERE session_token = :token"),
                {"token": session_token}
            )
        logger.debug("Invalidated session")

    def invalidate_all_sessions(self, user_id: str) -> int:
        """
        Invalidate all sessions for a user.

        Returns:
            Number of sessions invalidated.
        """
        with self.get_session() as session:
            result = session.execute(
                text("""
                    UPDATE sessions
                    SET is_active = FALSE
                    WHERE user_id = :user_id AND is_active = TRUE
                """),
                {"user_id": user_id}
            )
            count = result.rowcount
        logger.info(f"Invalidated {count} sessions for user {mask_secret(user_id)}")
        return count

    # ==========================================
    # Two-factor configuration
    # ==========================================

    def get_two_factor_config(self, user_id: str) -> Optional[TwoFactorAuthConfig]:
        """
        Load a user's 2FA configuration.

        Returns:
            The config, or None if the user never enrolled.
        """
        with self.get_session() as session:
            result = session.execute(
                text("""
                    SELECT user_id, enabled, method, require_for_sensitive_actions,
                           totp_secret, created_at, updated_at
                    FROM two_factor_auth
                    WHERE user_id = :user_id
                """),
                {"user_id": user_id}
            ).fetchone()

        if not result:
            return None

        return TwoFactorAuthConfig(
            user_id=str(result[0]),
            enabled=bool(result[1]),
            method=VerificationMethod.parse(result[2]),
            require_for_sensitive_actions=bool(result[3]),
            totp_secret=result[4],
            created_at=as_utc(result[5]),
            updated_at=as_utc(result[6]),
        )

    def save_two_factor_config(self, config: TwoFactorAuthConfig) -> None:
        """Insert or update the 2FA configuration for config.user_id."""
        now = utcnow()
        params = {
            "user_id": config.user_id,
            "enabled": config.enabled,
            "method": config.method.value if config.method else None,
            "require_for_sensitive_actions": config.require_for_sensitive_actions,
            "totp_secret": config.totp_secret,
            "now": now,
        }

        with self.get_session() as session:
            result = session.execute(
                text("""
                    UPDATE two_factor_auth
                    SET enabled = :enabled,
                        method = :method,
                        require_for_sensitive_actions = :require_for_sensitive_actions,
                        totp_secret = :totp_secret,
                        updated_at = :now
                    WHERE user_id = :user_id
                """),
                params
            )
            if result.rowcount == 0:
                session.execute(
                    text("""
                        INSERT INTO two_factor_auth (
                            user_id, enabled, method, require_for_sensitive_actions,
                            totp_secret, created_at, updated_at
                        ) VALUES (
                            :user_id, :enabled, :method, :require_for_sensitive_actions,
                            :totp_secret, :now, :now
                        )
                    """),
                    params
                )

        logger.info(
            f"Saved 2FA config for user {mask_secret(config.user_id)}: "
            f"enabled={config.enabled}, method={params['method']}"
        )

    def disable_two_factor(self, user_id: str) -> None:
        """
        Soft-disable 2FA. The row is kept; the TOTP secret is cleared.
        """
        with self.get_session() as session:
            session.execute(
                text("""
                    UPDATE two_factor_auth
                    SET enabled = FALSE, totp_secret = NULL, updated_at = :now
                    WHERE user_id = :user_id
                """),
                {"user_id": user_id, "now": utcnow()}
            )
        logger.info(f"Disabled 2FA for user {mask_secret(user_id)}")

    # ==========================================
    # Backup codes
    # ==========================================

    def replace_backup_codes(self, user_id: str, hashed_codes: List[str]) -> None:
        """
        Replace every backup code of a user with a fresh set.

        Args:
            user_id: UUID of user.
            hashed_codes: bcrypt hashes of the new codes (may be empty).
        """
        now = utcnow()
        with self.get_session() as session:
            session.execute(
                text("DELETE FROM backup_codes WHERE user_id = :user_id"),
                {"user_id": user_id}
            )
            for code_hash in hashed_codes:
                session.execute(
                    text("""
                        INSERT INTO backup_codes (code_id, user_id, code_hash, created_at)
                        VALUES (:code_id, :user_id, :code_hash, :now)
                    """),
                    {"code_id": str(uuid.uuid4()), "user_id": user_id, "code_hash": code_hash, "now": now}
                )
        logger.info(f"Stored {len(hashed_codes)} backup codes for user {mask_secret(user_id)}")

    def get_unused_backup_codes(self, user_id: str) -> List[Tuple[str, str]]:
        """
        Returns:
            List of (code_id, code_hash) for codes not yet consumed.
        """
        with self.get_session() as session:
            rows = session.execute(
                text("""
                    SELECT code_id, code_hash
                    FROM backup_codes
                    WHERE user_id = :user_id AND used_at IS NULL
                """),
                {"user_id": user_id}
            ).fetchall()
        return [(str(row[0]), row[1]) for row in rows]

    def consume_backup_code(self, code_id: str) -> bool:
        """
        Mark a backup code used in a single conditional statement.

        Returns:
            True if this call consumed the code, False if it was already used.
        """
        with self.get_session() as session:
            result = session.execute(
                text("""
                    UPDATE backup_codes
                    SET used_at = :now
                    WHERE code_id = :code_id AND used_at IS NULL
                """),
                {"code_id": code_id, "now": utcnow()}
            )
            consumed = result.rowcount == 1
        return consumed

    def count_unused_backup_codes(self, user_id: str) -> int:
        with self.get_session() as session:
            result = session.execute(
                text("""
                    SELECT COUNT(*) FROM backup_codes
                    WHERE user_id = :user_id AND used_at IS NULL
                """),
                {"user_id": user_id}
            ).fetchone()
        return result[0] if result else 0

    # ==========================================
    # Trusted devices
    # ==========================================

    _DEVICE_COLUMNS = """
        device_id, user_id, fingerprint, name, device_type, os, browser,
        ip_address, country, city, is_verified, is_active, trust_method,
        trust_expires_at, last_used_at, last_used_ip, created_at
    """

    @staticmethod
    def _row_to_device(row) -> TrustedDevice:
        data = row._mapping
        return TrustedDevice(
            device_id=str(data["device_id"]),
            user_id=str(data["user_id"]),
            fingerprint=data["fingerprint"],
            name=data["name"],
            type=data["device_type"],
            os=data["os"],
            browser=data["browser"],
            ip_address=data["ip_address"],
            location=DeviceLocation(country=data["country"], city=data["city"]),
            is_verified=bool(data["is_verified"]),
            is_active=bool(data["is_active"]),
            trust_method=data["trust_method"],
            trust_expires_at=as_utc(data["trust_expires_at"]),
            last_used_at=as_utc(data["last_used_at"]),
            last_used_ip=data["last_used_ip"],
            created_at=as_utc(data["created_at"]),
        )

    def find_trusted_device(self, user_id: str, fingerprint: str) -> Optional[TrustedDevice]:
        """
        Find the active trust record for (user, fingerprint).

        Expiry and verification are not filtered here; callers decide.
        """
        with self.get_session() as session:
            result = session.execute(
                text(f"""
                    SELECT {self._DEVICE_COLUMNS}
                    FROM trusted_devices
                    WHERE user_id = :user_id
                      AND fingerprint = :fingerprint
                      AND is_active = TRUE
                """),
                {"user_id": user_id, "fingerprint": fingerprint}
            ).fetchone()
        return self._row_to_device(result) if result else None

    def list_trusted_devices(self, user_id: str) -> List[TrustedDevice]:
        with self.get_session() as session:
            rows = session.execute(
                text(f"""
                    SELECT {self._DEVICE_COLUMNS}
                    FROM trusted_devices
                    WHERE user_id = :user_id AND is_active = TRUE
                    ORDER BY created_at DESC
                """),
                {"user_id": user_id}
            ).fetchall()
        return [self._row_to_device(row) for row in rows]

    _UPDATE_ACTIVE_DEVICE = """
        UPDATE trusted_devices
        SET name = :name, device_type = :device_type, os = :os,
            browser = :browser, ip_address = :ip_address,
            country = :country, city = :city,
            is_verified = :is_verified, is_active = :is_active,
            trust_method = :trust_method,
            trust_expires_at = :trust_expires_at,
            last_used_at = :last_used_at, last_used_ip = :last_used_ip
        WHERE user_id = :user_id
          AND fingerprint = :fingerprint
          AND is_active = TRUE
    """

    def save_trusted_device(self, device: TrustedDevice) -> TrustedDevice:
        """
        Persist a trusted device.

        At most one active record exists per (user, fingerprint), enforced
        by a partial unique index: if one is already present it is refreshed
        in place and keeps its device_id. A concurrent insert for the same
        pair turns into a refresh of the winner's record.

        Returns:
            The stored record.
        """
        params = {
            "device_id": device.device_id,
            "user_id": device.user_id,
            "fingerprint": device.fingerprint,
            "name": device.name,
            "device_type": device.type,
            "os": device.os,
            "browser": device.browser,
            "ip_address": device.ip_address,
            "country": device.location.country,
            "city": device.location.city,
            "is_verified": device.is_verified,
            "is_active": device.is_active,
            "trust_method": device.trust_method,
            "trust_expires_at": device.trust_expires_at,
            "last_used_at": device.last_used_at,
            "last_used_ip": device.last_used_ip,
            "created_at": device.created_at or utcnow(),
        }

        try:
            with self.get_session() as session:
                refreshed = session.execute(text(self._UPDATE_ACTIVE_DEVICE), params).rowcount > 0
                if not refreshed:
                    session.execute(
                        text(f"""
                            INSERT INTO trusted_devices ({self._DEVICE_COLUMNS})
                            VALUES (
                                :device_id, :user_id, :fingerprint, :name, :device_type, :os,
                                :browser, :ip_address, :country, :city, :is_verified,
                                :is_active, :trust_method, :trust_expires_at, :last_used_at,
                                :last_used_ip, :created_at
                            )
                        """),
                        params
                    )
        except IntegrityError:
            # Lost the insert race for this (user, fingerprint)
            with self.get_session() as session:
                session.execute(text(self._UPDATE_ACTIVE_DEVICE), params)
            refreshed = True

        action = "Refreshed" if refreshed else "Added"
        logger.info(f"{action} trusted device for user {mask_secret(device.user_id)}")
        return self.find_trusted_device(device.user_id, device.fingerprint)

    def touch_trusted_device(self, device_id: str, ip_address: Optional[str], used_at: datetime) -> None:
        """Refresh last-use telemetry. Concurrent writers: last one wins."""
        with self.get_session() as session:
            session.execute(
                text("""
                    UPDATE trusted_devices
                    SET last_used_at = :used_at, last_used_ip = :ip_address
                    WHERE device_id = :device_id
                """),
                {"device_id": device_id, "ip_address": ip_address, "used_at": used_at}
            )

    def revoke_trusted_device(self, user_id: str, device_id: str) -> bool:
        """
        Deactivate one of the user's trusted devices.

        Returns:
            True if a device was revoked.
        """
        with self.get_session() as session:
            result = session.execute(
                text("""
                    UPDATE trusted_devices
                    SET is_active = FALSE
                    WHERE device_id = :device_id AND user_id = :user_id AND is_active = TRUE
                """),
                {"device_id": device_id, "user_id": user_id}
            )
            revoked = result.rowcount > 0
        if revoked:
            logger.info(f"Revoked trusted device {mask_secret(device_id)} for user {mask_secret(user_id)}")
        return revoked

    def revoke_all_trusted_devices(self, user_id: str) -> int:
        with self.get_session() as session:
            result = session.execute(
                text("""
                    UPDATE trusted_devices
                    SET is_active = FALSE
                    WHERE user_id = :user_id AND is_active = TRUE
                """),
                {"user_id": user_id}
            )
            count = result.rowcount
        logger.info(f"Revoked {count} trusted devices for user {mask_secret(user_id)}")
        return count

    # ==========================================
    # Audit log
    # ==========================================

    def append_audit_event(self, event: AuditEvent) -> None:
        with self.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO audit_log (
                        event_id, user_id, action, action_type, resource_type,
                        ip_address, user_agent, created_at
                    ) VALUES (
                        :event_id, :user_id, :action, :action_type, :resource_type,
                        :ip_address, :user_agent, :created_at
                    )
                """),
                {
                    "event_id": str(uuid.uuid4()),
                    "user_id": event.user_id,
                    "action": event.action,
                    "action_type": event.action_type,
                    "resource_type": event.resource_type,
                    "ip_address": event.ip_address,
                    "user_agent": event.user_agent,
                    "created_at": event.timestamp,
                }
            )

    def list_audit_events(self, user_id: str, limit: int = 50) -> List[AuditEvent]:
        with self.get_session() as session:
            rows = session.execute(
                text("""
                    SELECT user_id, action, action_type, resource_type,
                           ip_address, user_agent, created_at
                    FROM audit_log
                    WHERE user_id = :user_id
                    ORDER BY created_at DESC
                    LIMIT :limit
                """),
                {"user_id": user_id, "limit": limit}
            ).fetchall()

        return [
            AuditEvent(
                user_id=str(row[0]),
                action=row[1],
                action_type=row[2],
                resource_type=row[3],
                ip_address=row[4],
                user_agent=row[5],
                timestamp=as_utc(row[6]),
            )
            for row in rows
        ]

    # ==========================================
    # Schema Initialization
    # ==========================================

    def init_schema(self) -> None:
        """
        Create tables and indexes if they do not exist.

        Call this once during application startup.
        """
        with self.get_session() as session:
            session.execute(text("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id VARCHAR(36) PRIMARY KEY,
                    email VARCHAR(255) UNIQUE NOT NULL,
                    password_hash VARCHAR(255) NOT NULL,
                    is_active BOOLEAN DEFAULT TRUE,
                    last_login TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """))

            session.execute(text("""
                CREATE TABLE IF NOT EXISTS sessions (
                    session_token VARCHAR(64) PRIMARY KEY,
                    session_id VARCHAR(36) UNIQUE NOT NULL,
                    user_id VARCHAR(36) NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
                    device_fingerprint VARCHAR(255),
                    is_active BOOLEAN DEFAULT TRUE,
                    created_at TIMESTAMP NOT NULL,
                    expires_at TIMESTAMP NOT NULL
                )
            """))

            session.execute(text("""
                CREATE TABLE IF NOT EXISTS two_factor_auth (
                    user_id VARCHAR(36) PRIMARY KEY REFERENCES users(user_id) ON DELETE CASCADE,
                    enabled BOOLEAN NOT NULL DEFAULT FALSE,
                    method VARCHAR(32),
                    require_for_sensitive_actions BOOLEAN NOT NULL DEFAULT FALSE,
                    totp_secret VARCHAR(64),
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """))

            session.execute(text("""
                CREATE TABLE IF NOT EXISTS backup_codes (
                    code_id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
                    code_hash VARCHAR(128) NOT NULL,
                    used_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL
                )
            """))

            session.execute(text("""
                CREATE TABLE IF NOT EXISTS trusted_devices (
                    device_id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
                    fingerprint VARCHAR(255) NOT NULL,
                    name VARCHAR(255),
                    device_type VARCHAR(64),
                    os VARCHAR(128),
                    browser VARCHAR(128),
                    ip_address VARCHAR(64),
                    country VARCHAR(128),
                    city VARCHAR(128),
                    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    trust_method VARCHAR(32) NOT NULL DEFAULT 'manual',
                    trust_expires_at TIMESTAMP NOT NULL,
                    last_used_at TIMESTAMP,
                    last_used_ip VARCHAR(64),
                    created_at TIMESTAMP NOT NULL
                )
            """))

            session.execute(text("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    event_id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL,
                    action VARCHAR(64) NOT NULL,
                    action_type VARCHAR(32) NOT NULL,
                    resource_type VARCHAR(64) NOT NULL,
                    ip_address VARCHAR(64),
                    user_agent TEXT,
                    created_at TIMESTAMP NOT NULL
                )
            """))

            session.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)
            """))
            session.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_backup_codes_user ON backup_codes(user_id, used_at)
            """))
            session.execute(text("""
                CREATE UNIQUE INDEX IF NOT EXISTS uq_trusted_devices_active
                ON trusted_devices(user_id, fingerprint) WHERE is_active = TRUE
            """))
            session.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_audit_log_user ON audit_log(user_id, created_at)
            """))

        logger.info("Database schema initialized")


# ==========================================
# Password Hashing Utilities
# ==========================================

def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))


# Singleton instance
_auth_db_instance: Optional[AuthDB] = None


def get_auth_db() -> AuthDB:
    """Get singleton AuthDB instance."""
    global _auth_db_instance
    if _auth_db_instance is None:
        _auth_db_instance = AuthDB()
    return _auth_db_instance
