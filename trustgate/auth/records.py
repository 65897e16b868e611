"""
Domain records for two-factor authentication.

Plain immutable dataclasses shared by the policy engine, the request gate
and the persistence layer. Updates produce new instances via
``dataclasses.replace`` rather than mutating records in place.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value) -> Optional[datetime]:
    """
    Normalize a stored timestamp to an aware UTC datetime.

    Drivers differ: PostgreSQL returns datetimes (naive for TIMESTAMP
    columns), SQLite returns ISO strings. Naive values are taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class VerificationMethod(str, Enum):
    """Second-factor methods a user can verify with."""
    TOTP = "totp"
    BACKUP_CODES = "backup-codes"
    EMAIL = "email"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["VerificationMethod"]:
        """Return the matching method, or None for anything unrecognized."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class TwoFactorAuthConfig:
    """Per-user 2FA configuration. Soft-disabled, never deleted."""
    user_id: str
    enabled: bool = False
    method: Optional[VerificationMethod] = None
    require_for_sensitive_actions: bool = False
    totp_secret: Optional[str] = field(default=None, repr=False)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class DeviceLocation:
    country: Optional[str] = None
    city: Optional[str] = None


@dataclass(frozen=True)
class DeviceInfo:
    """Client-declared device metadata plus server-observed network hints."""
    fingerprint: str = ""
    name: str = "Trusted Device"
    type: str = "unknown"
    os: str = "Unknown"
    browser: str = "Unknown"
    ip_address: Optional[str] = None
    location: DeviceLocation = field(default_factory=DeviceLocation)


@dataclass(frozen=True)
class TrustedDevice:
    """
    A device the user chose to remember after a successful verification.

    Trust expiry is a computed predicate; expired records are kept.
    """
    device_id: str
    user_id: str
    fingerprint: str
    trust_expires_at: datetime
    name: str = "Trusted Device"
    type: str = "unknown"
    os: str = "Unknown"
    browser: str = "Unknown"
    ip_address: Optional[str] = None
    location: DeviceLocation = field(default_factory=DeviceLocation)
    is_verified: bool = False
    is_active: bool = True
    trust_method: str = "manual"
    last_used_at: Optional[datetime] = None
    last_used_ip: Optional[str] = None
    created_at: Optional[datetime] = None

    def is_trust_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now > as_utc(self.trust_expires_at)

    def is_trusted(self, now: Optional[datetime] = None) -> bool:
        """Active, verified and within its trust window."""
        return self.is_active and self.is_verified and not self.is_trust_expired(now)

    def mark_used(self, ip_address: Optional[str], now: Optional[datetime] = None) -> "TrustedDevice":
        return replace(self, last_used_at=now or utcnow(), last_used_ip=ip_address)


@dataclass(frozen=True)
class SessionAuthState:
    """Second-factor state carried by a login session."""
    require_2fa: bool = False
    verified_2fa: bool = False

    def to_dict(self) -> dict:
        return {"require_2fa": self.require_2fa, "verified_2fa": self.verified_2fa}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SessionAuthState":
        if not data:
            return cls()
        return cls(
            require_2fa=bool(data.get("require_2fa", False)),
            verified_2fa=bool(data.get("verified_2fa", False)),
        )


@dataclass(frozen=True)
class AuditEvent:
    """Append-only security event."""
    user_id: str
    action: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    action_type: str = "security"
    resource_type: str = "TwoFactorAuth"
    timestamp: datetime = field(default_factory=utcnow)
