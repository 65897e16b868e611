"""
Pydantic Models for TRUSTGATE API.

Request and response models for all API endpoints.
"""
from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, EmailStr, Field, ConfigDict


# ============================================
# Authentication Models
# ============================================

class UserRegister(BaseModel):
    """
    User registration request.

    Password must be at least 8 characters.
    """
    email: EmailStr = Field(..., description="Valid email address")
    password: str = Field(..., min_length=8, description="Password (minimum 8 characters)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "alice@example.com",
                "password": "securepassword123"
            }
        }
    )


class UserLogin(BaseModel):
    """
    User login request.

    The second factor is not part of login. If the account has 2FA enabled
    and the device is not trusted, the response carries requires_2fa and
    the session must be verified through POST /2fa/verify.
    """
    email: EmailStr = Field(..., description="Registered email address")
    password: str = Field(..., description="Account password")


class TokenResponse(BaseModel):
    """Authentication token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Token expiration in seconds")
    user_id: str
    email: str
    two_factor_enabled: bool = False
    requires_2fa: bool = False
    two_factor_id: Optional[str] = Field(None, description="Correlation token of the pending challenge")


class PasswordChangeRequest(BaseModel):
    """
    Password change request.

    All sessions are invalidated; a fresh token is returned.
    """
    current_password: str = Field(..., description="Current account password")
    new_password: str = Field(..., min_length=8, description="New password (minimum 8 characters)")


class ProfileResponse(BaseModel):
    """Current user profile."""
    user_id: str
    email: str
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    two_factor_enabled: bool = False
    device_trusted: bool = False


# ============================================
# Two-Factor Enrollment Models
# ============================================

class SetupInitiateResponse(BaseModel):
    """Authenticator app setup data. Valid until setup is verified or expires."""
    qr_code: str = Field(..., description="PNG data URI of the provisioning QR code")
    manual_entry_key: str = Field(..., description="Base32 secret for manual entry")
    provisioning_uri: str
    expires_in: int = Field(..., description="Seconds until the pending setup expires")


class SetupVerifyRequest(BaseModel):
    """Confirm authenticator setup with the first code."""
    code: str = Field(..., min_length=6, max_length=8)
    method: Optional[str] = Field(None, description="totp, backup-codes or email (default totp)")
    require_for_sensitive_actions: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "123456",
                "method": "totp",
                "require_for_sensitive_actions": True
            }
        }
    )


class SetupVerifyResponse(BaseModel):
    """
    2FA enabled.

    Contains backup codes that are shown only once.
    Each backup code can only be used once.
    """
    enabled: bool = True
    method: str
    backup_codes: List[str] = Field(..., description="One-time backup codes (store securely!)")


class BackupCodesResponse(BaseModel):
    backup_codes: List[str]


class MethodUpdateRequest(BaseModel):
    """Change the verification method and/or the sensitive-action flag."""
    method: Optional[str] = None
    require_for_sensitive_actions: Optional[bool] = None


class TwoFactorStatusResponse(BaseModel):
    enabled: bool
    method: Optional[str] = None
    require_for_sensitive_actions: bool = False
    backup_codes_remaining: int = 0
    session_verified: bool = False


class EmailCodeResponse(BaseModel):
    sent: bool = True
    expires_in: int


# ============================================
# Verification & Device Models
# ============================================

class VerifyRequest(BaseModel):
    """
    Second-factor verification request.

    The method comes from the account's configuration; `method` is only
    used when the stored method is unusable.
    """
    code: Optional[str] = Field(None, description="TOTP, backup or email code")
    method: Optional[str] = Field(None, description="Method hint")
    trust_device: bool = Field(False, description="Remember this device after verification")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "123456",
                "trust_device": True
            }
        }
    )


class DeviceResponse(BaseModel):
    """A trusted device as shown to its owner."""
    device_id: str
    name: str
    type: str
    os: str
    browser: str
    ip_address: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    trusted: bool
    trust_method: str
    trust_expires_at: datetime
    last_used_at: Optional[datetime] = None
    last_used_ip: Optional[str] = None
    created_at: Optional[datetime] = None
    current: bool = False


class VerifyResponse(BaseModel):
    verified: bool = True
    trusted_device: Optional[DeviceResponse] = None


class DeviceListResponse(BaseModel):
    devices: List[DeviceResponse]
    total: int


class CurrentDeviceResponse(BaseModel):
    fingerprint_present: bool
    trusted: bool
    device: Optional[DeviceResponse] = None


# ============================================
# Health & Error Models
# ============================================

class HealthStatus(BaseModel):
    """API health status."""
    status: str = Field(..., description="healthy, degraded, or unhealthy")
    version: str
    services: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    code: Optional[str] = None
    detail: Optional[str] = None
    two_factor_id: Optional[str] = None
