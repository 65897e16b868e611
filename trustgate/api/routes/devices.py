"""
Trusted Device Endpoints.

List, inspect and revoke the devices that may skip the second factor.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..models import (
    DeviceResponse,
    DeviceListResponse,
    CurrentDeviceResponse,
    ErrorResponse,
)
from ..deps import (
    get_db,
    get_auth_context,
    get_policy,
    require_verified_for_sensitive,
    audit,
    device_fingerprint,
)
from ...auth import gate
from ...auth.gate import AuthContext
from ...auth.policy import TrustPolicy
from ...auth.records import TrustedDevice, as_utc, utcnow
from ...database.auth_db import AuthDB
from ...utils.secrets import mask_secret

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/2fa/devices", tags=["Trusted Devices"])


def device_response(device: TrustedDevice, current_fingerprint: Optional[str] = None) -> DeviceResponse:
    """Render a device for its owner. The fingerprint itself is not exposed."""
    now = utcnow()
    return DeviceResponse(
        device_id=device.device_id,
        name=device.name,
        type=device.type,
        os=device.os,
        browser=device.browser,
        ip_address=device.ip_address,
        country=device.location.country,
        city=device.location.city,
        trusted=device.is_trusted(now),
        trust_method=device.trust_method,
        trust_expires_at=as_utc(device.trust_expires_at),
        last_used_at=as_utc(device.last_used_at),
        last_used_ip=device.last_used_ip,
        created_at=as_utc(device.created_at),
        current=bool(current_fingerprint) and device.fingerprint == current_fingerprint,
    )


@router.get("", response_model=DeviceListResponse)
async def list_devices(
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    db: AuthDB = Depends(get_db),
):
    """
    List the user's active trusted devices.

    Devices whose trust window elapsed are listed with `trusted: false`
    until revoked.
    """
    fingerprint = device_fingerprint(request)
    devices = [
        device_response(device, fingerprint)
        for device in db.list_trusted_devices(context.user_id)
    ]
    return DeviceListResponse(devices=devices, total=len(devices))


@router.get("/current", response_model=CurrentDeviceResponse)
async def current_device(
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    policy: TrustPolicy = Depends(get_policy),
):
    """Trust status of the calling device."""
    fingerprint = device_fingerprint(request)
    context = gate.validate_device_trust(context, policy, fingerprint)

    return CurrentDeviceResponse(
        fingerprint_present=bool(fingerprint),
        trusted=context.device_trusted,
        device=device_response(context.device, fingerprint) if context.device else None,
    )


@router.delete(
    "/{device_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse, "description": "Device not found"}},
)
async def revoke_device(
    device_id: str,
    request: Request,
    context: AuthContext = Depends(require_verified_for_sensitive),
    db: AuthDB = Depends(get_db),
):
    """Revoke a trusted device. The record is kept but deactivated."""
    if not db.revoke_trusted_device(context.user_id, device_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Trusted device not found",
        )

    audit(request, context, db, "TRUSTED_DEVICE_REVOKED")
    logger.info(f"Trusted device {mask_secret(device_id)} revoked for user {mask_secret(context.user_id)}")
    return None
