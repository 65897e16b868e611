"""
Device-trust policy.

Decides whether a device fingerprint lets a user skip second-factor
verification. The decision is fail-closed: a missing record, an empty
fingerprint or any failing condition means "not trusted". Not being trusted
is a normal answer, never an exception; only storage failures raise.
"""
import logging
from datetime import datetime
from typing import Optional

from .records import TrustedDevice, utcnow
from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)


class TrustPolicy:
    """
    Read-only trust decisions over a device trust store.

    The store needs a single method:
        find_trusted_device(user_id, fingerprint) -> Optional[TrustedDevice]
    returning the active record for the pair, if any.
    """

    def __init__(self, store):
        self.store = store

    def find_trusted_device(
        self,
        user_id: str,
        fingerprint: str,
        now: Optional[datetime] = None,
    ) -> Optional[TrustedDevice]:
        """
        Return the device record if it currently qualifies for a skip.

        Args:
            user_id: Authenticated principal.
            fingerprint: Opaque client identifier; "" means none supplied.
            now: Evaluation time (defaults to current UTC time).

        Returns:
            The active, verified, unexpired record, or None.
        """
        if not user_id or not fingerprint:
            return None

        device = self.store.find_trusted_device(user_id, fingerprint)
        if device is None:
            return None

        if not device.is_trusted(now or utcnow()):
            logger.debug(
                f"Device {mask_secret(device.device_id)} not trusted "
                f"(active={device.is_active}, verified={device.is_verified}, "
                f"expired={device.is_trust_expired(now)})"
            )
            return None

        return device

    def should_skip_second_factor(
        self,
        user_id: str,
        fingerprint: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """True only for an active, verified, unexpired trusted device."""
        return self.find_trusted_device(user_id, fingerprint, now) is not None
