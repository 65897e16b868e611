"""
Second-factor verification.

One entry point per method. Methods never fall back to each other: a TOTP
code is only ever checked against the TOTP secret, a backup code only
against the user's backup codes, and so on.
"""
import os
import logging

from . import mfa
from .errors import VerificationError
from .records import VerificationMethod
from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)

EMAIL_CODE_TTL = int(os.getenv("EMAIL_CODE_TTL", "600"))


class SecondFactorVerifier:
    """
    Validates submitted codes for a user.

    Args:
        db: Relational store (AuthDB) providing the 2FA config and the
            backup-code table.
        codes: Ephemeral store (EphemeralStore) holding hashed email codes.

    Domain problems (nothing configured, nothing left to consume) raise
    VerificationError. A wrong code is a plain False.
    """

    def __init__(self, db, codes):
        self.db = db
        self.codes = codes

    def verify(self, method: VerificationMethod, user_id: str, code: str) -> bool:
        """Dispatch to exactly one method."""
        if method is VerificationMethod.TOTP:
            return self.verify_totp(user_id, code)
        if method is VerificationMethod.BACKUP_CODES:
            return self.verify_backup_code(user_id, code)
        if method is VerificationMethod.EMAIL:
            return self.verify_email_code(user_id, code)
        raise VerificationError(f"Unsupported verification method: {method}")

    def verify_totp(self, user_id: str, code: str) -> bool:
        config = self.db.get_two_factor_config(user_id)
        if config is None or not config.totp_secret:
            raise VerificationError("TOTP is not configured for this account")
        return mfa.verify_totp(config.totp_secret, code)

    def verify_backup_code(self, user_id: str, code: str) -> bool:
        """
        Match and consume a backup code.

        The match is found by comparing hashes, then consumed with a single
        conditional update. If a concurrent request consumed the same code
        first, this call loses and returns False.
        """
        unused = self.db.get_unused_backup_codes(user_id)
        if not unused:
            raise VerificationError("No backup codes remaining")

        for code_id, code_hash in unused:
            if not mfa.verify_backup_code(code, code_hash):
                continue
            if self.db.consume_backup_code(code_id):
                logger.info(f"Backup code consumed for user {mask_secret(user_id)}, {len(unused) - 1} remaining")
                return True
            logger.warning(f"Backup code for user {mask_secret(user_id)} was already consumed")
            return False

        return False

    # ==========================================
    # Email codes
    # ==========================================

    def _email_key(self, user_id: str) -> str:
        return f"email_code:{user_id}"

    def issue_email_code(self, user_id: str) -> str:
        """
        Create a new email code, replacing any pending one.

        Only the hash is stored; the plain code is returned for delivery.
        """
        code = mfa.generate_email_code()
        self.codes.set(self._email_key(user_id), mfa.hash_email_code(code), EMAIL_CODE_TTL)
        return code

    def verify_email_code(self, user_id: str, code: str) -> bool:
        key = self._email_key(user_id)
        stored_hash = self.codes.get(key)
        if stored_hash is None:
            raise VerificationError("No email code pending")

        if not mfa.email_code_matches(code, stored_hash):
            return False

        # delete() succeeds for exactly one caller
        return self.codes.delete(key)

    def discard_email_code(self, user_id: str) -> None:
        """Drop any pending email code so it can no longer be guessed."""
        self.codes.delete(self._email_key(user_id))
