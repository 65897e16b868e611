"""
Second-factor primitives for TRUSTGATE.

TOTP (RFC 6238) via pyotp, provisioning QR codes for the setup wizard,
single-use backup codes (bcrypt-hashed at rest) and short-lived email codes.
"""
import base64
import hashlib
import hmac
import io
import os
import secrets
from typing import List, Tuple

import bcrypt
import pyotp
import qrcode

DEFAULT_ISSUER = os.getenv("TOTP_ISSUER", "TrustGate")


def generate_totp_secret() -> str:
    """Base32 secret for a new authenticator enrollment."""
    return pyotp.random_base32()


def get_totp_provisioning_uri(secret: str, account: str, issuer: str = DEFAULT_ISSUER) -> str:
    """otpauth:// URI shown to authenticator apps."""
    return pyotp.TOTP(secret).provisioning_uri(name=account, issuer_name=issuer)


def generate_qr_code_base64(uri: str) -> str:
    """
    Render a provisioning URI as a PNG QR code.

    Returns:
        Data URI ready for an <img> tag.
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    b64 = base64.b64encode(buffer.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{b64}"


def setup_totp(account: str, issuer: str = DEFAULT_ISSUER) -> Tuple[str, str, str]:
    """
    Generate everything the wizard's "scan the code" step needs.

    Returns:
        Tuple of (secret, provisioning_uri, qr_code_base64).
    """
    secret = generate_totp_secret()
    uri = get_totp_provisioning_uri(secret, account, issuer)
    return secret, uri, generate_qr_code_base64(uri)


def normalize_numeric_code(code: str) -> str:
    return "".join(ch for ch in code if ch.isdigit())


def verify_totp(secret: str, code: str, window: int = 1) -> bool:
    """
    Check a 6-digit TOTP code.

    Args:
        secret: Base32-encoded TOTP secret.
        code: Code as typed by the user (spaces tolerated).
        window: Number of 30-second steps accepted either side of now.
    """
    if not secret or not code:
        return False

    code = normalize_numeric_code(code)
    if len(code) != 6:
        return False

    return pyotp.TOTP(secret).verify(code, valid_window=window)


# ==========================================
# Backup codes
# ==========================================

def generate_backup_codes(count: int = 8, length: int = 8) -> List[str]:
    """
    Generate single-use recovery codes formatted as XXXX-XXXX.

    Shown to the user exactly once; only hashes are stored.
    """
    codes = []
    for _ in range(count):
        raw = secrets.token_hex(length // 2).upper()
        codes.append(f"{raw[:4]}-{raw[4:]}")
    return codes


def normalize_backup_code(code: str) -> str:
    return code.replace("-", "").replace(" ", "").upper()


def hash_backup_code(code: str) -> str:
    salt = bcrypt.gensalt(rounds=10)
    return bcrypt.hashpw(normalize_backup_code(code).encode("utf-8"), salt).decode("utf-8")


def hash_backup_codes(codes: List[str]) -> List[str]:
    return [hash_backup_code(code) for code in codes]


def verify_backup_code(code: str, hashed_code: str) -> bool:
    """Compare a typed backup code against one stored hash."""
    try:
        return bcrypt.checkpw(
            normalize_backup_code(code).encode("utf-8"),
            hashed_code.encode("utf-8"),
        )
    except ValueError:
        # Malformed stored hash
        return False


# ==========================================
# Email codes
# ==========================================

def generate_email_code(digits: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(digits))


def hash_email_code(code: str) -> str:
    """
    SHA-256 of the normalized code.

    Email codes live for minutes in the ephemeral store, so a fast hash
    is enough to keep the plain code out of Redis.
    """
    return hashlib.sha256(normalize_numeric_code(code).encode("utf-8")).hexdigest()


def email_code_matches(code: str, stored_hash: str) -> bool:
    return hmac.compare_digest(hash_email_code(code), stored_hash)
