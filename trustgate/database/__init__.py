"""
Storage layer for TRUSTGATE.

- AuthDB: relational store (users, sessions, 2FA config, backup codes,
  trusted devices, audit log)
- EphemeralStore: Redis-backed short-lived state with in-memory fallback
"""
from .auth_db import AuthDB, get_auth_db, hash_password, verify_password
from .ephemeral import EphemeralStore, SessionStateStore, PendingSecretStore, AttemptLimiter

__all__ = [
    "AuthDB",
    "get_auth_db",
    "hash_password",
    "verify_password",
    "EphemeralStore",
    "SessionStateStore",
    "PendingSecretStore",
    "AttemptLimiter",
]
