"""
Short-lived key/value state (Redis-backed with in-memory fallback).

Holds data that must not outlive a login session or a few minutes:
- SessionAuthState per session (require/verified flags)
- Pending TOTP secrets between setup initiate and setup verify
- Hashed email verification codes
- Failed second-factor attempt counters
"""
import os
import json
import time
import logging
import threading
from typing import Dict, Optional, Tuple

import redis

from ..auth.records import SessionAuthState

logger = logging.getLogger(__name__)

SESSION_STATE_TTL = int(os.getenv("SESSION_STATE_TTL", "86400"))
MFA_PENDING_TTL = int(os.getenv("MFA_PENDING_TTL", "600"))
VERIFY_MAX_ATTEMPTS = int(os.getenv("VERIFY_MAX_ATTEMPTS", "5"))
VERIFY_LOCKOUT_SECONDS = int(os.getenv("VERIFY_LOCKOUT_SECONDS", "900"))


class EphemeralStore:
    """
    Namespaced key/value store with per-key TTL.

    Uses Redis when a client is given. On Redis errors (or without a client)
    it falls back to a process-local dict guarded by a lock, so single-use
    semantics still hold within one process.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, namespace: str = "trustgate"):
        self.redis = redis_client
        self.namespace = namespace
        self._memory: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _memory_get(self, key: str) -> Optional[str]:
        entry = self._memory.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.time() >= expires_at:
            del self._memory[key]
            return None
        return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        full_key = self._key(key)
        if self.redis is not None:
            try:
                self.redis.setex(full_key, ttl_seconds, value)
                with self._lock:
                    self._memory.pop(full_key, None)
                return
            except redis.RedisError as e:
                logger.warning(f"Redis error storing {self.namespace} key: {e}")

        with self._lock:
            self._memory[full_key] = (value, time.time() + ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        """
        Read a key.

        Values written to memory during a Redis outage stay readable after
        Redis recovers, until they expire.
        """
        full_key = self._key(key)
        if self.redis is not None:
            try:
                value = self.redis.get(full_key)
                if value is not None:
                    return value
            except redis.RedisError as e:
                logger.warning(f"Redis error reading {self.namespace} key: {e}")

        with self._lock:
            return self._memory_get(full_key)

    def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True only for the caller that actually removed it, which makes
            this usable as a consume-once primitive.
        """
        full_key = self._key(key)
        if self.redis is not None:
            try:
                if self.redis.delete(full_key) == 1:
                    return True
            except redis.RedisError as e:
                logger.warning(f"Redis error deleting {self.namespace} key: {e}")

        with self._lock:
            if self._memory_get(full_key) is None:
                return False
            del self._memory[full_key]
            return True

    def pop(self, key: str) -> Optional[str]:
        """Atomically read and remove a key."""
        full_key = self._key(key)
        if self.redis is not None:
            try:
                value = self.redis.getdel(full_key)
                if value is not None:
                    return value
            except redis.RedisError as e:
                logger.warning(f"Redis error popping {self.namespace} key: {e}")

        with self._lock:
            value = self._memory_get(full_key)
            self._memory.pop(full_key, None)
            return value

    def incr(self, key: str, ttl_seconds: int) -> int:
        """
        Atomically increment a counter and return the new count.

        Every increment restarts the TTL, so the counter lives until
        ttl_seconds pass without a new increment.
        """
        full_key = self._key(key)
        if self.redis is not None:
            try:
                pipe = self.redis.pipeline()
                pipe.incr(full_key)
                pipe.expire(full_key, ttl_seconds)
                results = pipe.execute()
                return int(results[0])
            except redis.RedisError as e:
                logger.warning(f"Redis error incrementing {self.namespace} key: {e}")

        with self._lock:
            count = int(self._memory_get(full_key) or 0) + 1
            self._memory[full_key] = (str(count), time.time() + ttl_seconds)
            return count


class SessionStateStore:
    """Second-factor flags of each login session, keyed by session_id."""

    def __init__(self, store: EphemeralStore, ttl_seconds: int = SESSION_STATE_TTL):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def get(self, session_id: str) -> SessionAuthState:
        if not session_id:
            return SessionAuthState()
        raw = self.store.get(f"session:{session_id}")
        return SessionAuthState.from_dict(json.loads(raw) if raw else None)

    def save(self, session_id: str, state: SessionAuthState) -> None:
        if not session_id:
            return
        self.store.set(f"session:{session_id}", json.dumps(state.to_dict()), self.ttl_seconds)

    def clear(self, session_id: str) -> None:
        if session_id:
            self.store.delete(f"session:{session_id}")


class PendingSecretStore:
    """
    TOTP secrets generated by setup initiate, awaiting the first valid code.
    """

    def __init__(self, store: EphemeralStore, ttl_seconds: int = MFA_PENDING_TTL):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def put(self, user_id: str, secret: str) -> None:
        self.store.set(f"mfa_pending:{user_id}", secret, self.ttl_seconds)

    def take(self, user_id: str) -> Optional[str]:
        """Retrieve and remove the pending secret (None if absent/expired)."""
        return self.store.pop(f"mfa_pending:{user_id}")

    def clear(self, user_id: str) -> None:
        self.store.delete(f"mfa_pending:{user_id}")


class AttemptLimiter:
    """
    Counts failed second-factor attempts per user.

    Once max_attempts failures accumulate, the user is locked out until
    window_seconds pass without another failure. A success resets the count.
    """

    def __init__(
        self,
        store: EphemeralStore,
        max_attempts: int = VERIFY_MAX_ATTEMPTS,
        window_seconds: int = VERIFY_LOCKOUT_SECONDS,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    def _key(self, user_id: str) -> str:
        return f"verify_failures:{user_id}"

    def failures(self, user_id: str) -> int:
        return int(self.store.get(self._key(user_id)) or 0)

    def is_locked(self, user_id: str) -> bool:
        return self.failures(user_id) >= self.max_attempts

    def record_failure(self, user_id: str) -> int:
        """Count one failure. Returns the failures left before lockout."""
        count = self.store.incr(self._key(user_id), self.window_seconds)
        return max(0, self.max_attempts - count)

    def reset(self, user_id: str) -> None:
        self.store.delete(self._key(user_id))
