"""
Pytest configuration and shared fixtures for TRUSTGATE tests.

This module provides common test fixtures for:
- SQLite-backed AuthDB instances
- In-memory ephemeral stores
- Users, 2FA configurations and trusted devices
"""
import uuid
from datetime import timedelta

import pytest

from trustgate.auth.records import (
    DeviceLocation,
    TrustedDevice,
    TwoFactorAuthConfig,
    VerificationMethod,
    utcnow,
)
from trustgate.database.auth_db import AuthDB
from trustgate.database.ephemeral import EphemeralStore


# ============================================
# Storage Fixtures
# ============================================

@pytest.fixture
def auth_db(tmp_path):
    """
    AuthDB on a throwaway SQLite file with the schema created.
    """
    db = AuthDB(f"sqlite:///{tmp_path / 'trustgate.db'}")
    db.init_schema()
    yield db
    db.engine.dispose()


@pytest.fixture
def memory_store():
    """Ephemeral store without Redis (in-memory fallback only)."""
    return EphemeralStore(redis_client=None)


@pytest.fixture
def mock_redis_client():
    """
    Mock Redis client for ephemeral state.
    Implements setex/get/delete/getdel and incr pipelines with an in-memory dict.
    """
    class MockRedisClient:
        def __init__(self):
            self.store = {}
            self.expiry = {}

        def setex(self, key, ttl, value):
            self.store[key] = value
            self.expiry[key] = ttl
            return True

        def get(self, key):
            return self.store.get(key)

        def delete(self, key):
            self.expiry.pop(key, None)
            return 1 if self.store.pop(key, None) is not None else 0

        def getdel(self, key):
            self.expiry.pop(key, None)
            return self.store.pop(key, None)

        def pipeline(self):
            client = self

            class MockPipeline:
                def __init__(self):
                    self.results = []

                def incr(self, key):
                    client.store[key] = str(int(client.store.get(key, 0)) + 1)
                    self.results.append(int(client.store[key]))

                def expire(self, key, ttl):
                    client.expiry[key] = ttl
                    self.results.append(True)

                def execute(self):
                    return self.results

            return MockPipeline()

        def ping(self):
            return True

    return MockRedisClient()


# ============================================
# Domain Fixtures
# ============================================

@pytest.fixture
def user_id():
    return str(uuid.uuid4())


@pytest.fixture
def totp_config(user_id):
    """Enabled TOTP configuration with a fixed base32 secret."""
    return TwoFactorAuthConfig(
        user_id=user_id,
        enabled=True,
        method=VerificationMethod.TOTP,
        require_for_sensitive_actions=True,
        totp_secret="JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP",
    )


@pytest.fixture
def make_device(user_id):
    """
    Factory for TrustedDevice records.

    Defaults describe a device that qualifies for a skip; override any
    field to break one condition.
    """
    def _make(**overrides):
        now = utcnow()
        fields = dict(
            device_id=str(uuid.uuid4()),
            user_id=user_id,
            fingerprint="fp-laptop",
            name="Work laptop",
            type="desktop",
            os="macOS",
            browser="Firefox",
            ip_address="203.0.113.7",
            location=DeviceLocation(country="CH", city="Zurich"),
            is_verified=True,
            is_active=True,
            trust_method="manual",
            trust_expires_at=now + timedelta(days=30),
            created_at=now,
        )
        fields.update(overrides)
        return TrustedDevice(**fields)

    return _make
