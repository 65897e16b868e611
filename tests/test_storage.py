"""
Tests for the storage layer.

Covers:
- Users and login sessions
- 2FA configuration (soft disable)
- Trusted device persistence and revocation
- Audit log
- Ephemeral store with Redis and with the in-memory fallback
- Failed-attempt lockout
"""
import threading
import uuid
from dataclasses import replace
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import redis
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from trustgate.auth.records import (
    AuditEvent,
    SessionAuthState,
    VerificationMethod,
    utcnow,
)
from trustgate.database.auth_db import hash_password, verify_password
from trustgate.database.ephemeral import (
    AttemptLimiter,
    EphemeralStore,
    PendingSecretStore,
    SessionStateStore,
)


# ============================================
# Users & Sessions
# ============================================

class TestUsersAndSessions:
    """Test accounts and bearer sessions."""

    def test_duplicate_email_rejected(self, auth_db):
        auth_db.create_user("alice@example.com", hash_password("password123"))

        with pytest.raises(ValueError):
            auth_db.create_user("Alice@Example.com", hash_password("password123"))

    def test_session_round_trip(self, auth_db):
        user_id = auth_db.create_user("bob@example.com", hash_password("password123"))

        token = auth_db.create_session(user_id, device_fingerprint="fp-1")
        session = auth_db.validate_session(token)

        assert len(token) == 64
        assert session["user_id"] == user_id
        assert session["email"] == "bob@example.com"
        assert session["device_fingerprint"] == "fp-1"
        assert session["session_id"] != token

    def test_invalidated_session_rejected(self, auth_db):
        user_id = auth_db.create_user("carol@example.com", hash_password("password123"))
        token = auth_db.create_session(user_id)

        auth_db.invalidate_session(token)

        assert auth_db.validate_session(token) is None

    def test_expired_session_rejected(self, auth_db):
        user_id = auth_db.create_user("dave@example.com", hash_password("password123"))
        token = auth_db.create_session(user_id, expires_hours=-1)

        assert auth_db.validate_session(token) is None

    def test_password_hashing(self):
        password_hash = hash_password("password123")

        assert verify_password("password123", password_hash)
        assert not verify_password("password124", password_hash)


# ============================================
# Two-factor configuration
# ============================================

class TestTwoFactorConfig:
    """Test configuration persistence."""

    def test_missing_config(self, auth_db, user_id):
        assert auth_db.get_two_factor_config(user_id) is None

    def test_save_and_update(self, auth_db, totp_config):
        auth_db.save_two_factor_config(totp_config)
        auth_db.save_two_factor_config(replace(totp_config, method=VerificationMethod.EMAIL))

        config = auth_db.get_two_factor_config(totp_config.user_id)
        assert config.enabled is True
        assert config.method is VerificationMethod.EMAIL
        assert config.require_for_sensitive_actions is True
        assert config.totp_secret == totp_config.totp_secret

    def test_soft_disable_keeps_row(self, auth_db, totp_config):
        auth_db.save_two_factor_config(totp_config)

        auth_db.disable_two_factor(totp_config.user_id)

        config = auth_db.get_two_factor_config(totp_config.user_id)
        assert config is not None
        assert config.enabled is False
        assert config.totp_secret is None

    def test_unknown_stored_method_parses_to_none(self, auth_db, totp_config):
        auth_db.save_two_factor_config(totp_config)
        with auth_db.get_session() as session:
            session.execute(
                text("UPDATE two_factor_auth SET method = 'sms' WHERE user_id = :user_id"),
                {"user_id": totp_config.user_id},
            )

        assert auth_db.get_two_factor_config(totp_config.user_id).method is None


# ============================================
# Trusted devices
# ============================================

class TestTrustedDevices:
    """Test the device trust store."""

    def test_save_and_find(self, auth_db, make_device, user_id):
        device = make_device()

        saved = auth_db.save_trusted_device(device)
        found = auth_db.find_trusted_device(user_id, "fp-laptop")

        assert saved == found
        assert found.device_id == device.device_id
        assert found.is_trusted()
        assert found.location.city == "Zurich"
        assert found.type == "desktop"

    def test_same_fingerprint_refreshes_existing(self, auth_db, make_device, user_id):
        first = auth_db.save_trusted_device(make_device())
        later = utcnow() + timedelta(days=60)

        second = auth_db.save_trusted_device(make_device(name="Renamed", trust_expires_at=later))

        assert second.device_id == first.device_id
        assert second.name == "Renamed"
        assert len(auth_db.list_trusted_devices(user_id)) == 1

    def test_expired_record_is_returned_but_not_trusted(self, auth_db, make_device, user_id):
        auth_db.save_trusted_device(make_device(trust_expires_at=utcnow() - timedelta(days=1)))

        found = auth_db.find_trusted_device(user_id, "fp-laptop")

        assert found is not None
        assert found.is_trust_expired()
        assert not found.is_trusted()

    def test_touch_updates_last_use(self, auth_db, make_device, user_id):
        device = auth_db.save_trusted_device(make_device())
        used_at = utcnow()

        auth_db.touch_trusted_device(device.device_id, "198.51.100.2", used_at)

        found = auth_db.find_trusted_device(user_id, "fp-laptop")
        assert found.last_used_ip == "198.51.100.2"
        assert found.last_used_at == used_at

    def test_revoke_is_soft_and_scoped_to_owner(self, auth_db, make_device, user_id):
        device = auth_db.save_trusted_device(make_device())

        assert auth_db.revoke_trusted_device("someone-else", device.device_id) is False
        assert auth_db.revoke_trusted_device(user_id, device.device_id) is True
        assert auth_db.revoke_trusted_device(user_id, device.device_id) is False
        assert auth_db.find_trusted_device(user_id, "fp-laptop") is None

    def test_concurrent_saves_keep_one_active_record(self, auth_db, make_device, user_id):
        saved = []
        barrier = threading.Barrier(8)

        def attempt():
            device = make_device()
            barrier.wait()
            saved.append(auth_db.save_trusted_device(device))

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(saved) == 8
        assert len(auth_db.list_trusted_devices(user_id)) == 1
        assert len({device.device_id for device in saved}) == 1

    def test_revoked_record_does_not_block_new_trust(self, auth_db, make_device, user_id):
        first = auth_db.save_trusted_device(make_device())
        auth_db.revoke_trusted_device(user_id, first.device_id)

        second = auth_db.save_trusted_device(make_device())

        assert second.device_id != first.device_id
        assert [device.device_id for device in auth_db.list_trusted_devices(user_id)] == [second.device_id]

    def test_duplicate_active_insert_rejected_by_schema(self, auth_db, make_device, user_id):
        auth_db.save_trusted_device(make_device())

        with pytest.raises(IntegrityError):
            with auth_db.get_session() as session:
                session.execute(
                    text("""
                        INSERT INTO trusted_devices (
                            device_id, user_id, fingerprint, trust_expires_at, created_at
                        ) VALUES (:device_id, :user_id, 'fp-laptop', :now, :now)
                    """),
                    {"device_id": str(uuid.uuid4()), "user_id": user_id, "now": utcnow()},
                )

    def test_revoke_all(self, auth_db, make_device, user_id):
        auth_db.save_trusted_device(make_device(fingerprint="fp-a"))
        auth_db.save_trusted_device(make_device(fingerprint="fp-b"))

        assert auth_db.revoke_all_trusted_devices(user_id) == 2
        assert auth_db.list_trusted_devices(user_id) == []


class TestAuditLog:
    """Test the append-only audit log."""

    def test_append_and_list(self, auth_db, user_id):
        auth_db.append_audit_event(AuditEvent(user_id=user_id, action="2FA_ENABLED", ip_address="192.0.2.1"))
        auth_db.append_audit_event(AuditEvent(user_id=user_id, action="2FA_VERIFIED"))

        events = auth_db.list_audit_events(user_id)

        assert {event.action for event in events} == {"2FA_ENABLED", "2FA_VERIFIED"}
        assert all(event.resource_type == "TwoFactorAuth" for event in events)


# ============================================
# Ephemeral state
# ============================================

class TestEphemeralStore:
    """Test short-lived state with and without Redis."""

    def test_memory_set_get_delete(self, memory_store):
        memory_store.set("k", "v", 60)

        assert memory_store.get("k") == "v"
        assert memory_store.delete("k") is True
        assert memory_store.delete("k") is False
        assert memory_store.get("k") is None

    def test_memory_expiry(self, memory_store):
        memory_store.set("k", "v", 0)

        assert memory_store.get("k") is None

    def test_memory_pop_is_single_use(self, memory_store):
        memory_store.set("k", "v", 60)

        assert memory_store.pop("k") == "v"
        assert memory_store.pop("k") is None

    def test_redis_keys_are_namespaced(self, mock_redis_client):
        store = EphemeralStore(mock_redis_client, namespace="tg")

        store.set("k", "v", 60)

        assert mock_redis_client.store == {"tg:k": "v"}
        assert mock_redis_client.expiry == {"tg:k": 60}
        assert store.delete("k") is True
        assert store.delete("k") is False

    def test_redis_error_falls_back_to_memory(self):
        client = MagicMock()
        client.setex.side_effect = redis.ConnectionError("down")
        client.get.side_effect = redis.ConnectionError("down")
        store = EphemeralStore(client)

        store.set("k", "v", 60)

        assert store.get("k") == "v"

    def test_value_written_during_outage_survives_recovery(self):
        client = MagicMock()
        client.setex.side_effect = redis.ConnectionError("down")
        store = EphemeralStore(client)
        store.set("k", "v", 60)

        # Redis is back but never saw the write
        client.get.return_value = None
        client.getdel.return_value = None
        client.delete.return_value = 0

        assert store.get("k") == "v"
        assert store.pop("k") == "v"
        assert store.pop("k") is None
        assert store.delete("k") is False

    def test_redis_write_replaces_outage_value(self, mock_redis_client):
        store = EphemeralStore(mock_redis_client)
        store.redis = None
        store.set("k", "old", 60)
        store.redis = mock_redis_client

        store.set("k", "new", 60)
        mock_redis_client.store.clear()

        assert store.get("k") is None

    def test_incr_counts_in_memory(self, memory_store):
        assert memory_store.incr("n", 60) == 1
        assert memory_store.incr("n", 60) == 2
        assert memory_store.get("n") == "2"

    def test_incr_uses_redis_pipeline(self, mock_redis_client):
        store = EphemeralStore(mock_redis_client, namespace="tg")

        assert store.incr("n", 900) == 1
        assert store.incr("n", 900) == 2
        assert mock_redis_client.expiry == {"tg:n": 900}


class TestSessionStateStore:
    """Test per-session 2FA flags."""

    def test_default_state(self, memory_store):
        states = SessionStateStore(memory_store)

        assert states.get("session-1") == SessionAuthState()

    def test_save_and_clear(self, memory_store):
        states = SessionStateStore(memory_store)

        states.save("session-1", SessionAuthState(require_2fa=True, verified_2fa=True))
        assert states.get("session-1").verified_2fa is True
        assert states.get("session-2").verified_2fa is False

        states.clear("session-1")
        assert states.get("session-1") == SessionAuthState()


class TestPendingSecretStore:
    """Test pending TOTP secrets."""

    def test_take_is_single_use(self, memory_store):
        pending = PendingSecretStore(memory_store)
        pending.put("user-1", "SECRET")

        assert pending.take("user-1") == "SECRET"
        assert pending.take("user-1") is None

    def test_clear(self, memory_store):
        pending = PendingSecretStore(memory_store)
        pending.put("user-1", "SECRET")

        pending.clear("user-1")

        assert pending.take("user-1") is None


class TestAttemptLimiter:
    """Test the failed-attempt lockout."""

    def test_locks_after_max_failures(self, memory_store):
        limiter = AttemptLimiter(memory_store, max_attempts=3, window_seconds=60)

        assert limiter.record_failure("user-1") == 2
        assert limiter.record_failure("user-1") == 1
        assert limiter.is_locked("user-1") is False
        assert limiter.record_failure("user-1") == 0

        assert limiter.is_locked("user-1") is True
        assert limiter.is_locked("user-2") is False

    def test_reset_clears_failures(self, memory_store):
        limiter = AttemptLimiter(memory_store, max_attempts=2, window_seconds=60)
        limiter.record_failure("user-1")
        limiter.record_failure("user-1")

        limiter.reset("user-1")

        assert limiter.failures("user-1") == 0
        assert limiter.is_locked("user-1") is False

    def test_lockout_expires(self, memory_store):
        limiter = AttemptLimiter(memory_store, max_attempts=1, window_seconds=0)

        limiter.record_failure("user-1")

        assert limiter.is_locked("user-1") is False
