# End-to-end tests for VaultSession – login flow, reset, PIN change, biometrics

import pytest

from auth import AuthState
from config import AppConfig, PIN_HASH_KEY, RECORDS_KEY
from errors import AuthenticationError, PersistenceError, PinPolicyError, VaultLockedError
from kvstore import FileKeyValueStore, MemoryKeyValueStore
from session import VaultSession
from storage import CredentialRecord, LoadStatus


class TestScenarios:
    def test_setup_add_reopen(self, memory_store, gmail):
        session = VaultSession(memory_store)
        assert session.setup("1234") is LoadStatus.EMPTY
        assert session.auth.is_pin_configured()
        assert session.state is AuthState.AUTHENTICATED
        assert session.vault().records == ()

        session.vault().add(gmail)
        session.lock()

        reopened = VaultSession(memory_store)
        assert reopened.unlock("1234") is True
        assert reopened.last_load_status is LoadStatus.LOADED
        assert reopened.vault().records == (gmail,)

    def test_setup_add_reopen_on_disk(self, tmp_path, gmail):
        VaultSession(FileKeyValueStore(str(tmp_path))).setup("1234")
        first = VaultSession(FileKeyValueStore(str(tmp_path)))
        first.unlock("1234")
        first.vault().add(gmail)

        second = VaultSession(FileKeyValueStore(str(tmp_path)))
        assert second.unlock("1234")
        assert second.vault().get_by_id("1") == gmail

    def test_wrong_pin_leaves_storage_untouched(self, unlocked, memory_store, gmail):
        unlocked.vault().add(gmail)
        unlocked.lock()
        pin_hash = memory_store.get(PIN_HASH_KEY)
        blob = memory_store.get(RECORDS_KEY)

        assert unlocked.unlock("0000") is False
        assert unlocked.state is AuthState.LOCKED
        assert memory_store.get(PIN_HASH_KEY) == pin_hash
        assert memory_store.get(RECORDS_KEY) == blob
        with pytest.raises(VaultLockedError):
            unlocked.vault()

    def test_reset_orphans_old_records(self, unlocked, memory_store, gmail):
        unlocked.vault().add(gmail)
        unlocked.reset()
        assert unlocked.state is AuthState.UNINITIALIZED

        status = unlocked.setup("5678")
        assert status is LoadStatus.DECRYPT_FAILED
        assert unlocked.vault().records == ()
        assert memory_store.get(RECORDS_KEY) is not None

    def test_new_records_after_reset_replace_orphaned_blob(self, unlocked, memory_store, gmail, unicode_record):
        unlocked.vault().add(gmail)
        unlocked.reset()
        unlocked.setup("5678")
        unlocked.vault().add(unicode_record)

        reopened = VaultSession(memory_store)
        assert reopened.unlock("5678")
        assert reopened.vault().records == (unicode_record,)


class TestLockAndRequire:
    def test_lock_drops_records(self, unlocked, gmail):
        records = unlocked.vault()
        records.add(gmail)
        unlocked.lock()
        assert records.records == ()
        assert unlocked.auth.derived_key is None
        with pytest.raises(VaultLockedError):
            unlocked.vault()

    def test_require_unlock(self, unlocked):
        unlocked.lock()
        with pytest.raises(AuthenticationError):
            unlocked.require_unlock("9999")
        assert unlocked.require_unlock("1234") is LoadStatus.EMPTY

    def test_setup_policy_error(self, session):
        with pytest.raises(PinPolicyError):
            session.setup("12")
        assert session.state is AuthState.UNINITIALIZED


class TestChangePin:
    def test_change_pin_keeps_records(self, unlocked, memory_store, gmail):
        unlocked.vault().add(gmail)
        assert unlocked.change_pin("1234", "567890") is True
        assert unlocked.vault().records == (gmail,)

        assert VaultSession(memory_store).unlock("1234") is False
        reopened = VaultSession(memory_store)
        assert reopened.unlock("567890")
        assert reopened.vault().records == (gmail,)

    def test_wrong_old_pin(self, unlocked, memory_store, gmail):
        unlocked.vault().add(gmail)
        blob = memory_store.get(RECORDS_KEY)
        assert unlocked.change_pin("0000", "5678") is False
        assert memory_store.get(RECORDS_KEY) == blob

    def test_bad_new_pin(self, unlocked):
        with pytest.raises(PinPolicyError):
            unlocked.change_pin("1234", "ab")
        assert VaultSession(unlocked.store).unlock("1234")

    def test_refuses_when_records_unreadable(self, unlocked, memory_store):
        memory_store.set(RECORDS_KEY, b"garbage")
        with pytest.raises(VaultLockedError):
            unlocked.change_pin("1234", "5678")
        assert memory_store.get(RECORDS_KEY) == b"garbage"

    def test_failed_pin_write_restores_records(self, gmail):
        class FailOnPinHash(MemoryKeyValueStore):
            armed = False

            def set(self, key, value):
                if self.armed and key == PIN_HASH_KEY:
                    raise PersistenceError("unavailable", key=key)
                super().set(key, value)

        kv = FailOnPinHash()
        session = VaultSession(kv)
        session.setup("1234")
        session.vault().add(gmail)
        kv.armed = True

        with pytest.raises(PersistenceError):
            session.change_pin("1234", "5678")

        kv.armed = False
        reopened = VaultSession(kv)
        assert reopened.unlock("1234")
        assert reopened.vault().records == (gmail,)

    def test_change_pin_with_random_salt(self, gmail):
        kv = MemoryKeyValueStore()
        session = VaultSession(kv, use_random_salt=True)
        session.setup("1234")
        session.vault().add(gmail)
        assert session.change_pin("1234", "5678")
        reopened = VaultSession(kv)
        assert reopened.unlock("5678")
        assert reopened.vault().records == (gmail,)


class TestBackgroundAndBiometrics:
    def test_background_locks_by_default(self, unlocked):
        unlocked.auth.toggle_biometrics()
        unlocked.background()
        assert unlocked.state is AuthState.LOCKED
        assert unlocked.resume(lambda: True) is False

    def test_background_locks_without_biometrics(self, memory_store):
        session = VaultSession(memory_store, lock_on_background=False)
        session.setup("1234")
        session.background()
        assert session.state is AuthState.LOCKED

    def test_suspend_and_resume(self, memory_store, gmail):
        session = VaultSession(memory_store, lock_on_background=False)
        session.setup("1234")
        session.auth.toggle_biometrics()
        session.vault().add(gmail)

        session.background()
        assert session.is_suspended
        assert not session.is_unlocked
        with pytest.raises(VaultLockedError):
            session.vault()

        assert session.resume(lambda: False) is False
        assert session.is_suspended

        assert session.resume(lambda: True) is True
        assert session.vault().records == (gmail,)

    def test_resume_after_biometrics_disabled(self, memory_store):
        session = VaultSession(memory_store, lock_on_background=False)
        session.setup("1234")
        session.auth.toggle_biometrics()
        session.background()
        session.auth.toggle_biometrics()

        prompted = []
        assert session.resume(lambda: prompted.append(1) or True) is False
        assert prompted == []
        assert session.state is AuthState.LOCKED

    def test_resume_when_not_suspended(self, unlocked, session):
        assert unlocked.resume(lambda: False) is True
        unlocked.lock()
        assert unlocked.resume(lambda: True) is False


class TestFromConfig:
    def test_uses_config_values(self, tmp_path):
        config = AppConfig(str(tmp_path))
        config.set("min_pin_length", 6)
        session = VaultSession.from_config(config)
        with pytest.raises(PinPolicyError):
            session.setup("1234")
        session.setup("123456")
        assert (tmp_path / "store" / "pinHash").exists()

    def test_records_created_with_factory(self, unlocked):
        record = CredentialRecord.create("GitHub", "octo", "o@x.com", "pw")
        unlocked.vault().add(record)
        assert unlocked.vault().get_by_id(record.id) == record
