"""Tests for the vault lifecycle controller: unlock/lock, mutations, persistence."""

import threading
from datetime import date
from decimal import Decimal

import pytest


PASSPHRASE = "correct-horse"


class FlakyStore:
    """MemoryBlobStore wrapper whose reads and writes can be made to fail."""

    def __init__(self):
        from subvault.vault import MemoryBlobStore

        self.inner = MemoryBlobStore()
        self.fail_save = False
        self.fail_load = False

    @property
    def blob(self):
        return self.inner.blob

    def load(self):
        if self.fail_load:
            raise OSError("disk unavailable")
        return self.inner.load()

    def save(self, blob):
        if self.fail_save:
            raise OSError("disk full")
        self.inner.save(blob)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# ── Unlock / Lock Tests ─────────────────────────────────────────────


class TestUnlock:

    def test_first_unlock_creates_empty_vault(self, manager, store):
        from subvault.vault import VaultState

        assert not manager.vault_exists()
        result = manager.unlock(PASSPHRASE)

        assert result.success
        assert result.vault.credentials == ()
        assert result.vault.subscriptions == ()
        assert manager.state is VaultState.UNLOCKED
        assert store.saves == 1
        assert manager.vault_exists()

    def test_netflix_scenario(self, manager):
        manager.unlock(PASSPHRASE)
        result = manager.add_subscription(
            name="Netflix", cost=15.99, currency="USD",
            frequency_amount=1, frequency_unit="MONTHS", start_date="2024-01-15",
        )
        assert result.success
        sub = result.vault.find_subscription(result.record_id)
        assert sub.renewal_date == date(2024, 2, 15)
        assert sub.cost == Decimal("15.99")

        manager.lock()
        reopened = manager.unlock(PASSPHRASE)
        assert reopened.success
        assert len(reopened.vault.subscriptions) == 1
        assert reopened.vault.subscriptions[0] == sub

    def test_wrong_passphrase(self, unlocked):
        unlocked.lock()
        result = unlocked.unlock("wrong-pass")

        assert not result.success
        assert result.error.kind == "authentication_failed"
        assert result.vault is None
        assert not unlocked.is_unlocked

    def test_corrupted_blob_reported_as_wrong_passphrase(self, unlocked, store):
        from dataclasses import replace

        unlocked.lock()
        tampered = bytearray(store.blob.ciphertext)
        tampered[0] ^= 0x01
        store.blob = replace(store.blob, ciphertext=bytes(tampered))

        corrupted = unlocked.unlock(PASSPHRASE)
        unlocked.failed_attempts = 0
        wrong = unlocked.unlock("wrong-pass")

        assert corrupted.error.kind == wrong.error.kind == "authentication_failed"
        assert corrupted.message == wrong.message

    def test_empty_passphrase_rejected(self, manager, store):
        result = manager.unlock("")
        assert result.error.kind == "validation_failed"
        assert store.saves == 0

    def test_failed_reauthentication_locks(self, unlocked):
        result = unlocked.unlock("wrong-pass")
        assert not result.success
        assert not unlocked.is_unlocked
        assert unlocked.vault is None

    def test_reauthentication_keeps_data(self, unlocked):
        unlocked.add_credential(label="Mail", username="me")
        result = unlocked.unlock(PASSPHRASE)
        assert result.success
        assert len(result.vault.credentials) == 1

    def test_lock_is_idempotent(self, manager, unlocked):
        assert unlocked.lock().success
        assert unlocked.lock().success
        assert manager.lock().success
        assert unlocked.vault is None

    def test_lock_zeroes_key(self, unlocked):
        key = unlocked._key
        assert any(key)
        unlocked.lock()
        assert key == bytearray(len(key))
        assert unlocked._key is None

    def test_unreadable_storage_is_persistence_failure(self):
        from subvault.vault import VaultManager

        store = FlakyStore()
        store.fail_load = True
        result = VaultManager(store=store).unlock(PASSPHRASE)

        assert result.error.kind == "persistence_failed"
        assert result.retryable

    def test_duplicate_ids_in_blob_rejected(self, store):
        import json
        from subvault.vault import EncryptedBlob, EncryptionService, VaultManager

        payload = json.dumps({
            "credentials": [
                {"id": "c1", "label": "A", "username": "a"},
                {"id": "c1", "label": "B", "username": "b"},
            ],
            "subscriptions": [],
            "lastUpdated": 1,
        }).encode("utf-8")
        salt = EncryptionService.generate_salt()
        iv, ciphertext = EncryptionService.seal(payload, EncryptionService.derive_key(PASSPHRASE, salt))
        store.save(EncryptedBlob(salt=salt, iv=iv, ciphertext=ciphertext))

        manager = VaultManager(store=store)
        result = manager.unlock(PASSPHRASE)
        assert result.error.kind == "authentication_failed"
        assert not manager.is_unlocked

    def test_invalid_blob_counts_as_failed_unlock(self, tmp_path):
        from subvault.vault import FileBlobStore, VaultManager

        path = tmp_path / "vault.json"
        path.write_text('{"salt": "nope"}', encoding="utf-8")
        manager = VaultManager(store=FileBlobStore(path))

        result = manager.unlock(PASSPHRASE)
        assert result.error.kind == "authentication_failed"
        assert manager.vault_exists()


class TestUnlockThrottling:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def throttled(self, store, clock):
        from subvault.vault import VaultManager

        manager = VaultManager(store=store, clock=clock, max_unlock_backoff=4)
        manager.unlock(PASSPHRASE)
        manager.lock()
        return manager

    def test_first_failure_has_no_delay(self, throttled):
        throttled.unlock("wrong-pass")
        assert throttled.failed_attempts == 1
        assert throttled.lockout_until is None
        assert throttled.unlock(PASSPHRASE).success

    def test_backoff_blocks_even_correct_passphrase(self, throttled, clock):
        throttled.unlock("wrong-pass")
        throttled.unlock("wrong-pass")
        assert throttled.lockout_until == clock.now + 2

        clock.now += 1
        blocked = throttled.unlock(PASSPHRASE)
        assert not blocked.success
        assert "Too many failed attempts" in blocked.message

        clock.now += 2
        assert throttled.unlock(PASSPHRASE).success
        assert throttled.failed_attempts == 0
        assert throttled.lockout_until is None

    def test_backoff_is_capped(self, throttled, clock):
        for _ in range(6):
            throttled.unlock("wrong-pass")
            clock.now += 100
        clock.now -= 100
        assert throttled.lockout_until == clock.now + 4


# ── Mutation Tests ──────────────────────────────────────────────────


class TestCredentials:

    def test_add_and_update(self, unlocked):
        created = unlocked.add_credential(label="Mail", username="me", password="pw")
        cred_id = created.record_id
        assert unlocked.get_credential(cred_id).password == "pw"
        assert unlocked.get_credential(cred_id).created_at > 0

        updated = unlocked.update_credential(cred_id, label="Mail", username="me2", notes="2fa on")
        assert updated.success
        cred = unlocked.get_credential(cred_id)
        assert cred.username == "me2"
        assert cred.notes == "2fa on"
        assert cred.password is None
        assert len(unlocked.vault.credentials) == 1

    def test_required_fields(self, unlocked, store):
        saves = store.saves
        result = unlocked.add_credential(label="  ", username="me")
        assert result.error.kind == "validation_failed"
        assert result.error.field == "label"
        assert unlocked.vault.credentials == ()
        assert store.saves == saves

    def test_unknown_id(self, unlocked):
        assert unlocked.update_credential("nope", label="a", username="b").error.kind == "not_found"
        assert unlocked.delete_credential("nope").error.kind == "not_found"

    def test_delete_clears_references(self, unlocked):
        cred_id = unlocked.add_credential(label="Mail", username="me").record_id
        s1 = unlocked.add_subscription(name="S1", cost=5, credential_id=cred_id).record_id
        s2 = unlocked.add_subscription(name="S2", cost=7, credential_id=cred_id).record_id
        s3 = unlocked.add_subscription(name="S3", cost=9).record_id

        result = unlocked.delete_credential(cred_id)
        assert result.success
        vault = result.vault
        assert vault.credentials == ()
        assert vault.find_subscription(s1).credential_id is None
        assert vault.find_subscription(s1).name == "S1"
        assert vault.find_subscription(s2).credential_id is None
        assert vault.find_subscription(s2).cost == Decimal("7")
        assert vault.find_subscription(s3).name == "S3"
        assert len(vault.subscriptions) == 3

    def test_credential_for_subscription(self, unlocked):
        cred_id = unlocked.add_credential(label="Mail", username="me").record_id
        sub_id = unlocked.add_subscription(name="S1", cost=5, credential_id=cred_id).record_id
        sub = unlocked.vault.find_subscription(sub_id)
        assert unlocked.credential_for(sub).label == "Mail"


class TestSubscriptions:

    def test_defaults(self, unlocked):
        result = unlocked.add_subscription(name="Cloud", cost="25")
        sub = result.vault.find_subscription(result.record_id)
        assert sub.currency == "CNY"
        assert sub.frequency_amount == 1
        assert sub.frequency_unit.value == "MONTHS"
        assert sub.start_date == date.today()
        assert sub.category == "生活"
        assert sub.active

    def test_permanent_purchase(self, unlocked):
        from subvault.vault import PERMANENT_RENEWAL

        result = unlocked.add_subscription(
            name="App", cost=30, frequency_unit="PERMANENT", start_date="2024-01-31"
        )
        assert result.vault.find_subscription(result.record_id).renewal_date == PERMANENT_RENEWAL

    def test_renewal_date_is_always_recomputed(self, unlocked):
        sub_id = unlocked.add_subscription(
            name="Music", cost=10, start_date="2024-01-15", renewal_date="2030-01-01"
        ).record_id
        assert unlocked.vault.find_subscription(sub_id).renewal_date == date(2024, 2, 15)

        result = unlocked.update_subscription(
            sub_id, name="Music", cost=10, start_date="2024-01-31", renewal_date="2030-01-01"
        )
        sub = result.vault.find_subscription(sub_id)
        assert sub.renewal_date == date(2024, 3, 2)
        assert len(result.vault.subscriptions) == 1

    @pytest.mark.parametrize("fields,bad_field", [
        ({"cost": 5}, "name"),
        ({"name": "X"}, "cost"),
        ({"name": "X", "cost": -1}, "cost"),
        ({"name": "X", "cost": "abc"}, "cost"),
        ({"name": "X", "cost": float("nan")}, "cost"),
        ({"name": "X", "cost": "1e5000"}, "cost"),
        ({"name": "X", "cost": "12345678901234567.89"}, "cost"),
        ({"name": "X", "cost": "1e-400"}, "cost"),
        ({"name": "X", "cost": 1, "frequency_amount": 0}, "frequencyAmount"),
        ({"name": "X", "cost": 1, "frequency_amount": 1.5}, "frequencyAmount"),
        ({"name": "X", "cost": 1, "frequency_amount": float("inf")}, "frequencyAmount"),
        ({"name": "X", "cost": 1, "frequency_unit": "FORTNIGHTS"}, "frequencyUnit"),
        ({"name": "X", "cost": 1, "start_date": "15/01/2024"}, "startDate"),
        ({"name": "X", "cost": 1, "credential_id": "ghost"}, "credentialId"),
    ])
    def test_invalid_input_leaves_vault_unchanged(self, unlocked, store, fields, bad_field):
        before = unlocked.vault
        saves = store.saves

        result = unlocked.add_subscription(**fields)

        assert result.error.kind == "validation_failed"
        assert result.error.field == bad_field
        assert result.vault is before
        assert unlocked.vault is before
        assert store.saves == saves

    def test_update_and_delete_unknown(self, unlocked):
        assert unlocked.update_subscription("nope", name="X", cost=1).error.kind == "not_found"
        assert unlocked.delete_subscription("nope").error.kind == "not_found"

    def test_delete(self, unlocked):
        sub_id = unlocked.add_subscription(name="X", cost=1).record_id
        result = unlocked.delete_subscription(sub_id)
        assert result.success
        assert result.vault.subscriptions == ()

    def test_summary(self, unlocked):
        unlocked.add_subscription(name="A", cost=120, frequency_unit="YEARS", currency="USD")
        unlocked.add_subscription(name="B", cost=5, currency="USD")
        assert unlocked.summary("USD").total_monthly == Decimal("15.00")
        unlocked.lock()
        assert unlocked.summary() is None


class TestLockedAccess:

    def test_mutation_while_locked(self, manager, store):
        result = manager.add_credential(label="Mail", username="me")
        assert result.error.kind == "vault_locked"
        assert result.vault is None
        assert store.blob is None

    def test_reads_while_locked(self, manager):
        assert manager.vault is None
        assert manager.get_credential("anything") is None


# ── Persistence Tests ───────────────────────────────────────────────


class TestPersistence:

    def test_every_save_reuses_salt_with_fresh_iv(self, unlocked, store):
        first = store.blob
        unlocked.add_credential(label="Mail", username="me")
        second = store.blob
        assert second.salt == first.salt
        assert second.iv != first.iv

    def test_stored_blob_contains_no_plaintext(self, unlocked, store):
        unlocked.add_credential(label="Mailbox", username="someone", password="hunter2")
        text = store.blob.to_json()
        for secret in ("Mailbox", "someone", "hunter2", PASSPHRASE):
            assert secret not in text

    def test_failed_save_rolls_back(self):
        from subvault.vault import VaultManager

        store = FlakyStore()
        manager = VaultManager(store=store)
        manager.unlock(PASSPHRASE)
        manager.add_credential(label="Mail", username="me")
        snapshot, blob = manager.vault, store.blob

        store.fail_save = True
        result = manager.add_subscription(name="Netflix", cost=15.99)

        assert result.error.kind == "persistence_failed"
        assert result.retryable
        assert manager.vault is snapshot
        assert store.blob is blob

        store.fail_save = False
        assert manager.add_subscription(name="Netflix", cost=15.99).success

        manager.lock()
        assert len(manager.unlock(PASSPHRASE).vault.subscriptions) == 1

    def test_serialization_failure_rolls_back(self, unlocked, store, monkeypatch):
        from subvault.vault import VaultData

        before, blob = unlocked.vault, store.blob

        def broken(self):
            raise ValueError("cannot encode")

        monkeypatch.setattr(VaultData, "to_bytes", broken)
        result = unlocked.add_credential(label="Mail", username="me")

        assert result.error.kind == "persistence_failed"
        assert unlocked.vault is before
        assert store.blob is blob

    def test_failed_initial_save_stays_locked(self):
        from subvault.vault import VaultManager

        store = FlakyStore()
        store.fail_save = True
        manager = VaultManager(store=store)

        result = manager.unlock(PASSPHRASE)
        assert result.error.kind == "persistence_failed"
        assert not manager.is_unlocked

    def test_file_store_roundtrip(self, tmp_path):
        import os
        import stat
        from subvault.vault import FileBlobStore, VaultManager

        path = tmp_path / "data" / "vault.json"
        manager = VaultManager(store=FileBlobStore(path))
        manager.unlock(PASSPHRASE)
        manager.add_credential(label="Mail", username="me")
        manager.lock()

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert not path.with_suffix(".json.tmp").exists()

        reopened = VaultManager(store=FileBlobStore(path))
        assert reopened.unlock(PASSPHRASE).vault.credentials[0].label == "Mail"

    def test_concurrent_mutations_are_serialized(self, unlocked):
        def add(n):
            unlocked.add_credential(label=f"L{n}", username="u")

        threads = [threading.Thread(target=add, args=(n,)) for n in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(unlocked.vault.credentials) == 10
        unlocked.lock()
        assert len(unlocked.unlock(PASSPHRASE).vault.credentials) == 10


# ── Export / Import Tests ───────────────────────────────────────────


class TestExportImport:

    def test_export_is_stored_blob(self, unlocked, store):
        assert unlocked.export() == store.blob.to_json()

    def test_export_of_unreadable_store(self):
        from subvault.vault import PersistenceFailed, VaultManager

        store = FlakyStore()
        manager = VaultManager(store=store)
        manager.unlock(PASSPHRASE)
        store.fail_load = True

        with pytest.raises(PersistenceFailed):
            manager.export()

    def test_export_of_corrupt_file(self, tmp_path):
        from subvault.vault import FileBlobStore, PersistenceFailed, VaultManager

        path = tmp_path / "vault.json"
        path.write_text("{broken", encoding="utf-8")

        with pytest.raises(PersistenceFailed):
            VaultManager(store=FileBlobStore(path)).export_to(tmp_path / "backups")
        assert not (tmp_path / "backups").exists()

    def test_export_without_vault(self, manager, tmp_path):
        assert manager.export() is None
        assert manager.export_to(tmp_path) is None

    def test_export_to_directory(self, unlocked, tmp_path):
        path = unlocked.export_to(tmp_path / "backups")
        assert path.name.startswith("SubVault_Export_")
        assert path.suffix == ".json"
        assert path.read_text(encoding="utf-8") == unlocked.export()

    def test_import_into_new_vault(self, unlocked):
        from subvault.vault import MemoryBlobStore, VaultManager

        unlocked.add_credential(label="Mail", username="me")
        exported = unlocked.export()

        other = VaultManager(store=MemoryBlobStore())
        assert other.import_blob(exported).success
        assert not other.is_unlocked
        assert other.unlock(PASSPHRASE).vault.credentials[0].label == "Mail"

    def test_import_locks_current_session(self, unlocked):
        exported = unlocked.export()
        assert unlocked.import_blob(exported).success
        assert not unlocked.is_unlocked

    def test_import_rejects_invalid_file(self, unlocked, store):
        blob = store.blob
        result = unlocked.import_blob('{"salt": "x"}')
        assert result.error.kind == "validation_failed"
        assert result.error.field == "file"
        assert store.blob is blob
        assert unlocked.is_unlocked


class TestOperations:

    def test_base_operation_is_abstract(self):
        from subvault.vault import VaultOperation

        with pytest.raises(TypeError):
            VaultOperation()
