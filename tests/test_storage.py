"""Tests for secure storage: seeds, wallet data, PIN and backups."""

import json

import msgspec
import pytest

from py3wallet.models import EncryptedBackup, WalletMetadata
from py3wallet.protected_key import SoftwareProtectedKey
from py3wallet.storage import (
    MAX_DATA_KEY_BYTES,
    AuthenticationFailed,
    DecryptionFailed,
    InvalidBackup,
    NotFound,
    SecureStorage,
    StorageError,
)

SEED = bytes(range(64))
OTHER_SEED = bytes(range(64, 128))


class TestSeeds:
    """Seed storage operations."""

    def test_save_and_retrieve(self, storage: SecureStorage) -> None:
        """Test a saved seed round-trips."""
        storage.save_seed(SEED, "main")
        assert storage.retrieve_seed("main") == SEED
        assert storage.has_seed("main")

    def test_default_wallet_id(self, storage: SecureStorage) -> None:
        """Test the default wallet id is used when none is given."""
        storage.save_seed(SEED)
        assert storage.list_wallet_ids() == ["default"]
        assert storage.retrieve_seed() == SEED

    def test_replace(self, storage: SecureStorage) -> None:
        """Test saving again replaces the seed."""
        storage.save_seed(SEED, "main")
        storage.save_seed(OTHER_SEED, "main")
        assert storage.retrieve_seed("main") == OTHER_SEED
        assert storage.list_wallet_ids() == ["main"]

    def test_missing_seed(self, storage: SecureStorage) -> None:
        """Test retrieving an unknown wallet raises NotFound."""
        with pytest.raises(NotFound):
            storage.retrieve_seed("nope")

    @pytest.mark.parametrize("length", [0, 32, 63, 65])
    def test_seed_length(self, storage: SecureStorage, length: int) -> None:
        """Test that only 64-byte seeds are accepted."""
        with pytest.raises(ValueError):
            storage.save_seed(bytes(length), "main")

    @pytest.mark.parametrize("wallet_id", ["", "a|b", "a/b", "über", "w" * 65, "w" * 120])
    def test_invalid_wallet_id(self, storage: SecureStorage, wallet_id: str) -> None:
        """Test ids outside the record filename charset or length are refused."""
        with pytest.raises(ValueError, match="wallet id"):
            storage.save_seed(SEED, wallet_id)
        assert storage.list_wallet_ids() == []

    def test_biometric_flag(self, storage: SecureStorage) -> None:
        """Test the biometric requirement is stored per seed."""
        storage.save_seed(SEED, "gated", requires_biometric=True)
        storage.save_seed(OTHER_SEED, "open", requires_biometric=False)
        assert storage.seed_requires_biometric("gated")
        assert not storage.seed_requires_biometric("open")

    def test_delete(self, storage: SecureStorage) -> None:
        """Test delete removes the seed and a second delete fails."""
        storage.save_seed(SEED, "main")
        storage.delete_seed("main")
        assert not storage.has_seed("main")
        with pytest.raises(NotFound):
            storage.delete_seed("main")

    def test_list_sorted(self, storage: SecureStorage) -> None:
        """Test wallet ids are listed in sorted order."""
        for wallet_id in ("b", "a", "c"):
            storage.save_seed(SEED, wallet_id)
        assert storage.list_wallet_ids() == ["a", "b", "c"]

    def test_wrong_protected_key(self, storage: SecureStorage) -> None:
        """Test a record sealed under another key cannot be opened."""
        storage.save_seed(SEED, "main")
        other = SecureStorage(SoftwareProtectedKey.generate())
        other._records = dict(storage._records)
        with pytest.raises(DecryptionFailed):
            other.retrieve_seed("main")

    def test_records_bound_to_identifier(self, storage: SecureStorage) -> None:
        """Test a record moved to another identifier fails to open."""
        storage.save_seed(SEED, "a")
        storage.save_seed(OTHER_SEED, "b")
        storage._records["wallet.seed.b"] = msgspec.structs.replace(
            storage._records["wallet.seed.a"], identifier="wallet.seed.b"
        )
        with pytest.raises(DecryptionFailed):
            storage.retrieve_seed("b")


class TestWalletData:
    """Arbitrary sealed wallet data."""

    def test_round_trip_struct(self, storage: SecureStorage) -> None:
        """Test a msgspec struct round-trips."""
        metadata = WalletMetadata(wallet_id="main", created_at=1.5, word_count=24, has_passphrase=False)
        storage.save_wallet_data("meta.main", metadata)
        assert storage.retrieve_wallet_data("meta.main", WalletMetadata) == metadata
        assert storage.has_wallet_data("meta.main")

    def test_round_trip_builtin(self, storage: SecureStorage) -> None:
        """Test builtin containers round-trip."""
        storage.save_wallet_data("labels", {"bc1q": "savings"})
        assert storage.retrieve_wallet_data("labels", dict[str, str]) == {"bc1q": "savings"}

    def test_wrong_type(self, storage: SecureStorage) -> None:
        """Test decoding as the wrong type fails cleanly."""
        storage.save_wallet_data("labels", ["a"])
        with pytest.raises(DecryptionFailed):
            storage.retrieve_wallet_data("labels", dict[str, str])

    def test_missing(self, storage: SecureStorage) -> None:
        """Test an unknown key raises NotFound."""
        with pytest.raises(NotFound):
            storage.retrieve_wallet_data("nothing", dict)

    def test_delete(self, storage: SecureStorage) -> None:
        """Test delete reports whether something was removed."""
        storage.save_wallet_data("labels", {})
        assert storage.delete_wallet_data("labels")
        assert not storage.delete_wallet_data("labels")

    def test_key_length_limit(self, storage: SecureStorage) -> None:
        """Test data keys are capped so their record file name stays short enough."""
        storage.save_wallet_data("k" * MAX_DATA_KEY_BYTES, {})
        with pytest.raises(ValueError, match="at most"):
            storage.save_wallet_data("k" * (MAX_DATA_KEY_BYTES + 1), {})
        with pytest.raises(ValueError):
            storage.save_wallet_data("", {})

    def test_data_not_listed_as_wallet(self, storage: SecureStorage) -> None:
        """Test wallet data records are not wallet ids."""
        storage.save_wallet_data("labels", {})
        assert storage.list_wallet_ids() == []


class TestPin:
    """PIN credential handling."""

    def test_set_and_verify(self, storage: SecureStorage) -> None:
        """Test the right PIN verifies and a wrong one does not."""
        storage.set_pin("1234")
        assert storage.has_pin()
        assert storage.verify_pin("1234")
        assert not storage.verify_pin("4321")

    def test_verify_without_pin(self, storage: SecureStorage) -> None:
        """Test verification fails when no PIN is set."""
        assert not storage.verify_pin("1234")

    def test_pin_not_stored_in_clear(self, storage: SecureStorage) -> None:
        """Test the sealed record does not contain the PIN."""
        storage.set_pin("98765432")
        record = storage._records["wallet.pin"]
        assert b"98765432" not in msgspec.json.encode(record)

    def test_replace_and_remove(self, storage: SecureStorage) -> None:
        """Test replacing and removing the PIN."""
        storage.set_pin("1111")
        storage.set_pin("2222")
        assert not storage.verify_pin("1111")
        assert storage.verify_pin("2222")
        assert storage.remove_pin()
        assert not storage.has_pin()
        assert not storage.remove_pin()

    def test_empty_pin_rejected(self, storage: SecureStorage) -> None:
        """Test an empty PIN cannot be set."""
        with pytest.raises(ValueError):
            storage.set_pin("")

    def test_corrupt_credential(self, storage: SecureStorage) -> None:
        """Test a tampered credential verifies as False instead of raising."""
        storage.set_pin("1234")
        record = storage._records["wallet.pin"]
        storage._records["wallet.pin"] = msgspec.structs.replace(
            record, ciphertext=bytes(len(record.ciphertext))
        )
        assert not storage.verify_pin("1234")


class TestBackup:
    """Encrypted backup export and import."""

    def test_round_trip(self, storage: SecureStorage) -> None:
        """Test seeds, flags and wallet data survive a backup into fresh storage."""
        storage.save_seed(SEED, "a", requires_biometric=False)
        storage.save_seed(OTHER_SEED, "b")
        storage.save_wallet_data("labels", {"x": "y"})
        blob = storage.export_encrypted_backup("correct horse")

        restored = SecureStorage(
            SoftwareProtectedKey.generate(), pin_iterations=1_000, backup_iterations=1_000
        )
        assert restored.import_encrypted_backup(blob, "correct horse") == ["a", "b"]
        assert restored.retrieve_seed("a") == SEED
        assert restored.retrieve_seed("b") == OTHER_SEED
        assert not restored.seed_requires_biometric("a")
        assert restored.seed_requires_biometric("b")
        assert restored.retrieve_wallet_data("labels", dict[str, str]) == {"x": "y"}

    def test_backup_format(self, storage: SecureStorage) -> None:
        """Test the exported JSON fields and that no secret appears in clear."""
        storage.save_seed(SEED, "a")
        backup = json.loads(storage.export_encrypted_backup("pw"))
        assert set(backup) == {
            "version",
            "kdf",
            "kdfIterations",
            "salt",
            "nonce",
            "ciphertext",
            "authTag",
        }
        assert backup["version"] == 1
        assert backup["kdf"] == "pbkdf2-hmac-sha256"
        assert SEED.hex() not in json.dumps(backup)

    def test_pin_not_exported(self, storage: SecureStorage) -> None:
        """Test the PIN credential stays on the device."""
        storage.set_pin("1234")
        storage.save_seed(SEED, "a")
        blob = storage.export_encrypted_backup("pw")
        restored = SecureStorage(SoftwareProtectedKey.generate(), backup_iterations=1_000)
        restored.import_encrypted_backup(blob, "pw")
        assert not restored.has_pin()

    def test_wrong_password(self, storage: SecureStorage) -> None:
        """Test a wrong password fails authentication and changes nothing."""
        storage.save_seed(SEED, "a")
        blob = storage.export_encrypted_backup("right")
        target = SecureStorage(SoftwareProtectedKey.generate())
        with pytest.raises(AuthenticationFailed):
            target.import_encrypted_backup(blob, "wrong")
        assert target.list_wallet_ids() == []

    def test_tampered_header(self, storage: SecureStorage) -> None:
        """Test that changing the iteration count is detected."""
        storage.save_seed(SEED, "a")
        backup = json.loads(storage.export_encrypted_backup("pw"))
        backup["kdfIterations"] += 1
        with pytest.raises(AuthenticationFailed):
            storage.import_encrypted_backup(json.dumps(backup), "pw")

    def test_tampered_ciphertext(self, storage: SecureStorage) -> None:
        """Test that a modified ciphertext is detected."""
        storage.save_seed(SEED, "a")
        backup = msgspec.json.decode(storage.export_encrypted_backup("pw"), type=EncryptedBackup)
        ciphertext = bytearray(backup.ciphertext)
        ciphertext[0] ^= 1
        tampered = msgspec.structs.replace(backup, ciphertext=bytes(ciphertext))
        with pytest.raises(AuthenticationFailed):
            storage.import_encrypted_backup(msgspec.json.encode(tampered), "pw")

    @pytest.mark.parametrize(
        "blob",
        [b"not json", b"{}", b'{"version": 1}'],
    )
    def test_malformed(self, storage: SecureStorage, blob: bytes) -> None:
        """Test malformed blobs raise InvalidBackup."""
        with pytest.raises(InvalidBackup):
            storage.import_encrypted_backup(blob, "pw")

    def test_unsupported_version(self, storage: SecureStorage) -> None:
        """Test an unknown backup version is rejected before decryption."""
        backup = json.loads(storage.export_encrypted_backup("pw"))
        backup["version"] = 2
        with pytest.raises(InvalidBackup, match="version"):
            storage.import_encrypted_backup(json.dumps(backup), "pw")

    def test_empty_password(self, storage: SecureStorage) -> None:
        """Test export requires a password."""
        with pytest.raises(ValueError):
            storage.export_encrypted_backup("")

    def test_import_replaces_existing(self, storage: SecureStorage) -> None:
        """Test importing overwrites a wallet with the same id."""
        storage.save_seed(SEED, "a")
        blob = storage.export_encrypted_backup("pw")
        storage.save_seed(OTHER_SEED, "a")
        storage.import_encrypted_backup(blob, "pw")
        assert storage.retrieve_seed("a") == SEED


class TestWipe:
    """Wiping all data."""

    def test_wipe(self, storage: SecureStorage) -> None:
        """Test wipe removes seeds, data and the PIN."""
        storage.save_seed(SEED, "a")
        storage.save_wallet_data("labels", {})
        storage.set_pin("1234")
        storage.wipe_all_data()
        assert len(storage) == 0
        assert not storage.has_pin()
        assert storage.list_wallet_ids() == []

    def test_errors_share_base(self) -> None:
        """Test storage errors derive from StorageError."""
        for error in (NotFound, DecryptionFailed, AuthenticationFailed, InvalidBackup):
            assert issubclass(error, StorageError)


