"""Tests for secure storage persistence."""

from pathlib import Path

import pytest
from conftest import TEST_KDF_ITERATIONS

from py3wallet.path_utils import get_record_path
from py3wallet.protected_key import SoftwareProtectedKey
from py3wallet.storage import MAX_DATA_KEY_BYTES, DecryptionFailed, NotFound, SecureStorage

SEED = bytes(range(64))


def make_storage(data_dir: Path, key: SoftwareProtectedKey) -> SecureStorage:
    return SecureStorage(
        key,
        data_dir,
        pin_iterations=TEST_KDF_ITERATIONS,
        backup_iterations=TEST_KDF_ITERATIONS,
    )


class TestStoragePersistence:
    """Test record persistence functionality."""

    def test_storage_without_data_dir(self) -> None:
        """Test that storage works without a data_dir (in-memory only)."""
        storage = SecureStorage(SoftwareProtectedKey.generate())
        assert storage.data_dir is None
        assert storage.records_dir is None

    def test_storage_with_data_dir(self, temp_data_dir: Path) -> None:
        """Test that storage keeps records in a records subdirectory."""
        storage = make_storage(temp_data_dir, SoftwareProtectedKey.generate())
        assert storage.data_dir == temp_data_dir
        assert storage.records_dir == temp_data_dir / "records"

    def test_seed_written_to_disk(self, temp_data_dir: Path) -> None:
        """Test saving a seed writes one sealed record file."""
        storage = make_storage(temp_data_dir, SoftwareProtectedKey.generate())
        storage.save_seed(SEED, "main")

        path = get_record_path(temp_data_dir / "records", "wallet.seed.main")
        assert path.exists()
        assert SEED.hex() not in path.read_text()
        assert list((temp_data_dir / "records").glob("*.tmp")) == []

    def test_longest_wallet_id(self, temp_data_dir: Path) -> None:
        """Test the longest allowed wallet id and data key persist and reload."""
        key = SoftwareProtectedKey.generate()
        wallet_id = "w" * 64
        storage = make_storage(temp_data_dir, key)
        storage.save_seed(SEED, wallet_id)
        storage.save_wallet_data("k" * MAX_DATA_KEY_BYTES, {"a": "b"})

        reloaded = make_storage(temp_data_dir, key)
        assert reloaded.list_wallet_ids() == [wallet_id]
        assert reloaded.retrieve_seed(wallet_id) == SEED

    def test_reload(self, temp_data_dir: Path) -> None:
        """Test seeds, data and the PIN survive a restart with the same key."""
        key = SoftwareProtectedKey.generate()
        storage = make_storage(temp_data_dir, key)
        storage.save_seed(SEED, "main", requires_biometric=False)
        storage.save_wallet_data("labels", {"a": "b"})
        storage.set_pin("1234")

        reloaded = make_storage(temp_data_dir, key)
        assert reloaded.list_wallet_ids() == ["main"]
        assert reloaded.retrieve_seed("main") == SEED
        assert not reloaded.seed_requires_biometric("main")
        assert reloaded.retrieve_wallet_data("labels", dict[str, str]) == {"a": "b"}
        assert reloaded.verify_pin("1234")

    def test_reload_with_other_key(self, temp_data_dir: Path) -> None:
        """Test records load but fail to open under a different protected key."""
        make_storage(temp_data_dir, SoftwareProtectedKey.generate()).save_seed(SEED, "main")

        reloaded = make_storage(temp_data_dir, SoftwareProtectedKey.generate())
        assert reloaded.has_seed("main")
        with pytest.raises(DecryptionFailed):
            reloaded.retrieve_seed("main")

    def test_delete_removes_file(self, temp_data_dir: Path) -> None:
        """Test deleting a seed deletes its record file."""
        key = SoftwareProtectedKey.generate()
        storage = make_storage(temp_data_dir, key)
        storage.save_seed(SEED, "main")
        storage.delete_seed("main")

        assert not get_record_path(temp_data_dir / "records", "wallet.seed.main").exists()
        with pytest.raises(NotFound):
            make_storage(temp_data_dir, key).retrieve_seed("main")

    def test_corrupt_file_skipped(self, temp_data_dir: Path) -> None:
        """Test an unreadable record file is skipped on load."""
        key = SoftwareProtectedKey.generate()
        storage = make_storage(temp_data_dir, key)
        storage.save_seed(SEED, "good")
        records_dir = temp_data_dir / "records"
        get_record_path(records_dir, "wallet.seed.bad").write_text("not json")

        reloaded = make_storage(temp_data_dir, key)
        assert reloaded.list_wallet_ids() == ["good"]

    def test_mismatched_identifier_skipped(self, temp_data_dir: Path) -> None:
        """Test a record file renamed to another identifier is skipped."""
        key = SoftwareProtectedKey.generate()
        make_storage(temp_data_dir, key).save_seed(SEED, "a")
        records_dir = temp_data_dir / "records"
        get_record_path(records_dir, "wallet.seed.a").rename(
            get_record_path(records_dir, "wallet.seed.b")
        )

        assert make_storage(temp_data_dir, key).list_wallet_ids() == []

    def test_wipe_removes_files(self, temp_data_dir: Path) -> None:
        """Test wipe deletes every record file including stray temp files."""
        storage = make_storage(temp_data_dir, SoftwareProtectedKey.generate())
        storage.save_seed(SEED, "main")
        storage.set_pin("1234")
        records_dir = temp_data_dir / "records"
        (records_dir / "leftover.tmp").write_bytes(b"")

        storage.wipe_all_data()
        assert list(records_dir.iterdir()) == []

    def test_backup_import_persisted(self, temp_data_dir: Path) -> None:
        """Test records restored from a backup are written to disk."""
        source = SecureStorage(SoftwareProtectedKey.generate(), backup_iterations=TEST_KDF_ITERATIONS)
        source.save_seed(SEED, "restored")
        blob = source.export_encrypted_backup("pw")

        key = SoftwareProtectedKey.generate()
        make_storage(temp_data_dir, key).import_encrypted_backup(blob, "pw")
        assert make_storage(temp_data_dir, key).retrieve_seed("restored") == SEED
