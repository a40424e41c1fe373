"""Tests for path_utils module."""

from pathlib import Path

from py3wallet.path_utils import (
    get_record_filename,
    get_record_id_from_filename,
    get_record_path,
    scan_record_directory,
)


class TestGetRecordFilename:
    """Tests for get_record_filename function."""

    def test_hex_encoded(self) -> None:
        """Test the identifier is hex encoded."""
        assert get_record_filename("wallet.pin") == "77616c6c65742e70696e.json"

    def test_unsafe_characters(self) -> None:
        """Test that separators in wallet ids never reach the filename."""
        filename = get_record_filename("wallet.seed.../../etc")
        assert "/" not in filename
        assert filename.endswith(".json")

    def test_unicode_identifier(self) -> None:
        """Test non-ASCII identifiers are encoded as UTF-8."""
        assert get_record_id_from_filename(get_record_filename("wallet.seed.café")) == (
            "wallet.seed.café"
        )


class TestGetRecordPath:
    """Tests for get_record_path function."""

    def test_basic_path(self) -> None:
        """Test joining with the directory."""
        assert get_record_path(Path("/some/dir"), "wallet.pin") == Path(
            "/some/dir/77616c6c65742e70696e.json"
        )


class TestGetRecordIdFromFilename:
    """Tests for get_record_id_from_filename function."""

    def test_valid(self) -> None:
        """Test decoding a record filename."""
        assert get_record_id_from_filename("77616c6c65742e70696e.json") == "wallet.pin"

    def test_wrong_suffix(self) -> None:
        """Test that other suffixes are ignored."""
        assert get_record_id_from_filename("77616c6c65742e70696e.txt") is None

    def test_not_hex(self) -> None:
        """Test that non-hex stems are ignored."""
        assert get_record_id_from_filename("wallet.pin.json") is None

    def test_empty_stem(self) -> None:
        """Test that a bare suffix is ignored."""
        assert get_record_id_from_filename(".json") is None

    def test_invalid_utf8(self) -> None:
        """Test that hex which is not UTF-8 is ignored."""
        assert get_record_id_from_filename("ff.json") is None


class TestScanRecordDirectory:
    """Tests for scan_record_directory function."""

    def test_missing_directory(self, tmp_path: Path) -> None:
        """Test a missing directory yields no records."""
        assert scan_record_directory(tmp_path / "absent") == {}

    def test_scan(self, tmp_path: Path) -> None:
        """Test only well-formed record files are returned."""
        (tmp_path / get_record_filename("wallet.seed.a")).write_text("{}")
        (tmp_path / get_record_filename("wallet.pin")).write_text("{}")
        (tmp_path / "notes.json").write_text("{}")
        (tmp_path / "leftover.tmp").write_text("")

        records = scan_record_directory(tmp_path)
        assert set(records) == {"wallet.seed.a", "wallet.pin"}
        assert records["wallet.pin"] == tmp_path / get_record_filename("wallet.pin")
