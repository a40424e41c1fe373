"""Path utilities for secure storage record files.

Record identifiers contain dots and caller-chosen wallet names, so files
are named by the hex encoding of the identifier rather than the id itself.
"""

from pathlib import Path  # noqa: TC003

from .types import RecordId

RECORD_SUFFIX = ".json"


def get_record_filename(record_id: str) -> str:
    """Get the filename for a record identifier.

    Args:
        record_id: The record identifier (e.g., "wallet.seed.default")

    Returns:
        The record filename (e.g., "77616c6c65742e....json")

    """
    return f"{record_id.encode('utf-8').hex()}{RECORD_SUFFIX}"


def get_record_path(directory: Path, record_id: str) -> Path:
    """Get the file path for a record inside directory."""
    return directory / get_record_filename(record_id)


def get_record_id_from_filename(filename: str) -> RecordId | None:
    """Recover the record identifier from a record filename.

    Args:
        filename: The filename to parse

    Returns:
        The record identifier, or None if filename doesn't match the expected pattern

    """
    if not filename.endswith(RECORD_SUFFIX):
        return None

    stem = filename[: -len(RECORD_SUFFIX)]
    if not stem:
        return None
    try:
        return RecordId(bytes.fromhex(stem).decode("utf-8"))
    except ValueError:
        return None


def scan_record_directory(directory: Path) -> dict[RecordId, Path]:
    """Scan directory for record files.

    Files whose names don't decode to a record identifier are skipped.

    Returns:
        Dict mapping record identifier to file path

    """
    records: dict[RecordId, Path] = {}

    if not directory.exists() or not directory.is_dir():
        return records

    for record_file in directory.glob(f"*{RECORD_SUFFIX}"):
        record_id = get_record_id_from_filename(record_file.name)
        if record_id is not None:
            records[record_id] = record_file

    return records
