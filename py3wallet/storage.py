"""Secure storage for seeds, PIN credentials and wallet secrets.

Every value is sealed under an injected protected key with its record id
as associated data. Records are kept in memory and, when a data directory
is configured, mirrored to one JSON file per record.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
import tempfile
import threading
import time
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import msgspec
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .models import (
    BackupPayload,
    BackupSeed,
    EncryptedBackup,
    PinCredential,
    SecretRecord,
)
from .path_utils import get_record_path, scan_record_directory
from .protected_key import ProtectedKeyError, SealedBox
from .types import RecordId, WalletId

if TYPE_CHECKING:
    from .protected_key import ProtectedKey

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEED_PREFIX = "wallet.seed."
DATA_PREFIX = "wallet.data."
PIN_RECORD = RecordId("wallet.pin")
DEFAULT_WALLET_ID = WalletId("default")
# Record files are named by the hex of the record id and must fit NAME_MAX
WALLET_ID_PATTERN = re.compile(r"[A-Za-z0-9._-]{1,64}")
MAX_DATA_KEY_BYTES = 96

SEED_LENGTH = 64
PIN_SALT_SIZE = 16
DEFAULT_PIN_ITERATIONS = 100_000

BACKUP_VERSION = 1
BACKUP_KDF = "pbkdf2-hmac-sha256"
BACKUP_SALT_SIZE = 32
BACKUP_NONCE_SIZE = 12
BACKUP_TAG_SIZE = 16
DEFAULT_BACKUP_ITERATIONS = 100_000


class StorageError(Exception):
    """Base error for secure storage."""


class NotFound(StorageError):
    """No record is stored under the requested id."""


class DecryptionFailed(StorageError):
    """Stored record is corrupt or the protected key is unavailable."""


class AuthenticationFailed(StorageError):
    """Backup authentication tag did not verify (wrong password or tampering)."""


class InvalidBackup(StorageError):
    """Backup blob is malformed or uses an unsupported format."""


def validate_wallet_id(wallet_id: str) -> None:
    """Raise ValueError unless wallet_id is 1-64 letters, digits, dots, dashes or underscores."""
    if not WALLET_ID_PATTERN.fullmatch(wallet_id):
        raise ValueError(
            f"wallet id must be 1-64 characters from A-Z a-z 0-9 . _ -, got {wallet_id!r}"
        )


def validate_data_key(key: str) -> None:
    if not key:
        raise ValueError("key must not be empty")
    if len(key.encode("utf-8")) > MAX_DATA_KEY_BYTES:
        raise ValueError(f"key must be at most {MAX_DATA_KEY_BYTES} bytes")


def seed_record_id(wallet_id: str) -> RecordId:
    return RecordId(f"{SEED_PREFIX}{wallet_id}")


def data_record_id(key: str) -> RecordId:
    return RecordId(f"{DATA_PREFIX}{key}")


def _derive_backup_key(password: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def _backup_associated_data(version: int, kdf: str, iterations: int) -> bytes:
    return f"py3wallet-backup|{version}|{kdf}|{iterations}".encode()


class SecureStorage:
    """Sealed record store with PIN credentials and encrypted backups.

    All public operations hold one re-entrant lock, so a save, import or
    wipe is never observed half-applied.
    """

    def __init__(
        self,
        protected_key: ProtectedKey,
        data_dir: Path | None = None,
        *,
        pin_iterations: int = DEFAULT_PIN_ITERATIONS,
        backup_iterations: int = DEFAULT_BACKUP_ITERATIONS,
    ) -> None:
        if pin_iterations < 1:
            raise ValueError(f"pin_iterations must be positive, got {pin_iterations}")
        if backup_iterations < 1:
            raise ValueError(f"backup_iterations must be positive, got {backup_iterations}")

        self._protected_key = protected_key
        self._pin_iterations = pin_iterations
        self._backup_iterations = backup_iterations
        self._lock = threading.RLock()
        self._records: dict[RecordId, SecretRecord] = {}
        self._data_dir = data_dir
        self._records_dir = data_dir / "records" if data_dir is not None else None

        if self._records_dir is not None:
            self._load_records()

    @property
    def data_dir(self) -> Path | None:
        """Return the data directory if configured."""
        return self._data_dir

    @property
    def records_dir(self) -> Path | None:
        return self._records_dir

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # Record plumbing

    def _record_metric(self, operation: str, outcome: str) -> None:
        """Count a storage operation."""
        from .metrics import STORAGE_OPERATIONS_TOTAL

        STORAGE_OPERATIONS_TOTAL.labels(operation=operation, outcome=outcome).inc()

    def _load_records(self) -> None:
        """Load persisted records from the records directory."""
        assert self._records_dir is not None
        loaded = failed = 0
        for record_id, path in scan_record_directory(self._records_dir).items():
            try:
                record = msgspec.json.decode(path.read_bytes(), type=SecretRecord)
            except (OSError, msgspec.DecodeError, msgspec.ValidationError) as e:
                logger.error(f"Failed to load record file {path.name}: {e}")
                failed += 1
                continue
            if record.identifier != record_id:
                logger.error(f"Record file {path.name} does not match its identifier, skipping")
                failed += 1
                continue
            self._records[record_id] = record
            loaded += 1

        logger.info(f"Loaded {loaded} secure records from {self._records_dir}")
        if failed:
            logger.warning(f"Skipped {failed} unreadable record files")

    def _seal(self, record_id: RecordId, plaintext: bytes, requires_biometric: bool = False) -> SecretRecord:
        try:
            box = self._protected_key.encrypt(plaintext, record_id.encode("utf-8"))
        except ProtectedKeyError as e:
            raise StorageError(f"Protected key unavailable: {e}") from e
        return SecretRecord(
            identifier=record_id,
            nonce=box.nonce,
            ciphertext=box.ciphertext,
            tag=box.tag,
            requires_biometric=requires_biometric,
            created_at=time.time(),
        )

    def _open(self, record: SecretRecord) -> bytes:
        box = SealedBox(nonce=record.nonce, ciphertext=record.ciphertext, tag=record.tag)
        try:
            return self._protected_key.decrypt(box, record.identifier.encode("utf-8"))
        except ProtectedKeyError as e:
            raise DecryptionFailed(f"Failed to decrypt record {record.identifier}") from e

    def _get_record(self, record_id: RecordId) -> SecretRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFound(f"No record stored for {record_id}")
        return record

    def _write_records(self, records: list[SecretRecord]) -> None:
        """Atomically write record files: all temp files first, then renames."""
        if self._records_dir is None:
            return

        self._records_dir.mkdir(parents=True, exist_ok=True)
        staged: list[tuple[Path, Path]] = []
        try:
            for record in records:
                with tempfile.NamedTemporaryFile(
                    mode="wb",
                    dir=self._records_dir,
                    suffix=".tmp",
                    delete=False,
                ) as f:
                    staged.append((Path(f.name), get_record_path(self._records_dir, record.identifier)))
                    f.write(msgspec.json.encode(record))
            for temp_path, final_path in staged:
                temp_path.replace(final_path)
        except OSError as e:
            logger.exception(f"Failed to write records to disk: {e!r}")
            for temp_path, _ in staged:
                with suppress(OSError):
                    temp_path.unlink()
            raise StorageError(f"Failed to persist records: {e}") from e

    def _delete_record_file(self, record_id: RecordId) -> None:
        if self._records_dir is None:
            return
        path = get_record_path(self._records_dir, record_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete record file {path.name}: {e}") from e

    def _commit(self, records: list[SecretRecord]) -> None:
        self._write_records(records)
        for record in records:
            self._records[RecordId(record.identifier)] = record

    def _remove(self, record_id: RecordId) -> bool:
        if record_id not in self._records:
            return False
        self._delete_record_file(record_id)
        del self._records[record_id]
        return True

    # Seeds

    def save_seed(
        self,
        seed: bytes,
        wallet_id: str = DEFAULT_WALLET_ID,
        requires_biometric: bool = True,
    ) -> None:
        """Seal and store a 64-byte seed, replacing any prior seed for the wallet."""
        if len(seed) != SEED_LENGTH:
            raise ValueError(f"seed must be {SEED_LENGTH} bytes, got {len(seed)}")
        validate_wallet_id(wallet_id)

        with self._lock:
            record = self._seal(seed_record_id(wallet_id), bytes(seed), requires_biometric)
            self._commit([record])
        self._record_metric("save_seed", "ok")
        logger.info(f"Saved seed for wallet {wallet_id}")

    def retrieve_seed(self, wallet_id: str = DEFAULT_WALLET_ID) -> bytes:
        """Return the seed for a wallet.

        Raises:
            NotFound: If no seed was saved for the wallet
            DecryptionFailed: If the record is corrupt or the protected key is unavailable

        """
        with self._lock:
            try:
                seed = self._open(self._get_record(seed_record_id(wallet_id)))
            except StorageError:
                self._record_metric("retrieve_seed", "error")
                raise
        self._record_metric("retrieve_seed", "ok")
        return seed

    def has_seed(self, wallet_id: str = DEFAULT_WALLET_ID) -> bool:
        with self._lock:
            return seed_record_id(wallet_id) in self._records

    def seed_requires_biometric(self, wallet_id: str = DEFAULT_WALLET_ID) -> bool:
        with self._lock:
            return self._get_record(seed_record_id(wallet_id)).requires_biometric

    def delete_seed(self, wallet_id: str = DEFAULT_WALLET_ID) -> None:
        with self._lock:
            if not self._remove(seed_record_id(wallet_id)):
                raise NotFound(f"No seed stored for wallet {wallet_id}")
        logger.info(f"Deleted seed for wallet {wallet_id}")

    def list_wallet_ids(self) -> list[WalletId]:
        with self._lock:
            return sorted(
                WalletId(record_id.removeprefix(SEED_PREFIX))
                for record_id in self._records
                if record_id.startswith(SEED_PREFIX)
            )

    # Wallet data

    def save_wallet_data(self, key: str, value: Any) -> None:
        """Seal any msgspec-serializable value under key."""
        validate_data_key(key)
        payload = msgspec.json.encode(value)
        with self._lock:
            self._commit([self._seal(data_record_id(key), payload)])
        self._record_metric("save_wallet_data", "ok")

    def retrieve_wallet_data(self, key: str, type_: type[T]) -> T:
        """Open the value stored under key and decode it as type_.

        Raises:
            NotFound: If nothing is stored under key
            DecryptionFailed: If the record cannot be opened or decoded

        """
        with self._lock:
            payload = self._open(self._get_record(data_record_id(key)))
        try:
            return msgspec.json.decode(payload, type=type_)
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            raise DecryptionFailed(f"Stored data for {key} does not decode as {type_!r}: {e}") from e

    def has_wallet_data(self, key: str) -> bool:
        with self._lock:
            return data_record_id(key) in self._records

    def delete_wallet_data(self, key: str) -> bool:
        with self._lock:
            return self._remove(data_record_id(key))

    # PIN

    def _pin_digest(self, pin: str, salt: bytes, iterations: int) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", pin.encode("utf-8"), salt, iterations)

    def set_pin(self, pin: str) -> None:
        """Store a salted digest of pin. The PIN itself is never stored."""
        if not pin:
            raise ValueError("PIN must not be empty")
        salt = secrets.token_bytes(PIN_SALT_SIZE)
        credential = PinCredential(
            salt=salt,
            digest=self._pin_digest(pin, salt, self._pin_iterations),
            iterations=self._pin_iterations,
        )
        with self._lock:
            self._commit([self._seal(PIN_RECORD, msgspec.json.encode(credential))])
        self._record_metric("set_pin", "ok")
        logger.info("PIN credential updated")

    def verify_pin(self, pin: str) -> bool:
        """Return True if pin matches the stored credential.

        Returns False, never raises, for a mismatch, a missing PIN, a corrupt
        credential or an unavailable protected key.
        """
        with self._lock:
            record = self._records.get(PIN_RECORD)
            if record is None:
                return False
            try:
                credential = msgspec.json.decode(self._open(record), type=PinCredential)
            except (StorageError, msgspec.DecodeError, msgspec.ValidationError) as e:
                logger.warning(f"PIN credential unreadable: {e}")
                return False

        if credential.iterations < 1:
            return False
        candidate = self._pin_digest(pin, credential.salt, credential.iterations)
        return hmac.compare_digest(candidate, credential.digest)

    def has_pin(self) -> bool:
        with self._lock:
            return PIN_RECORD in self._records

    def remove_pin(self) -> bool:
        with self._lock:
            removed = self._remove(PIN_RECORD)
        if removed:
            logger.info("PIN credential removed")
        return removed

    # Backup

    def export_encrypted_backup(self, password: str) -> bytes:
        """Export every seed and wallet data record encrypted under password.

        The PIN credential is device-local and is not exported.

        Returns:
            JSON-encoded EncryptedBackup

        """
        if not password:
            raise ValueError("backup password must not be empty")

        with self._lock:
            seeds: dict[str, BackupSeed] = {}
            wallet_data: dict[str, bytes] = {}
            for record_id, record in self._records.items():
                if record_id.startswith(SEED_PREFIX):
                    seeds[record_id.removeprefix(SEED_PREFIX)] = BackupSeed(
                        seed=self._open(record),
                        requires_biometric=record.requires_biometric,
                    )
                elif record_id.startswith(DATA_PREFIX):
                    wallet_data[record_id.removeprefix(DATA_PREFIX)] = self._open(record)

        payload = BackupPayload(
            version=BACKUP_VERSION,
            created_at=time.time(),
            seeds=seeds,
            wallet_data=wallet_data,
        )

        salt = secrets.token_bytes(BACKUP_SALT_SIZE)
        nonce = secrets.token_bytes(BACKUP_NONCE_SIZE)
        key = _derive_backup_key(password, salt, self._backup_iterations)
        sealed = AESGCM(key).encrypt(
            nonce,
            msgspec.json.encode(payload),
            _backup_associated_data(BACKUP_VERSION, BACKUP_KDF, self._backup_iterations),
        )

        backup = EncryptedBackup(
            version=BACKUP_VERSION,
            kdf=BACKUP_KDF,
            kdf_iterations=self._backup_iterations,
            salt=salt,
            nonce=nonce,
            ciphertext=sealed[:-BACKUP_TAG_SIZE],
            auth_tag=sealed[-BACKUP_TAG_SIZE:],
        )
        self._record_metric("export_backup", "ok")
        logger.info(f"Exported encrypted backup with {len(seeds)} seeds")
        return msgspec.json.encode(backup)

    def _parse_backup(self, blob: bytes | str) -> EncryptedBackup:
        try:
            backup = msgspec.json.decode(blob, type=EncryptedBackup)
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            raise InvalidBackup(f"Malformed backup: {e}") from e

        if backup.version != BACKUP_VERSION:
            raise InvalidBackup(f"Unsupported backup version {backup.version}")
        if backup.kdf != BACKUP_KDF:
            raise InvalidBackup(f"Unsupported backup KDF {backup.kdf!r}")
        if backup.kdf_iterations < 1:
            raise InvalidBackup("kdfIterations must be positive")
        if not backup.salt:
            raise InvalidBackup("backup salt is empty")
        if len(backup.nonce) != BACKUP_NONCE_SIZE:
            raise InvalidBackup(f"backup nonce must be {BACKUP_NONCE_SIZE} bytes")
        if len(backup.auth_tag) != BACKUP_TAG_SIZE:
            raise InvalidBackup(f"backup authTag must be {BACKUP_TAG_SIZE} bytes")
        return backup

    def import_encrypted_backup(self, blob: bytes | str, password: str) -> list[WalletId]:
        """Restore seeds and wallet data from an encrypted backup.

        Records with the same identifiers are replaced. Nothing is changed
        unless the whole backup decrypts and re-seals.

        Returns:
            Wallet ids restored from the backup

        Raises:
            InvalidBackup: If the blob is malformed or unsupported
            AuthenticationFailed: If the password is wrong or the blob was tampered with

        """
        backup = self._parse_backup(blob)
        key = _derive_backup_key(password, backup.salt, backup.kdf_iterations)
        try:
            plaintext = AESGCM(key).decrypt(
                backup.nonce,
                backup.ciphertext + backup.auth_tag,
                _backup_associated_data(backup.version, backup.kdf, backup.kdf_iterations),
            )
        except InvalidTag as e:
            self._record_metric("import_backup", "auth_failed")
            logger.warning("Backup import rejected: authentication tag mismatch")
            raise AuthenticationFailed("Backup password is incorrect or the backup was modified") from e

        try:
            payload = msgspec.json.decode(plaintext, type=BackupPayload)
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            raise InvalidBackup(f"Malformed backup payload: {e}") from e

        try:
            for wallet_id in payload.seeds:
                validate_wallet_id(wallet_id)
            for data_key in payload.wallet_data:
                validate_data_key(data_key)
        except ValueError as e:
            raise InvalidBackup(f"Backup contains an invalid identifier: {e}") from e
        for wallet_id, entry in payload.seeds.items():
            if len(entry.seed) != SEED_LENGTH:
                raise InvalidBackup(f"Backup seed for wallet {wallet_id!r} is invalid")

        with self._lock:
            records = [
                self._seal(seed_record_id(wallet_id), entry.seed, entry.requires_biometric)
                for wallet_id, entry in payload.seeds.items()
            ]
            records.extend(
                self._seal(data_record_id(data_key), value)
                for data_key, value in payload.wallet_data.items()
            )
            self._commit(records)

        self._record_metric("import_backup", "ok")
        logger.info(f"Imported backup with {len(payload.seeds)} seeds")
        return sorted(WalletId(wallet_id) for wallet_id in payload.seeds)

    def wipe_all_data(self) -> None:
        """Delete every record, including the PIN credential."""
        with self._lock:
            for record_id in list(self._records):
                self._delete_record_file(record_id)
                del self._records[record_id]
            if self._records_dir is not None:
                for stray in self._records_dir.glob("*.tmp"):
                    with suppress(OSError):
                        stray.unlink()
        self._record_metric("wipe", "ok")
        logger.warning("Wiped all secure storage records")
