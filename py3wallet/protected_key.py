"""Encryption under a protected key that the storage layer never sees.

On a device the key lives in secure hardware; ``SoftwareProtectedKey`` is
the host implementation and keeps an AES-256-GCM key in memory, optionally
loaded from a 0600 key file.
"""

from __future__ import annotations

import logging
import os
import secrets
import tempfile
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_FILE_MODE = 0o600


class ProtectedKeyError(Exception):
    """Protected key is unavailable or a sealed box failed to open."""


@dataclass(frozen=True, slots=True)
class SealedBox:
    """AEAD output split into its parts."""

    nonce: bytes
    ciphertext: bytes
    tag: bytes


class ProtectedKey(Protocol):
    """Capability to seal and open data under a key held elsewhere."""

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> SealedBox: ...

    def decrypt(self, box: SealedBox, associated_data: bytes) -> bytes: ...


class SoftwareProtectedKey:
    """AES-256-GCM protected key held in process memory."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ProtectedKeyError(f"protected key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def generate(cls) -> SoftwareProtectedKey:
        return cls(AESGCM.generate_key(bit_length=KEY_SIZE * 8))

    @classmethod
    def from_file(cls, path: Path) -> SoftwareProtectedKey:
        """Load the key from path, creating it if missing."""
        if path.exists():
            key = path.read_bytes()
            logger.info(f"Loaded protected key from {path}")
            return cls(key)

        key = AESGCM.generate_key(bit_length=KEY_SIZE * 8)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="wb",
                dir=path.parent,
                suffix=".tmp",
                delete=False,
            ) as f:
                temp_path = Path(f.name)
                os.chmod(temp_path, KEY_FILE_MODE)
                f.write(key)
            temp_path.rename(path)
        except OSError as e:
            if temp_path is not None:
                with suppress(OSError):
                    temp_path.unlink()
            raise ProtectedKeyError(f"Failed to create protected key file {path}: {e}") from e

        logger.info(f"Created new protected key at {path}")
        return cls(key)

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> SealedBox:
        nonce = secrets.token_bytes(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext, associated_data)
        return SealedBox(nonce=nonce, ciphertext=sealed[:-TAG_SIZE], tag=sealed[-TAG_SIZE:])

    def decrypt(self, box: SealedBox, associated_data: bytes) -> bytes:
        try:
            return self._aead.decrypt(box.nonce, box.ciphertext + box.tag, associated_data)
        except InvalidTag as e:
            raise ProtectedKeyError("sealed box failed authentication") from e
        except ValueError as e:
            raise ProtectedKeyError(f"malformed sealed box: {e}") from e
