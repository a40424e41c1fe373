"""Data classes and msgspec structs for py3wallet.

Structs are the on-disk and backup wire formats (msgspec encodes ``bytes``
as base64 in JSON); dataclasses carry results between modules.
"""

from dataclasses import dataclass

import msgspec

from .types import WalletId  # noqa: TC001


class SecretRecord(msgspec.Struct, frozen=True):
    """A value sealed under the protected key.

    Attributes:
        identifier: Record id, also bound as associated data
        nonce: AEAD nonce
        ciphertext: Encrypted payload
        tag: AEAD authentication tag
        requires_biometric: Whether reading needs a biometric-gated session
        created_at: Unix timestamp of when the record was written

    """

    identifier: str
    nonce: bytes
    ciphertext: bytes
    tag: bytes
    requires_biometric: bool = False
    created_at: float = 0.0


class PinCredential(msgspec.Struct, frozen=True):
    """Salted PIN digest. Sealed before it is stored."""

    salt: bytes
    digest: bytes
    iterations: int
    algorithm: str = "pbkdf2-hmac-sha256"


class EncryptedBackup(msgspec.Struct, frozen=True, rename="camel"):
    """Password-encrypted backup container."""

    version: int
    kdf: str
    kdf_iterations: int
    salt: bytes
    nonce: bytes
    ciphertext: bytes
    auth_tag: bytes


class BackupSeed(msgspec.Struct, frozen=True):
    seed: bytes
    requires_biometric: bool = True


class BackupPayload(msgspec.Struct, frozen=True):
    """Plaintext inside an EncryptedBackup."""

    version: int
    created_at: float
    seeds: dict[str, BackupSeed] = {}
    wallet_data: dict[str, bytes] = {}


class WalletMetadata(msgspec.Struct, frozen=True):
    """Non-secret description of a stored wallet."""

    wallet_id: str
    created_at: float
    word_count: int
    has_passphrase: bool
    restored: bool = False


@dataclass(frozen=True, slots=True)
class AddressInfo:
    """Public view of a derived address, safe to cache.

    Attributes:
        wallet_id: Wallet the address belongs to
        path: Canonical derivation path
        address: Encoded address
        public_key_hex: Compressed public key in hex
        script_type: Script family value (e.g. "p2wpkh")
        network: Network value (e.g. "mainnet")

    """

    wallet_id: WalletId
    path: str
    address: str
    public_key_hex: str
    script_type: str
    network: str
