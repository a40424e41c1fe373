"""BIP32 hierarchical deterministic key derivation.

Private keys are raw 32-byte big-endian scalars and public keys are SEC1
encoded; coincurve provides the secp256k1 point arithmetic.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import base58
from coincurve import PrivateKey, PublicKey

from .hashing import hash160

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .address import Network

SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)
HARDENED_OFFSET = 0x80000000
MAX_INDEX = 0xFFFFFFFF
MIN_SEED_LENGTH = 16
MAX_SEED_LENGTH = 64
SERIALIZED_LENGTH = 78


class DerivationError(ValueError):
    """Base error for key derivation."""


class InvalidDerivation(DerivationError):
    """A derivation step produced an invalid key or was not permitted."""

    def __init__(self, message: str, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class InvalidKey(DerivationError):
    """Key material is malformed or out of range."""


class InvalidPath(DerivationError):
    """Derivation path text cannot be parsed."""


def _is_valid_scalar(value: int) -> bool:
    return 0 < value < SECP256K1_N


def derive_public_key(private_key: bytes, compressed: bool = True) -> bytes:
    """Return the public key for a 32-byte private key.

    Args:
        private_key: 32-byte big-endian scalar in [1, n-1]
        compressed: Return the 33-byte compressed form, else 65 bytes

    Raises:
        InvalidKey: If the private key has the wrong length or is out of range

    """
    if len(private_key) != 32:
        raise InvalidKey(f"private key must be 32 bytes, got {len(private_key)}")
    if not _is_valid_scalar(int.from_bytes(private_key, "big")):
        raise InvalidKey("private key is outside the curve order")
    return PrivateKey(bytes(private_key)).public_key.format(compressed=compressed)


@dataclass(frozen=True, slots=True)
class ExtendedKey:
    """A BIP32 extended key (private or public-only).

    Attributes:
        private_key: 32-byte private key, or None for a public-only key
        public_key: 33-byte compressed public key
        chain_code: 32-byte chain code
        depth: Depth in the tree (0 for master)
        parent_fingerprint: First 4 bytes of the parent's HASH160
        child_index: Index this key was derived at

    """

    private_key: bytes | None
    public_key: bytes
    chain_code: bytes
    depth: int = 0
    parent_fingerprint: bytes = b"\x00\x00\x00\x00"
    child_index: int = 0

    def __repr__(self) -> str:
        kind = "private" if self.is_private else "public"
        return (
            f"ExtendedKey({kind}, depth={self.depth}, "
            f"fingerprint={self.fingerprint.hex()}, child_index={self.child_index})"
        )

    @property
    def is_private(self) -> bool:
        return self.private_key is not None

    @property
    def identifier(self) -> bytes:
        """HASH160 of the public key."""
        return hash160(self.public_key)

    @property
    def fingerprint(self) -> bytes:
        return self.identifier[:4]

    def neuter(self) -> ExtendedKey:
        """Return the public-only counterpart of this key."""
        return replace(self, private_key=None)

    def serialize(self, network: Network) -> str:
        """Serialize as a Base58Check xprv/xpub (tprv/tpub on test networks)."""
        if self.private_key is not None:
            version = network.xprv_version
            key_data = b"\x00" + self.private_key
        else:
            version = network.xpub_version
            key_data = self.public_key
        payload = (
            version.to_bytes(4, "big")
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.child_index.to_bytes(4, "big")
            + self.chain_code
            + key_data
        )
        return base58.b58encode_check(payload).decode("ascii")

    @classmethod
    def from_serialized(cls, text: str) -> ExtendedKey:
        """Parse a Base58Check extended key.

        Raises:
            InvalidKey: If the checksum, length, version or key data is invalid

        """
        from .address import Network

        try:
            payload = base58.b58decode_check(text)
        except ValueError as e:
            raise InvalidKey(f"invalid extended key encoding: {e}") from e
        if len(payload) != SERIALIZED_LENGTH:
            raise InvalidKey(
                f"extended key must be {SERIALIZED_LENGTH} bytes, got {len(payload)}"
            )

        version = int.from_bytes(payload[0:4], "big")
        depth = payload[4]
        parent_fingerprint = payload[5:9]
        child_index = int.from_bytes(payload[9:13], "big")
        chain_code = payload[13:45]
        key_data = payload[45:78]

        if depth == 0 and (parent_fingerprint != b"\x00" * 4 or child_index != 0):
            raise InvalidKey("master key with non-zero parent fingerprint or index")

        private_versions = {n.xprv_version for n in Network}
        public_versions = {n.xpub_version for n in Network}

        if version in private_versions:
            if key_data[0] != 0:
                raise InvalidKey("private key data must start with 0x00")
            private_key = key_data[1:]
            public_key = derive_public_key(private_key)
            return cls(private_key, public_key, chain_code, depth, parent_fingerprint, child_index)
        if version in public_versions:
            if key_data[0] not in (2, 3):
                raise InvalidKey("public key data must be compressed")
            try:
                PublicKey(key_data)
            except ValueError as e:
                raise InvalidKey(f"invalid public key: {e}") from e
            return cls(None, key_data, chain_code, depth, parent_fingerprint, child_index)
        raise InvalidKey(f"unknown extended key version {version:08x}")


class DerivationPath:
    """A parsed BIP32 derivation path such as m/84'/0'/0'/0/0."""

    _SEGMENT = re.compile(r"([0-9]+)(['hH]?)")

    __slots__ = ("_indices",)

    def __init__(self, indices: tuple[int, ...] = ()) -> None:
        for index in indices:
            if not 0 <= index <= MAX_INDEX:
                raise InvalidPath(f"index {index} out of range")
        self._indices = tuple(indices)

    @classmethod
    def parse(cls, text: str) -> DerivationPath:
        """Parse path text. Hardened segments use ', h or H.

        Raises:
            InvalidPath: If the text is not a well-formed path

        """
        parts = text.strip().split("/")
        if parts[0] not in ("m", "M"):
            raise InvalidPath(f"path must start with 'm': {text!r}")

        indices: list[int] = []
        for segment in parts[1:]:
            match = cls._SEGMENT.fullmatch(segment)
            if match is None:
                raise InvalidPath(f"invalid path segment {segment!r} in {text!r}")
            index = int(match.group(1))
            if index >= HARDENED_OFFSET:
                raise InvalidPath(f"path index {index} must be below 2^31")
            if match.group(2):
                index += HARDENED_OFFSET
            indices.append(index)
        return cls(tuple(indices))

    @classmethod
    def from_indices(cls, *indices: int) -> DerivationPath:
        return cls(tuple(indices))

    @property
    def indices(self) -> tuple[int, ...]:
        return self._indices

    @property
    def depth(self) -> int:
        return len(self._indices)

    @property
    def purpose(self) -> int | None:
        """Unhardened purpose field (first segment), if any."""
        if not self._indices:
            return None
        return self._indices[0] & ~HARDENED_OFFSET

    @property
    def coin_type(self) -> int | None:
        if len(self._indices) < 2:
            return None
        return self._indices[1] & ~HARDENED_OFFSET

    def child(self, index: int) -> DerivationPath:
        return DerivationPath((*self._indices, index))

    def __iter__(self) -> Iterator[int]:
        return iter(self._indices)

    def __len__(self) -> int:
        return len(self._indices)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DerivationPath):
            return NotImplemented
        return self._indices == other._indices

    def __hash__(self) -> int:
        return hash(self._indices)

    def __str__(self) -> str:
        segments = ["m"]
        for index in self._indices:
            if index >= HARDENED_OFFSET:
                segments.append(f"{index - HARDENED_OFFSET}'")
            else:
                segments.append(str(index))
        return "/".join(segments)

    def __repr__(self) -> str:
        return f"DerivationPath('{self}')"


def master_key(seed: bytes) -> ExtendedKey:
    """Derive the master extended key from a seed.

    Raises:
        ValueError: If the seed is not 16-64 bytes
        InvalidDerivation: If the derived key is outside [1, n-1]

    """
    if not MIN_SEED_LENGTH <= len(seed) <= MAX_SEED_LENGTH:
        raise ValueError(
            f"seed must be {MIN_SEED_LENGTH}-{MAX_SEED_LENGTH} bytes, got {len(seed)}"
        )
    digest = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
    key, chain_code = digest[:32], digest[32:]
    if not _is_valid_scalar(int.from_bytes(key, "big")):
        raise InvalidDerivation("master key is outside the curve order")
    return ExtendedKey(
        private_key=key,
        public_key=PrivateKey(key).public_key.format(compressed=True),
        chain_code=chain_code,
    )


def derive_child(parent: ExtendedKey, index: int) -> ExtendedKey:
    """Derive the child key at index.

    Private parents give private children. Public parents give public
    children and cannot derive hardened indices. An invalid child is
    reported, never skipped; callers decide whether to try index + 1.

    Raises:
        InvalidDerivation: If the index is out of range, hardened derivation
            is requested from a public key, or the child key is invalid

    """
    if not 0 <= index <= MAX_INDEX:
        raise InvalidDerivation(f"child index {index} out of range", index)

    hardened = index >= HARDENED_OFFSET
    if hardened:
        if parent.private_key is None:
            raise InvalidDerivation(
                "hardened derivation requires a private parent key", index
            )
        data = b"\x00" + parent.private_key + index.to_bytes(4, "big")
    else:
        data = parent.public_key + index.to_bytes(4, "big")

    digest = hmac.new(parent.chain_code, data, hashlib.sha512).digest()
    tweak, chain_code = digest[:32], digest[32:]
    tweak_int = int.from_bytes(tweak, "big")
    if tweak_int >= SECP256K1_N:
        raise InvalidDerivation(f"derived tweak exceeds curve order at index {index}", index)

    if parent.private_key is not None:
        child_int = (tweak_int + int.from_bytes(parent.private_key, "big")) % SECP256K1_N
        if child_int == 0:
            raise InvalidDerivation(f"derived private key is zero at index {index}", index)
        child_private: bytes | None = child_int.to_bytes(32, "big")
        child_public = PrivateKey(child_private).public_key.format(compressed=True)
    else:
        child_private = None
        try:
            child_public = PublicKey(parent.public_key).add(tweak).format(compressed=True)
        except ValueError as e:
            raise InvalidDerivation(
                f"derived public key is invalid at index {index}: {e}", index
            ) from e

    return ExtendedKey(
        private_key=child_private,
        public_key=child_public,
        chain_code=chain_code,
        depth=parent.depth + 1,
        parent_fingerprint=parent.fingerprint,
        child_index=index,
    )


def derive_path(root: ExtendedKey, path: DerivationPath | str) -> ExtendedKey:
    """Walk derive_child along every index of path."""
    if isinstance(path, str):
        path = DerivationPath.parse(path)
    key = root
    for index in path:
        key = derive_child(key, index)
    return key
