"""BIP39 mnemonic generation, validation and seed derivation."""

from __future__ import annotations

import hashlib
import secrets
import unicodedata
from collections.abc import Sequence
from functools import lru_cache

from mnemonic import Mnemonic

VALID_STRENGTHS = (128, 160, 192, 224, 256)
VALID_WORD_COUNTS = (12, 15, 18, 21, 24)
SEED_LENGTH = 64
PBKDF2_ROUNDS = 2048


class InvalidMnemonic(ValueError):
    """Mnemonic has a bad word count, an unknown word or a bad checksum."""


@lru_cache(maxsize=1)
def wordlist() -> tuple[str, ...]:
    """Return the 2048-word English list."""
    words = tuple(Mnemonic("english").wordlist)
    if len(words) != 2048:
        raise RuntimeError(f"English wordlist has {len(words)} words, expected 2048")
    return words


@lru_cache(maxsize=1)
def _word_index() -> dict[str, int]:
    return {word: i for i, word in enumerate(wordlist())}


def _normalize(text: str) -> str:
    return unicodedata.normalize("NFKD", text)


def _split_words(mnemonic: str | Sequence[str]) -> list[str]:
    if isinstance(mnemonic, str):
        return _normalize(mnemonic).lower().split()
    return [_normalize(word).strip().lower() for word in mnemonic]


def mnemonic_from_entropy(entropy: bytes) -> str:
    """Encode entropy (16, 20, 24, 28 or 32 bytes) as a mnemonic sentence.

    Raises:
        ValueError: If the entropy length is not supported

    """
    if len(entropy) * 8 not in VALID_STRENGTHS:
        raise ValueError(
            f"entropy must be 16, 20, 24, 28 or 32 bytes, got {len(entropy)}"
        )

    checksum_bits = len(entropy) * 8 // 32
    checksum = hashlib.sha256(entropy).digest()[0] >> (8 - checksum_bits)
    total_bits = len(entropy) * 8 + checksum_bits
    value = (int.from_bytes(entropy, "big") << checksum_bits) | checksum

    words = wordlist()
    return " ".join(
        words[(value >> (total_bits - 11 * (i + 1))) & 0x7FF]
        for i in range(total_bits // 11)
    )


def generate_mnemonic(strength: int = 256) -> str:
    """Generate a new random mnemonic.

    Args:
        strength: Entropy size in bits (128, 160, 192, 224 or 256)

    Returns:
        A mnemonic of 12 to 24 words

    """
    if strength not in VALID_STRENGTHS:
        raise ValueError(f"strength must be one of {VALID_STRENGTHS}, got {strength}")
    return mnemonic_from_entropy(secrets.token_bytes(strength // 8))


def mnemonic_to_entropy(mnemonic: str | Sequence[str]) -> bytes:
    """Decode a mnemonic back to its entropy, checking the checksum.

    Raises:
        InvalidMnemonic: If the word count, a word, or the checksum is invalid

    """
    words = _split_words(mnemonic)
    if len(words) not in VALID_WORD_COUNTS:
        raise InvalidMnemonic(f"invalid word count: {len(words)}")

    index = _word_index()
    value = 0
    for word in words:
        position = index.get(word)
        if position is None:
            raise InvalidMnemonic(f"unknown word '{word}'")
        value = (value << 11) | position

    total_bits = len(words) * 11
    checksum_bits = total_bits // 33
    entropy_bits = total_bits - checksum_bits
    entropy = (value >> checksum_bits).to_bytes(entropy_bits // 8, "big")
    checksum = value & ((1 << checksum_bits) - 1)

    expected = hashlib.sha256(entropy).digest()[0] >> (8 - checksum_bits)
    if checksum != expected:
        raise InvalidMnemonic("checksum mismatch")
    return entropy


def validate_mnemonic(mnemonic: str | Sequence[str]) -> None:
    """Validate a mnemonic, raising InvalidMnemonic on failure."""
    mnemonic_to_entropy(mnemonic)


def is_valid_mnemonic(mnemonic: str | Sequence[str]) -> bool:
    """Return True if the mnemonic is valid."""
    try:
        mnemonic_to_entropy(mnemonic)
    except InvalidMnemonic:
        return False
    return True


def mnemonic_to_seed(mnemonic: str | Sequence[str], passphrase: str = "") -> bytes:
    """Derive the 64-byte seed from a mnemonic and optional passphrase.

    The mnemonic is not validated here; call validate_mnemonic first
    when the input comes from a user.
    """
    if isinstance(mnemonic, str):
        sentence = " ".join(_normalize(mnemonic).split())
    else:
        sentence = " ".join(_normalize(word).strip() for word in mnemonic)
    salt = "mnemonic" + _normalize(passphrase)
    return hashlib.pbkdf2_hmac(
        "sha512",
        sentence.encode("utf-8"),
        salt.encode("utf-8"),
        PBKDF2_ROUNDS,
        dklen=SEED_LENGTH,
    )
