"""Bech32 and Bech32m codec for SegWit addresses (BIP173, BIP350)."""

from __future__ import annotations

from enum import Enum

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_REV = {c: i for i, c in enumerate(CHARSET)}

_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)

MAX_LENGTH = 90
CHECKSUM_LENGTH = 6


class Encoding(Enum):
    """Checksum variant."""

    BECH32 = 1
    BECH32M = 0x2BC830A3


class Bech32Error(ValueError):
    """Base error for Bech32 encoding and decoding."""


class InvalidChecksum(Bech32Error):
    """The checksum does not verify for the given data."""


class InvalidFormat(Bech32Error):
    """The string or witness program is malformed."""


def polymod(values: list[int]) -> int:
    """Compute the Bech32 checksum polynomial over values."""
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i, gen in enumerate(_GENERATOR):
            if (top >> i) & 1:
                chk ^= gen
    return chk


def hrp_expand(hrp: str) -> list[int]:
    """Expand the human-readable part for checksum computation."""
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: list[int], encoding: Encoding) -> list[int]:
    values = hrp_expand(hrp) + data
    mod = polymod(values + [0] * CHECKSUM_LENGTH) ^ encoding.value
    return [(mod >> 5 * (5 - i)) & 31 for i in range(CHECKSUM_LENGTH)]


def _verify_checksum(hrp: str, data: list[int]) -> Encoding | None:
    const = polymod(hrp_expand(hrp) + data)
    for encoding in Encoding:
        if const == encoding.value:
            return encoding
    return None


def convertbits(data: bytes | list[int], from_bits: int, to_bits: int, pad: bool = True) -> list[int]:
    """Regroup a sequence of from_bits-wide values into to_bits-wide values.

    Raises:
        InvalidFormat: If a value is out of range or the padding is invalid

    """
    acc = 0
    bits = 0
    result: list[int] = []
    maxv = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise InvalidFormat(f"value {value} does not fit in {from_bits} bits")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & maxv)
    if pad:
        if bits:
            result.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise InvalidFormat("invalid padding in data part")
    return result


def _validate_hrp(hrp: str) -> None:
    if not 1 <= len(hrp) <= 83:
        raise InvalidFormat(f"human-readable part must be 1-83 characters, got {len(hrp)}")
    if any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise InvalidFormat("human-readable part contains non-printable characters")


def _validate_program(witness_version: int, program: bytes) -> None:
    if not 0 <= witness_version <= 16:
        raise InvalidFormat(f"witness version must be 0-16, got {witness_version}")
    if not 2 <= len(program) <= 40:
        raise InvalidFormat(f"witness program must be 2-40 bytes, got {len(program)}")
    if witness_version == 0 and len(program) not in (20, 32):
        raise InvalidFormat(
            f"version 0 witness program must be 20 or 32 bytes, got {len(program)}"
        )


def encode(hrp: str, witness_version: int, program: bytes) -> str:
    """Encode a SegWit address.

    Version 0 programs use the Bech32 checksum, versions 1 to 16 use Bech32m.
    The result is always lowercase.

    Args:
        hrp: Human-readable part (e.g. "bc")
        witness_version: Witness version 0-16
        program: Witness program bytes

    Returns:
        The encoded address

    Raises:
        InvalidFormat: If the HRP, version or program is invalid

    """
    hrp = hrp.lower()
    _validate_hrp(hrp)
    _validate_program(witness_version, bytes(program))

    encoding = Encoding.BECH32 if witness_version == 0 else Encoding.BECH32M
    data = [witness_version] + convertbits(bytes(program), 8, 5)
    checksum = _create_checksum(hrp, data, encoding)
    result = hrp + "1" + "".join(CHARSET[d] for d in data + checksum)
    if len(result) > MAX_LENGTH:
        raise InvalidFormat(f"encoded address exceeds {MAX_LENGTH} characters")
    return result


def decode(address: str, hrp: str | None = None) -> tuple[str, int, bytes]:
    """Decode a SegWit address.

    Args:
        address: The address string
        hrp: Expected human-readable part, or None to accept any

    Returns:
        Tuple of (hrp, witness_version, program)

    Raises:
        InvalidFormat: If the string is malformed or the HRP does not match
        InvalidChecksum: If the checksum does not verify, or the checksum
            variant does not match the witness version

    """
    if len(address) > MAX_LENGTH:
        raise InvalidFormat(f"address exceeds {MAX_LENGTH} characters")
    if any(ord(c) < 33 or ord(c) > 126 for c in address):
        raise InvalidFormat("address contains non-printable characters")
    if address.lower() != address and address.upper() != address:
        raise InvalidFormat("address mixes upper and lower case")

    address = address.lower()
    pos = address.rfind("1")
    if pos < 1:
        raise InvalidFormat("missing separator or empty human-readable part")
    if pos + CHECKSUM_LENGTH + 1 > len(address):
        raise InvalidFormat("data part too short")

    decoded_hrp = address[:pos]
    _validate_hrp(decoded_hrp)

    try:
        data = [_CHARSET_REV[c] for c in address[pos + 1 :]]
    except KeyError as e:
        raise InvalidFormat(f"invalid character {e.args[0]!r} in data part") from e

    encoding = _verify_checksum(decoded_hrp, data)
    if encoding is None:
        raise InvalidChecksum("checksum verification failed")

    if hrp is not None and decoded_hrp != hrp.lower():
        raise InvalidFormat(f"expected human-readable part {hrp!r}, got {decoded_hrp!r}")

    values = data[:-CHECKSUM_LENGTH]
    if not values:
        raise InvalidFormat("missing witness version")
    witness_version = values[0]
    program = bytes(convertbits(values[1:], 5, 8, pad=False))
    _validate_program(witness_version, program)

    expected = Encoding.BECH32 if witness_version == 0 else Encoding.BECH32M
    if encoding is not expected:
        raise InvalidChecksum(
            f"witness version {witness_version} requires {expected.name.lower()} checksum"
        )
    return decoded_hrp, witness_version, program
