"""Bitcoin networks, address encoding and seed-to-address derivation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import base58
from coincurve import PublicKey

from . import bech32
from .hashing import hash160, tagged_hash
from .hdkey import (
    HARDENED_OFFSET,
    DerivationPath,
    InvalidDerivation,
    InvalidKey,
    InvalidPath,
    derive_path,
    master_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NetworkParams:
    """Version bytes and prefixes for one network."""

    bech32_hrp: str
    p2pkh_version: int
    p2sh_version: int
    wif_version: int
    xpub_version: int
    xprv_version: int
    coin_type: int


_PARAMS = {
    "mainnet": NetworkParams("bc", 0x00, 0x05, 0x80, 0x0488B21E, 0x0488ADE4, 0),
    "testnet": NetworkParams("tb", 0x6F, 0xC4, 0xEF, 0x043587CF, 0x04358394, 1),
    "regtest": NetworkParams("bcrt", 0x6F, 0xC4, 0xEF, 0x043587CF, 0x04358394, 1),
}


class Network(Enum):
    """Supported Bitcoin networks."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    REGTEST = "regtest"

    @property
    def params(self) -> NetworkParams:
        return _PARAMS[self.value]

    @property
    def bech32_hrp(self) -> str:
        return self.params.bech32_hrp

    @property
    def p2pkh_version(self) -> int:
        return self.params.p2pkh_version

    @property
    def p2sh_version(self) -> int:
        return self.params.p2sh_version

    @property
    def wif_version(self) -> int:
        return self.params.wif_version

    @property
    def xpub_version(self) -> int:
        return self.params.xpub_version

    @property
    def xprv_version(self) -> int:
        return self.params.xprv_version

    @property
    def coin_type(self) -> int:
        return self.params.coin_type


class ScriptType(Enum):
    """Output script families an address can be built for."""

    P2PKH = "p2pkh"
    P2SH_P2WPKH = "p2sh-p2wpkh"
    P2WPKH = "p2wpkh"
    P2TR = "p2tr"


_PURPOSE_SCRIPT_TYPES = {
    44: ScriptType.P2PKH,
    49: ScriptType.P2SH_P2WPKH,
    84: ScriptType.P2WPKH,
    86: ScriptType.P2TR,
}

_SCRIPT_TYPE_PURPOSES = {v: k for k, v in _PURPOSE_SCRIPT_TYPES.items()}


@dataclass(frozen=True, slots=True)
class DerivedAddress:
    """Key material and address derived at one path.

    Attributes:
        private_key: 32-byte private key at the path
        address: Encoded address string
        public_key: 33-byte compressed public key
        path: Canonical path text
        script_type: Script family the address encodes
        network: Network the address belongs to

    """

    private_key: bytes
    address: str
    public_key: bytes
    path: str
    script_type: ScriptType
    network: Network

    def __repr__(self) -> str:
        return (
            f"DerivedAddress(address={self.address!r}, path={self.path!r}, "
            f"script_type={self.script_type.value})"
        )


def script_type_for_path(path: DerivationPath | str) -> ScriptType:
    """Pick the script type implied by the path's purpose field.

    44 is legacy P2PKH, 49 nested SegWit, 84 native SegWit and 86 Taproot.
    Any other purpose falls back to native SegWit.
    """
    if isinstance(path, str):
        path = DerivationPath.parse(path)
    purpose = path.purpose
    if purpose is None:
        return ScriptType.P2WPKH
    return _PURPOSE_SCRIPT_TYPES.get(purpose, ScriptType.P2WPKH)


def purpose_for_script_type(script_type: ScriptType) -> int:
    return _SCRIPT_TYPE_PURPOSES[script_type]


def account_base_path(
    network: Network, purpose: int = 84, account: int = 0
) -> DerivationPath:
    """Return m/purpose'/coin'/account' for the network."""
    for name, value in (("purpose", purpose), ("account", account)):
        if not 0 <= value < HARDENED_OFFSET:
            raise InvalidPath(f"{name} must be between 0 and 2^31-1, got {value}")
    return DerivationPath.from_indices(
        purpose + HARDENED_OFFSET,
        network.coin_type + HARDENED_OFFSET,
        account + HARDENED_OFFSET,
    )


def first_account_path(network: Network) -> DerivationPath:
    """Return the first receive path of the first native SegWit account."""
    return account_base_path(network).child(0).child(0)


def _base58check(version: int, payload: bytes) -> str:
    return base58.b58encode_check(bytes([version]) + payload).decode("ascii")


def p2pkh_address(public_key: bytes, network: Network) -> str:
    return _base58check(network.p2pkh_version, hash160(public_key))


def p2sh_p2wpkh_address(public_key: bytes, network: Network) -> str:
    redeem_script = b"\x00\x14" + hash160(public_key)
    return _base58check(network.p2sh_version, hash160(redeem_script))


def p2wpkh_address(public_key: bytes, network: Network) -> str:
    return bech32.encode(network.bech32_hrp, 0, hash160(public_key))


def taproot_output_key(public_key: bytes) -> bytes:
    """Return the BIP86 x-only output key for a key-path-only spend."""
    # x-only keys imply an even Y coordinate
    internal = b"\x02" + PublicKey(public_key).format(compressed=True)[1:]
    tweak = tagged_hash("TapTweak", internal[1:])
    try:
        output = PublicKey(internal).add(tweak)
    except ValueError as e:
        raise InvalidDerivation(f"taproot tweak produced an invalid key: {e}") from e
    return output.format(compressed=True)[1:]


def p2tr_address(public_key: bytes, network: Network) -> str:
    return bech32.encode(network.bech32_hrp, 1, taproot_output_key(public_key))


_ENCODERS = {
    ScriptType.P2PKH: p2pkh_address,
    ScriptType.P2SH_P2WPKH: p2sh_p2wpkh_address,
    ScriptType.P2WPKH: p2wpkh_address,
    ScriptType.P2TR: p2tr_address,
}


def encode_address(public_key: bytes, script_type: ScriptType, network: Network) -> str:
    """Encode a compressed public key as an address of the given type."""
    if len(public_key) != 33 or public_key[0] not in (2, 3):
        raise InvalidKey("address encoding requires a 33-byte compressed public key")
    return _ENCODERS[script_type](public_key, network)


def validate_address(address: str, network: Network) -> bool:
    """Return True if address is well-formed for the network."""
    if not address:
        return False

    if address.lower().startswith(network.bech32_hrp + "1"):
        try:
            bech32.decode(address, network.bech32_hrp)
        except bech32.Bech32Error:
            return False
        return True

    try:
        payload = base58.b58decode_check(address)
    except ValueError:
        return False
    return len(payload) == 21 and payload[0] in (network.p2pkh_version, network.p2sh_version)


def export_wif(private_key: bytes, network: Network, compressed: bool = True) -> str:
    """Encode a private key in Wallet Import Format."""
    if len(private_key) != 32:
        raise InvalidKey(f"private key must be 32 bytes, got {len(private_key)}")
    suffix = b"\x01" if compressed else b""
    return _base58check(network.wif_version, bytes(private_key) + suffix)


def import_wif(wif: str) -> tuple[bytes, bool, Network]:
    """Decode a WIF string.

    Testnet and regtest share a version byte, so both decode as TESTNET.

    Returns:
        Tuple of (private_key, compressed, network)

    Raises:
        InvalidKey: If the checksum, length or version byte is invalid

    """
    try:
        payload = base58.b58decode_check(wif)
    except ValueError as e:
        raise InvalidKey(f"invalid WIF encoding: {e}") from e

    if len(payload) == 34 and payload[-1] == 0x01:
        compressed = True
    elif len(payload) == 33:
        compressed = False
    else:
        raise InvalidKey(f"WIF payload has unexpected length {len(payload)}")

    version = payload[0]
    for network in (Network.MAINNET, Network.TESTNET):
        if network.wif_version == version:
            return payload[1:33], compressed, network
    raise InvalidKey(f"unknown WIF version byte 0x{version:02x}")


def derive_address(
    seed: bytes,
    path: DerivationPath | str,
    network: Network = Network.MAINNET,
    script_type: ScriptType | None = None,
) -> DerivedAddress:
    """Derive the private key and address at path from a BIP39 seed.

    Args:
        seed: 64-byte BIP39 seed
        path: Derivation path (parsed or text)
        network: Target network
        script_type: Address type, or None to infer it from the path purpose

    Returns:
        DerivedAddress carrying the private key and address

    Raises:
        InvalidPath: If the path text is malformed
        InvalidDerivation: If any derivation step yields an invalid key

    """
    if isinstance(path, str):
        path = DerivationPath.parse(path)
    if script_type is None:
        script_type = script_type_for_path(path)

    key = derive_path(master_key(seed), path)
    if key.private_key is None:
        raise InvalidDerivation("derivation did not yield a private key")

    address = encode_address(key.public_key, script_type, network)
    logger.debug(f"Derived {script_type.value} address at {path}")
    return DerivedAddress(
        private_key=key.private_key,
        address=address,
        public_key=key.public_key,
        path=str(path),
        script_type=script_type,
        network=network,
    )
