"""Wallet service: derivation and storage behind the session gate.

Every operation checks that the session is unlocked before touching a seed.
Derived public address data is cached in an LRU keyed by wallet, path,
network and script type; private keys are never cached.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from .address import (
    DerivedAddress,
    Network,
    ScriptType,
    account_base_path,
    derive_address,
    export_wif,
    first_account_path,
    script_type_for_path,
)
from .bip39 import generate_mnemonic, mnemonic_to_seed, validate_mnemonic
from .hdkey import HARDENED_OFFSET, DerivationError, DerivationPath, derive_path, master_key
from .lru import LRUCache
from .models import AddressInfo, WalletMetadata
from .storage import validate_wallet_id
from .types import AddressCacheKey, WalletId

if TYPE_CHECKING:
    from .session import AuthenticationManager
    from .storage import SecureStorage

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 256
MAX_ADDRESS_BATCH = 1000
METADATA_PREFIX = "meta."


class WalletError(Exception):
    """Base error for wallet operations."""


class WalletExists(WalletError):
    """A wallet with this id already has a seed."""


class InvalidWalletRequest(WalletError, ValueError):
    """Wallet id or address range arguments are invalid."""


def _cache_key(
    wallet_id: str, path: DerivationPath, network: Network, script_type: ScriptType
) -> AddressCacheKey:
    return AddressCacheKey(f"{wallet_id}|{path}|{network.value}|{script_type.value}")


def _address_info(wallet_id: str, derived: DerivedAddress) -> AddressInfo:
    return AddressInfo(
        wallet_id=WalletId(wallet_id),
        path=derived.path,
        address=derived.address,
        public_key_hex=derived.public_key.hex(),
        script_type=derived.script_type.value,
        network=derived.network.value,
    )


class WalletService:
    """Gated access to wallet seeds, addresses and backups."""

    def __init__(
        self,
        storage: SecureStorage,
        auth: AuthenticationManager,
        *,
        network: Network = Network.MAINNET,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self._storage = storage
        self._auth = auth
        self._network = network
        self._cache: LRUCache[AddressCacheKey, AddressInfo] = LRUCache(cache_size)
        self._update_wallets_metric()

    @property
    def storage(self) -> SecureStorage:
        return self._storage

    @property
    def auth(self) -> AuthenticationManager:
        return self._auth

    @property
    def network(self) -> Network:
        return self._network

    @property
    def cache(self) -> LRUCache[AddressCacheKey, AddressInfo]:
        return self._cache

    def _update_wallets_metric(self) -> None:
        from .metrics import WALLETS_STORED

        WALLETS_STORED.set(len(self._storage.list_wallet_ids()))

    def _invalidate(self, wallet_id: str | None = None) -> None:
        if wallet_id is None:
            self._cache.clear()
            return
        prefix = f"{wallet_id}|"
        for key in self._cache.keys():
            if key.startswith(prefix):
                self._cache.pop(key)

    # Wallet lifecycle

    def list_wallets(self) -> list[WalletId]:
        self._auth.require_unlocked()
        return self._storage.list_wallet_ids()

    def wallet_info(self, wallet_id: str) -> WalletMetadata | None:
        """Return stored metadata, or None for wallets restored from a bare seed."""
        self._auth.require_unlocked()
        key = f"{METADATA_PREFIX}{wallet_id}"
        if not self._storage.has_wallet_data(key):
            return None
        return self._storage.retrieve_wallet_data(key, WalletMetadata)

    def _store_wallet(
        self,
        wallet_id: str,
        mnemonic: str,
        passphrase: str,
        requires_biometric: bool | None,
        overwrite: bool,
        restored: bool,
    ) -> None:
        try:
            validate_wallet_id(wallet_id)
        except ValueError as e:
            raise InvalidWalletRequest(str(e)) from e
        if self._storage.has_seed(wallet_id) and not overwrite:
            raise WalletExists(f"Wallet {wallet_id} already exists")
        if requires_biometric is None:
            requires_biometric = self._auth.biometrics_usable
        elif requires_biometric and not self._auth.biometrics_usable:
            raise InvalidWalletRequest("requires_biometric needs biometric unlock to be available")

        seed = mnemonic_to_seed(mnemonic, passphrase)
        self._storage.save_seed(seed, wallet_id, requires_biometric=requires_biometric)
        self._storage.save_wallet_data(
            f"{METADATA_PREFIX}{wallet_id}",
            WalletMetadata(
                wallet_id=wallet_id,
                created_at=time.time(),
                word_count=len(mnemonic.split()),
                has_passphrase=bool(passphrase),
                restored=restored,
            ),
        )
        self._invalidate(wallet_id)
        self._update_wallets_metric()

    def create_wallet(
        self,
        wallet_id: str,
        strength: int = 256,
        passphrase: str = "",
        requires_biometric: bool | None = None,
        overwrite: bool = False,
    ) -> str:
        """Generate a mnemonic, store its seed, and return the mnemonic.

        The mnemonic is returned once for the user to write down; only the
        seed is stored.
        When requires_biometric is None the seed is biometric-protected
        whenever biometric unlock is usable.
        """
        self._auth.require_unlocked()
        mnemonic = generate_mnemonic(strength)
        self._store_wallet(wallet_id, mnemonic, passphrase, requires_biometric, overwrite, restored=False)
        logger.info(f"Created wallet {wallet_id}")
        return mnemonic

    def restore_wallet(
        self,
        wallet_id: str,
        mnemonic: str,
        passphrase: str = "",
        requires_biometric: bool | None = None,
        overwrite: bool = False,
    ) -> None:
        """Validate mnemonic and store its seed."""
        self._auth.require_unlocked()
        validate_mnemonic(mnemonic)
        self._store_wallet(wallet_id, mnemonic, passphrase, requires_biometric, overwrite, restored=True)
        logger.info(f"Restored wallet {wallet_id}")

    def delete_wallet(self, wallet_id: str) -> None:
        self._auth.require_unlocked()
        self._storage.delete_seed(wallet_id)
        self._storage.delete_wallet_data(f"{METADATA_PREFIX}{wallet_id}")
        self._invalidate(wallet_id)
        self._update_wallets_metric()
        logger.info(f"Deleted wallet {wallet_id}")

    # Derivation

    def _check_seed_access(self, wallet_id: str) -> None:
        if self._storage.seed_requires_biometric(wallet_id):
            self._auth.require_biometric_unlock()

    def _load_seed(self, wallet_id: str) -> bytes:
        self._check_seed_access(wallet_id)
        return self._storage.retrieve_seed(wallet_id)

    def _derive(
        self,
        wallet_id: str,
        path: DerivationPath,
        network: Network,
        script_type: ScriptType,
    ) -> DerivedAddress:
        from .metrics import (
            DERIVATION_DURATION_SECONDS,
            DERIVATION_ERRORS_TOTAL,
            DERIVATIONS_TOTAL,
        )

        seed = self._load_seed(wallet_id)
        start = time.perf_counter()
        try:
            derived = derive_address(seed, path, network, script_type)
        except DerivationError as e:
            DERIVATION_ERRORS_TOTAL.labels(error_type=type(e).__name__).inc()
            logger.error(f"Derivation failed for wallet {wallet_id} at {path}: {e}")
            raise
        DERIVATION_DURATION_SECONDS.labels(script_type=script_type.value).observe(
            time.perf_counter() - start
        )
        DERIVATIONS_TOTAL.labels(script_type=script_type.value).inc()
        return derived

    def _resolve(
        self,
        path: DerivationPath | str,
        network: Network | None,
        script_type: ScriptType | None,
    ) -> tuple[DerivationPath, Network, ScriptType]:
        if isinstance(path, str):
            path = DerivationPath.parse(path)
        return (
            path,
            network or self._network,
            script_type or script_type_for_path(path),
        )

    def get_address(
        self,
        wallet_id: str,
        path: DerivationPath | str,
        network: Network | None = None,
        script_type: ScriptType | None = None,
    ) -> AddressInfo:
        """Return the address at path, from the cache when possible."""
        from .metrics import ADDRESS_CACHE_HITS_TOTAL, ADDRESS_CACHE_MISSES_TOTAL

        self._auth.require_unlocked()
        path, network, script_type = self._resolve(path, network, script_type)
        key = _cache_key(wallet_id, path, network, script_type)

        self._check_seed_access(wallet_id)
        cached = self._cache.get(key)
        if cached is not None:
            ADDRESS_CACHE_HITS_TOTAL.inc()
            return cached

        ADDRESS_CACHE_MISSES_TOTAL.inc()
        info = _address_info(wallet_id, self._derive(wallet_id, path, network, script_type))
        self._cache.set(key, info)
        return info

    def derive_key(
        self,
        wallet_id: str,
        path: DerivationPath | str,
        network: Network | None = None,
        script_type: ScriptType | None = None,
    ) -> DerivedAddress:
        """Derive private key and address at path. Never cached."""
        self._auth.require_unlocked()
        return self._derive(wallet_id, *self._resolve(path, network, script_type))

    def first_account(self, wallet_id: str, network: Network | None = None) -> AddressInfo:
        """Return the first native SegWit receive address of the first account."""
        network = network or self._network
        return self.get_address(wallet_id, first_account_path(network), network)

    def list_addresses(
        self,
        wallet_id: str,
        *,
        purpose: int = 84,
        account: int = 0,
        change: int = 0,
        start: int = 0,
        count: int = 20,
        network: Network | None = None,
    ) -> list[AddressInfo]:
        """Return count consecutive addresses on an account's receive or change chain."""
        if change not in (0, 1):
            raise InvalidWalletRequest(f"change must be 0 or 1, got {change}")
        if not 1 <= count <= MAX_ADDRESS_BATCH:
            raise InvalidWalletRequest(f"count must be between 1 and {MAX_ADDRESS_BATCH}, got {count}")
        if start < 0:
            raise InvalidWalletRequest(f"start must not be negative, got {start}")
        if start + count > HARDENED_OFFSET:
            raise InvalidWalletRequest(
                f"addresses {start}..{start + count - 1} run past the last non-hardened index"
            )

        network = network or self._network
        chain = account_base_path(network, purpose, account).child(change)
        return [
            self.get_address(wallet_id, chain.child(index), network)
            for index in range(start, start + count)
        ]

    def export_wif(
        self,
        wallet_id: str,
        path: DerivationPath | str,
        network: Network | None = None,
    ) -> str:
        derived = self.derive_key(wallet_id, path, network)
        return export_wif(derived.private_key, derived.network)

    def account_xpub(
        self,
        wallet_id: str,
        purpose: int = 84,
        account: int = 0,
        network: Network | None = None,
    ) -> str:
        """Return the serialized extended public key of an account."""
        self._auth.require_unlocked()
        network = network or self._network
        seed = self._load_seed(wallet_id)
        account_key = derive_path(master_key(seed), account_base_path(network, purpose, account))
        return account_key.neuter().serialize(network)

    # Backup

    def export_backup(self, password: str) -> bytes:
        """Encrypt every record under password.

        Needs a biometric unlock when any stored seed is biometric-protected.
        """
        self._auth.require_unlocked()
        if any(self._storage.seed_requires_biometric(w) for w in self._storage.list_wallet_ids()):
            self._auth.require_biometric_unlock()
        return self._storage.export_encrypted_backup(password)

    def import_backup(self, blob: bytes | str, password: str) -> list[WalletId]:
        self._auth.require_unlocked()
        restored = self._storage.import_encrypted_backup(blob, password)
        self._invalidate()
        self._update_wallets_metric()
        return restored

    def wipe(self) -> None:
        """Erase all secrets, clear the cache and lock the session."""
        self._auth.require_unlocked()
        self._storage.wipe_all_data()
        self._invalidate()
        self._update_wallets_metric()
        self._auth.logout()

    def __contains__(self, wallet_id: object) -> bool:
        return isinstance(wallet_id, str) and self._storage.has_seed(wallet_id)

