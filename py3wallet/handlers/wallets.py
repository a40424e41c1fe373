"""Wallet management and address derivation endpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from litestar import Controller, delete, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED

from py3wallet.address import account_base_path

from .base import (
    AddressListResponse,
    AddressResponse,
    CreateWalletRequest,
    CreateWalletResponse,
    ListWalletsResponse,
    StatusResponse,
    WalletInfo,
    XpubResponse,
    parse_network,
    parse_request,
    parse_script_type,
)

if TYPE_CHECKING:
    from py3wallet.wallet import WalletService

logger = logging.getLogger(__name__)


def _wallet_info(wallet: WalletService, wallet_id: str) -> WalletInfo:
    metadata = wallet.wallet_info(wallet_id)
    requires_biometric = wallet.storage.seed_requires_biometric(wallet_id)
    if metadata is None:
        return WalletInfo(wallet_id=wallet_id, requires_biometric=requires_biometric)
    return WalletInfo(
        wallet_id=wallet_id,
        requires_biometric=requires_biometric,
        created_at=metadata.created_at,
        word_count=metadata.word_count,
        restored=metadata.restored,
    )


def _create_or_restore(wallet: WalletService, request: CreateWalletRequest) -> CreateWalletResponse:
    """Create a new wallet, or restore one when a mnemonic is supplied."""
    mnemonic: str | None = None
    if request.mnemonic is None:
        mnemonic = wallet.create_wallet(
            request.wallet_id,
            strength=request.strength,
            passphrase=request.passphrase,
            requires_biometric=request.requires_biometric,
            overwrite=request.overwrite,
        )
    else:
        wallet.restore_wallet(
            request.wallet_id,
            request.mnemonic,
            passphrase=request.passphrase,
            requires_biometric=request.requires_biometric,
            overwrite=request.overwrite,
        )
    first = wallet.first_account(request.wallet_id)
    return CreateWalletResponse(
        wallet_id=request.wallet_id,
        first_address=first.address,
        mnemonic=mnemonic,
    )


class WalletController(Controller):  # type: ignore[misc]
    """Wallet lifecycle and addresses. Every route requires an unlocked session."""

    path = "/api/v1/wallets"

    @get()  # type: ignore[untyped-decorator]
    async def list_wallets(self, wallet: WalletService) -> ListWalletsResponse:
        """GET /api/v1/wallets - List stored wallets."""
        wallet_ids = wallet.list_wallets()
        return ListWalletsResponse(data=[_wallet_info(wallet, wallet_id) for wallet_id in wallet_ids])

    @post(status_code=HTTP_201_CREATED)  # type: ignore[untyped-decorator]
    async def create_wallet(self, data: dict[str, Any], wallet: WalletService) -> CreateWalletResponse:
        """POST /api/v1/wallets - Create or restore a wallet.

        The generated mnemonic is returned once and never stored.
        """
        request = parse_request(data, CreateWalletRequest)
        # seed stretching and derivation are CPU-bound
        return await asyncio.to_thread(_create_or_restore, wallet, request)

    @delete("/{wallet_id:str}", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def delete_wallet(self, wallet_id: str, wallet: WalletService) -> StatusResponse:
        """DELETE /api/v1/wallets/{wallet_id} - Delete a wallet's seed and metadata."""
        wallet.delete_wallet(wallet_id)
        return StatusResponse(status="deleted")

    @get("/{wallet_id:str}/address")  # type: ignore[untyped-decorator]
    async def get_address(
        self,
        wallet_id: str,
        wallet: WalletService,
        derivation_path: str = Parameter(query="path"),
        network: str | None = None,
        script_type: str | None = None,
    ) -> AddressResponse:
        """GET /api/v1/wallets/{wallet_id}/address - Address at a derivation path."""
        info = await asyncio.to_thread(
            wallet.get_address,
            wallet_id,
            derivation_path,
            parse_network(network),
            parse_script_type(script_type),
        )
        return AddressResponse.from_info(info)

    @get("/{wallet_id:str}/addresses")  # type: ignore[untyped-decorator]
    async def list_addresses(
        self,
        wallet_id: str,
        wallet: WalletService,
        purpose: int = 84,
        account: int = 0,
        change: int = 0,
        start: int = 0,
        count: int = 20,
        network: str | None = None,
    ) -> AddressListResponse:
        """GET /api/v1/wallets/{wallet_id}/addresses - A range of receive or change addresses."""
        resolved = parse_network(network)
        infos = await asyncio.to_thread(
            lambda: wallet.list_addresses(
                wallet_id,
                purpose=purpose,
                account=account,
                change=change,
                start=start,
                count=count,
                network=resolved,
            )
        )
        return AddressListResponse(data=[AddressResponse.from_info(info) for info in infos])

    @get("/{wallet_id:str}/xpub")  # type: ignore[untyped-decorator]
    async def account_xpub(
        self,
        wallet_id: str,
        wallet: WalletService,
        purpose: int = 84,
        account: int = 0,
        network: str | None = None,
    ) -> XpubResponse:
        """GET /api/v1/wallets/{wallet_id}/xpub - Extended public key of an account."""
        resolved = parse_network(network) or wallet.network
        xpub = await asyncio.to_thread(wallet.account_xpub, wallet_id, purpose, account, resolved)
        return XpubResponse(
            wallet_id=wallet_id,
            path=str(account_base_path(resolved, purpose, account)),
            xpub=xpub,
        )
