"""Encrypted backup, restore and wipe endpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import msgspec
from litestar import Controller, MediaType, Response, post
from litestar.status_codes import HTTP_200_OK

from .base import (
    ImportBackupRequest,
    ImportBackupResponse,
    PasswordRequest,
    StatusResponse,
    parse_request,
)

if TYPE_CHECKING:
    from py3wallet.wallet import WalletService

logger = logging.getLogger(__name__)


class BackupController(Controller):  # type: ignore[misc]
    """Backup endpoints. Every route requires an unlocked session."""

    path = "/api/v1/backup"

    @post("/export", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def export_backup(self, data: dict[str, Any], wallet: WalletService) -> Response[bytes]:
        """POST /api/v1/backup/export - Encrypt every wallet under a password.

        The body is the backup JSON itself so it can be saved as a file and
        posted back unchanged to /import.
        """
        request = parse_request(data, PasswordRequest)
        blob = await asyncio.to_thread(wallet.export_backup, request.password)
        return Response(content=blob, media_type=MediaType.JSON, status_code=HTTP_200_OK)

    @post("/import", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def import_backup(self, data: dict[str, Any], wallet: WalletService) -> ImportBackupResponse:
        """POST /api/v1/backup/import - Restore wallets from an encrypted backup."""
        request = parse_request(data, ImportBackupRequest)
        blob = msgspec.json.encode(request.backup)
        restored = await asyncio.to_thread(wallet.import_backup, blob, request.password)
        return ImportBackupResponse(wallets=list(restored))

    @post("/wipe", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def wipe(self, wallet: WalletService) -> StatusResponse:
        """POST /api/v1/backup/wipe - Erase all secrets and lock the session."""
        wallet.wipe()
        logger.warning("All wallet data wiped")
        return StatusResponse(status="wiped")
