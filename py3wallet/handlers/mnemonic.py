"""Mnemonic generation and validation endpoints.

These are pure functions of their input and need no unlocked session.
"""

import asyncio
import logging
from typing import Any

from litestar import Controller, post
from litestar.status_codes import HTTP_200_OK

from py3wallet.bip39 import InvalidMnemonic, generate_mnemonic, mnemonic_to_entropy

from .base import (
    GenerateMnemonicRequest,
    MnemonicRequest,
    MnemonicResponse,
    ValidateMnemonicResponse,
    parse_request,
)

logger = logging.getLogger(__name__)


class MnemonicController(Controller):  # type: ignore[misc]
    """BIP39 mnemonic endpoints."""

    path = "/api/v1/mnemonic"

    @post("/generate", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def generate(self, data: dict[str, Any]) -> MnemonicResponse:
        """POST /api/v1/mnemonic/generate - Generate a new random mnemonic."""
        request = parse_request(data, GenerateMnemonicRequest)
        mnemonic = generate_mnemonic(request.strength)
        return MnemonicResponse(mnemonic=mnemonic, word_count=len(mnemonic.split()))

    @post("/validate", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def validate(self, data: dict[str, Any]) -> ValidateMnemonicResponse:
        """POST /api/v1/mnemonic/validate - Check word count, words and checksum."""
        request = parse_request(data, MnemonicRequest)
        word_count = len(request.mnemonic.split())
        try:
            await asyncio.to_thread(mnemonic_to_entropy, request.mnemonic)
        except InvalidMnemonic as e:
            return ValidateMnemonicResponse(valid=False, word_count=word_count, error=str(e))
        return ValidateMnemonicResponse(valid=True, word_count=word_count)
