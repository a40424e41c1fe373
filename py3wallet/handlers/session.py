"""Session lifecycle endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from litestar import Controller, delete, get, post, put
from litestar.exceptions import NotAuthorizedException, TooManyRequestsException
from litestar.status_codes import HTTP_200_OK

from .base import PinRequest, SessionStatusResponse, StatusResponse, parse_request

if TYPE_CHECKING:
    from py3wallet.session import AuthenticationManager
    from py3wallet.storage import SecureStorage

logger = logging.getLogger(__name__)


def _status(auth: AuthenticationManager, storage: SecureStorage) -> SessionStatusResponse:
    return SessionStatusResponse(
        state=auth.state.value,
        expires_in=auth.expires_in,
        gate_configured=auth.gate_configured,
        has_pin=storage.has_pin(),
        biometric_enabled=auth.biometric_enabled,
    )


class SessionController(Controller):  # type: ignore[misc]
    """Unlock, lock and PIN management."""

    path = "/api/v1/session"

    @get()  # type: ignore[untyped-decorator]
    async def status(self, auth: AuthenticationManager, storage: SecureStorage) -> SessionStatusResponse:
        """GET /api/v1/session - Current state and seconds until expiry."""
        return _status(auth, storage)

    @post("/unlock", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def unlock(self, auth: AuthenticationManager, storage: SecureStorage) -> SessionStatusResponse:
        """POST /api/v1/session/unlock - Start unlocking the session.

        Unlocks at once when no gate is configured. With only a PIN set the
        session moves to authenticating and waits for POST /pin.
        """
        await auth.request_unlock()
        return _status(auth, storage)

    @post("/pin", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def authenticate_pin(
        self, data: dict[str, Any], auth: AuthenticationManager, storage: SecureStorage
    ) -> SessionStatusResponse:
        """POST /api/v1/session/pin - Unlock with the PIN."""
        request = parse_request(data, PinRequest)
        if not await auth.authenticate_with_pin(request.pin):
            if auth.pin_lockout_remaining is not None:
                raise TooManyRequestsException(detail="Too many PIN attempts")
            raise NotAuthorizedException(detail="Invalid PIN")
        return _status(auth, storage)

    @put("/pin", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def set_pin(
        self, data: dict[str, Any], auth: AuthenticationManager, storage: SecureStorage
    ) -> SessionStatusResponse:
        """PUT /api/v1/session/pin - Set or replace the PIN."""
        request = parse_request(data, PinRequest)
        await auth.set_pin(request.pin)
        logger.info("PIN updated")
        return _status(auth, storage)

    @delete("/pin", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def remove_pin(self, auth: AuthenticationManager) -> StatusResponse:
        """DELETE /api/v1/session/pin - Remove the PIN."""
        removed = auth.remove_pin()
        return StatusResponse(status="removed" if removed else "not_set")

    @post("/logout", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def logout(self, auth: AuthenticationManager, storage: SecureStorage) -> SessionStatusResponse:
        auth.logout()
        return _status(auth, storage)

    @post("/background", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def background(self, auth: AuthenticationManager, storage: SecureStorage) -> SessionStatusResponse:
        """POST /api/v1/session/background - The client went to the background."""
        auth.on_background()
        return _status(auth, storage)

    @post("/foreground", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def foreground(self, auth: AuthenticationManager, storage: SecureStorage) -> SessionStatusResponse:
        """POST /api/v1/session/foreground - The client returned to the foreground."""
        await auth.on_foreground()
        return _status(auth, storage)
