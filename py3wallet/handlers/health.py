"""Health check endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import Controller, get

from .base import HealthcheckResponse, HealthResponse

if TYPE_CHECKING:
    from py3wallet.session import AuthenticationManager
    from py3wallet.storage import SecureStorage


class HealthController(Controller):  # type: ignore[misc]
    """Health check endpoints."""

    path = "/"

    @get("/health")  # type: ignore[untyped-decorator]
    async def health(self, storage: SecureStorage, auth: AuthenticationManager) -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            wallets_stored=len(storage.list_wallet_ids()),
            session=auth.state.value,
        )

    @get("/healthcheck")  # type: ignore[untyped-decorator]
    async def healthcheck(self) -> HealthcheckResponse:
        """Liveness probe for container orchestrators."""
        return HealthcheckResponse(status="UP", outcome="UP")
