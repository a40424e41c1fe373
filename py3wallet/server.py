"""Litestar server setup with Granian ASGI server."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from granian import Granian
from granian.constants import Interfaces
from granian.log import LogLevels
from litestar import Litestar
from litestar.datastructures import State
from litestar.di import Provide

from .address import Network
from .handlers import get_routers
from .handlers.base import EXCEPTION_HANDLERS
from .metrics_middleware import metrics_middleware
from .protected_key import SoftwareProtectedKey
from .session import AuthenticationManager
from .storage import SecureStorage
from .wallet import WalletService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from .config import Config

logger = logging.getLogger(__name__)


# Dependency providers for Litestar DI


def provide_storage(state: State) -> SecureStorage:
    """Provide SecureStorage from application state."""
    result: SecureStorage = state["storage"]
    return result


def provide_auth(state: State) -> AuthenticationManager:
    """Provide AuthenticationManager from application state."""
    result: AuthenticationManager = state["auth"]
    return result


def provide_wallet(state: State) -> WalletService:
    """Provide WalletService from application state.

    This dependency provider allows handlers to receive WalletService
    via dependency injection instead of accessing request.app.state directly.
    """
    result: WalletService = state["wallet"]
    return result


def _build_storage(config: Config) -> SecureStorage:
    """Open the protected key and the record store described by config.

    Without a data directory both are ephemeral and vanish with the process.
    """
    key_path = config.resolved_protected_key_path
    if key_path is not None:
        protected_key = SoftwareProtectedKey.from_file(key_path)
        logger.info(f"Using protected key at {key_path}")
    else:
        protected_key = SoftwareProtectedKey.generate()
        logger.warning("No data directory configured; secrets are held in memory only")

    storage = SecureStorage(
        protected_key,
        config.data_dir,
        pin_iterations=config.pin_kdf_iterations,
        backup_iterations=config.backup_kdf_iterations,
    )
    logger.info(f"Loaded {len(storage.list_wallet_ids())} wallets from secure storage")
    return storage


def create_app(
    config: Config | None = None,
    storage: SecureStorage | None = None,
    auth: AuthenticationManager | None = None,
    wallet: WalletService | None = None,
) -> Litestar:
    """Create and configure the Litestar application."""
    if storage is None:
        storage = _build_storage(config) if config is not None else SecureStorage(SoftwareProtectedKey.generate())

    if auth is None:
        if config is not None:
            auth = AuthenticationManager(
                storage,
                session_timeout=config.session_timeout,
                biometric_enabled=config.biometric_enabled,
                max_pin_attempts=config.max_pin_attempts,
                pin_lockout=config.pin_lockout_seconds,
                lock_on_background=config.lock_on_background,
            )
        else:
            auth = AuthenticationManager(storage)

    if wallet is None:
        if config is not None:
            wallet = WalletService(
                storage,
                auth,
                network=Network(config.network),
                cache_size=config.address_cache_size,
            )
        else:
            wallet = WalletService(storage, auth)

    metrics_enabled = config is not None and config.metrics_enabled

    @asynccontextmanager
    async def lifespan(_app: Litestar) -> AsyncGenerator[None]:
        """Lifespan context manager for startup/shutdown."""
        logger.info("Starting py3wallet server")
        metrics_server = None
        if metrics_enabled and config is not None:
            from .metrics import MetricsServer

            # served from the worker so it sees the worker's registry
            metrics_server = MetricsServer(host=config.metrics_host, port=config.metrics_port)
            metrics_server.start()
        try:
            yield
        finally:
            auth.close()
            if metrics_server is not None:
                metrics_server.stop()
            logger.info("Stopping py3wallet server")

    return Litestar(
        route_handlers=get_routers(),
        lifespan=[lifespan],
        debug=False,
        middleware=[metrics_middleware],
        exception_handlers=EXCEPTION_HANDLERS,
        signature_types=[SecureStorage, AuthenticationManager, WalletService],
        state=State(
            {
                "storage": storage,
                "auth": auth,
                "wallet": wallet,
                "auth_token": config.auth_token if config is not None else None,
            },
        ),
        dependencies={
            "storage": Provide(provide_storage, sync_to_thread=False),
            "auth": Provide(provide_auth, sync_to_thread=False),
            "wallet": Provide(provide_wallet, sync_to_thread=False),
        },
    )


async def run_server(config: Config) -> None:
    """Run the Litestar server with Granian.

    A single worker is used because the session state lives in process.
    """
    logger.info(f"Starting py3wallet on {config.host}:{config.port} ({config.network})")

    # Import asgi module to store config
    from . import asgi

    asgi.store_config_in_env(config)

    server = Granian(
        target="py3wallet.asgi:app",
        address=config.host,
        port=config.port,
        interface=Interfaces.ASGI,
        workers=1,
        log_level=LogLevels(config.normalized_log_level.lower()),
    )

    try:
        server.serve()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
