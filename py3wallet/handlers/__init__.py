"""HTTP route handlers for the wallet API with Litestar.

This package provides controller modules for different API endpoints:
- health: Health check endpoints
- mnemonic: Mnemonic generation and validation
- session: Unlock, lock and PIN management
- wallets: Wallet lifecycle and address derivation
- backup: Encrypted backup, restore and wipe
"""

from litestar import Router

from .backup import BackupController
from .base import require_api_token
from .health import HealthController
from .mnemonic import MnemonicController
from .session import SessionController
from .wallets import WalletController


def get_routers() -> list[Router]:
    """Get all routers for the application.

    Everything except the health checks sits behind the bearer token guard.
    """
    return [
        Router(path="/", route_handlers=[HealthController]),
        Router(
            path="/",
            route_handlers=[MnemonicController, SessionController, WalletController, BackupController],
            guards=[require_api_token],
        ),
    ]


__all__ = [
    "BackupController",
    "HealthController",
    "MnemonicController",
    "SessionController",
    "WalletController",
    "get_routers",
]
