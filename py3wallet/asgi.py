"""ASGI entry point for Granian.

This module provides the ASGI application for Granian.
Configuration is loaded from the environment variable set by the main process.
"""

import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import msgspec

from .config import Config
from .server import create_app

if TYPE_CHECKING:
    from collections.abc import Callable

    from litestar import Litestar
    from litestar.types import LifeSpanScope, Scope

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PY3WALLET_CONFIG"


def _encode_path(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    raise NotImplementedError(f"Cannot encode {type(obj)!r}")


def _decode_path(type_: type, obj: Any) -> Any:
    if type_ is Path:
        return Path(obj)
    raise NotImplementedError(f"Cannot decode {type_!r}")


def load_config_from_env() -> Config | None:
    """Load configuration from environment variable."""
    config_json = os.environ.get(CONFIG_ENV_VAR)
    if not config_json:
        return None

    try:
        return msgspec.convert(json.loads(config_json), Config, dec_hook=_decode_path)
    except (ValueError, msgspec.ValidationError) as e:
        logger.error(f"Failed to load config from environment: {e}")
        return None


def store_config_in_env(config: Config) -> None:
    """Store configuration in environment variable for the worker process."""
    config_dict = msgspec.to_builtins(config, enc_hook=_encode_path)
    os.environ[CONFIG_ENV_VAR] = json.dumps(config_dict)


# Global app instance (created once per worker)
_app_instance: "Litestar | None" = None


def get_app() -> "Litestar":
    """Get or create the Litestar app instance."""
    global _app_instance
    if _app_instance is None:
        config = load_config_from_env()
        if config is None:
            raise RuntimeError(
                "Configuration not found. Use 'python -m py3wallet' to start the server properly.",
            )

        logging.basicConfig(
            level=getattr(logging, config.normalized_log_level),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        _app_instance = create_app(config)

    return _app_instance


# ASGI application callable
# Granian calls this with (scope, receive, send)
async def app(
    scope: "Scope | LifeSpanScope",
    receive: "Callable[..., Any]",
    send: "Callable[..., Any]",
) -> None:
    """ASGI application entry point."""
    litestar_app = get_app()
    await litestar_app(scope, receive, send)
