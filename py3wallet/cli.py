"""CLI entry point for py3wallet."""

import asyncio
import ipaddress
import logging
import stat
import sys

from .config import Config, get_config
from .server import run_server

logger = logging.getLogger(__name__)

DATA_DIR_MODE = 0o700


def setup_logging(log_level: str) -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def prepare_data_dir(config: Config) -> None:
    """Create the data directory owner-only, warning if an existing one is shared."""
    if config.data_dir is None:
        return
    if not config.data_dir.exists():
        config.data_dir.mkdir(mode=DATA_DIR_MODE, parents=True)
        logger.info(f"Created data directory {config.data_dir}")
        return
    mode = stat.S_IMODE(config.data_dir.stat().st_mode)
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(
            f"Data directory {config.data_dir} is accessible to other users (mode {mode:o})"
        )


def check_exposure(config: Config) -> None:
    if not is_loopback(config.host) and config.auth_token is None:
        logger.warning(
            f"Listening on {config.host} without --auth-token; wallet routes are reachable by any client"
        )


def main() -> None:
    """Main entry point."""
    try:
        config = get_config()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.normalized_log_level)

    try:
        prepare_data_dir(config)
    except OSError as e:
        print(f"Error: cannot prepare data directory {config.data_dir}: {e}", file=sys.stderr)
        sys.exit(1)
    check_exposure(config)

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)
    except Exception:
        logger.exception("Server error")
        sys.exit(1)
