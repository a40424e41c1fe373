"""Configuration management using msgspec Struct."""

import argparse
import os
from pathlib import Path

import msgspec

NETWORKS = ("mainnet", "testnet", "regtest")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Config(msgspec.Struct, frozen=True):
    """Application configuration using msgspec Struct."""

    # HTTP server settings
    host: str = "127.0.0.1"
    port: int = 8080

    # Logging
    log_level: str = "INFO"

    # Security
    auth_token: str | None = None

    # Metrics settings
    metrics_enabled: bool = False
    metrics_host: str = "127.0.0.1"
    metrics_port: int = 8081

    # Storage settings (in-memory only when data_dir is None)
    data_dir: Path | None = None
    protected_key_path: Path | None = None

    # Wallet settings
    network: str = "mainnet"
    address_cache_size: int = 256

    # Session settings
    session_timeout: float = 300.0
    lock_on_background: bool = False
    max_pin_attempts: int = 0
    pin_lockout_seconds: float = 300.0
    biometric_enabled: bool = True

    # KDF work factors
    pin_kdf_iterations: int = 100_000
    backup_kdf_iterations: int = 100_000

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        # msgspec handles basic type validation, but we need custom validation
        if self.port < 1 or self.port > 65535:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level}")

        if self.metrics_port < 1 or self.metrics_port > 65535:
            raise ValueError(f"metrics_port must be between 1 and 65535, got {self.metrics_port}")

        if self.metrics_enabled and self.metrics_port == self.port and self.metrics_host == self.host:
            raise ValueError("metrics_port must differ from port when metrics are enabled")

        if self.network not in NETWORKS:
            raise ValueError(f"network must be one of {NETWORKS}, got {self.network}")

        if self.data_dir is not None and self.data_dir.exists() and not self.data_dir.is_dir():
            raise ValueError(f"data_dir must be a directory: {self.data_dir}")

        if self.protected_key_path is not None and self.protected_key_path.is_dir():
            raise ValueError(f"protected_key_path must be a file: {self.protected_key_path}")

        if self.address_cache_size < 1:
            raise ValueError(
                f"address_cache_size must be at least 1, got {self.address_cache_size}"
            )

        if self.session_timeout <= 0:
            raise ValueError(f"session_timeout must be positive, got {self.session_timeout}")

        if self.max_pin_attempts < 0:
            raise ValueError(f"max_pin_attempts must not be negative, got {self.max_pin_attempts}")

        if self.pin_lockout_seconds <= 0:
            raise ValueError(f"pin_lockout_seconds must be positive, got {self.pin_lockout_seconds}")

        if self.pin_kdf_iterations < 1 or self.backup_kdf_iterations < 1:
            raise ValueError("KDF iteration counts must be positive")

    @property
    def normalized_log_level(self) -> str:
        """Return normalized uppercase log level."""
        return self.log_level.upper()

    @property
    def resolved_protected_key_path(self) -> Path | None:
        """Protected key file, defaulting to data_dir/protected.key when persisting."""
        if self.protected_key_path is not None:
            return self.protected_key_path
        if self.data_dir is not None:
            return self.data_dir / "protected.key"
        return None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_path(name: str) -> Path | None:
    value = os.getenv(name)
    return Path(value) if value else None


def get_config() -> Config:
    """Parse command line arguments and return configuration.

    When PY3WALLET_FROM_ENV is set (container deployments), configuration
    is loaded from PY3WALLET_* environment variables instead of CLI args.
    """
    if os.environ.get("PY3WALLET_FROM_ENV") is not None:
        return _get_config_from_env()

    parser = argparse.ArgumentParser(
        description="py3wallet - Bitcoin wallet key-management service",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--host", default="127.0.0.1", help="HTTP server host")
    parser.add_argument("-p", "--port", type=int, default=8080, help="HTTP server port")
    parser.add_argument(
        "--log-level",
        choices=list(LOG_LEVELS),
        default="INFO",
        help="Logging level",
    )
    parser.add_argument("--auth-token", default=None, help="Bearer token for API authentication")
    parser.add_argument(
        "--metrics-enabled",
        action="store_true",
        default=False,
        help="Enable Prometheus metrics endpoint",
    )
    parser.add_argument("--metrics-port", type=int, default=8081, help="Port for metrics server")
    parser.add_argument("--metrics-host", default="127.0.0.1", help="Host for metrics server")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory for sealed records (in-memory only if omitted)",
    )
    parser.add_argument(
        "--protected-key-path",
        type=Path,
        default=None,
        help="Protected key file (default: <data-dir>/protected.key; ephemeral if no data dir)",
    )
    parser.add_argument("--network", choices=list(NETWORKS), default="mainnet", help="Default network")
    parser.add_argument(
        "--address-cache-size", type=int, default=256, help="Derived address cache capacity"
    )
    parser.add_argument(
        "--session-timeout",
        type=float,
        default=300.0,
        help="Seconds of inactivity before the session locks",
    )
    parser.add_argument(
        "--lock-on-background",
        action="store_true",
        default=False,
        help="Lock immediately when the client reports backgrounding",
    )
    parser.add_argument(
        "--max-pin-attempts",
        type=int,
        default=0,
        help="Lock after this many consecutive wrong PINs (0 = never)",
    )
    parser.add_argument(
        "--pin-lockout-seconds",
        type=float,
        default=300.0,
        help="Seconds PIN entry stays refused after too many wrong PINs",
    )
    parser.add_argument(
        "--disable-biometric",
        action="store_true",
        default=False,
        help="Disable biometric unlock",
    )
    parser.add_argument(
        "--pin-kdf-iterations", type=int, default=100_000, help="PBKDF2 iterations for PIN digests"
    )
    parser.add_argument(
        "--backup-kdf-iterations",
        type=int,
        default=100_000,
        help="PBKDF2 iterations for backup encryption keys",
    )

    args = parser.parse_args()

    config_dict: dict[str, object] = {
        "host": args.host,
        "port": args.port,
        "log_level": args.log_level,
        "auth_token": args.auth_token,
        "metrics_enabled": args.metrics_enabled,
        "metrics_port": args.metrics_port,
        "metrics_host": args.metrics_host,
        "data_dir": args.data_dir,
        "protected_key_path": args.protected_key_path,
        "network": args.network,
        "address_cache_size": args.address_cache_size,
        "session_timeout": args.session_timeout,
        "lock_on_background": args.lock_on_background,
        "max_pin_attempts": args.max_pin_attempts,
        "pin_lockout_seconds": args.pin_lockout_seconds,
        "biometric_enabled": not args.disable_biometric,
        "pin_kdf_iterations": args.pin_kdf_iterations,
        "backup_kdf_iterations": args.backup_kdf_iterations,
    }

    try:
        config = msgspec.convert(config_dict, Config)
    except msgspec.ValidationError as e:
        raise ValueError(f"Configuration validation error: {e}") from e

    return config


def _get_config_from_env() -> Config:
    """Load configuration from PY3WALLET_* environment variables."""
    config_dict: dict[str, object] = {
        "host": os.getenv("PY3WALLET_HOST", "0.0.0.0"),
        "port": int(os.getenv("PY3WALLET_PORT", "8080")),
        "log_level": os.getenv("PY3WALLET_LOG_LEVEL", "INFO"),
        "auth_token": os.getenv("PY3WALLET_AUTH_TOKEN"),
        "metrics_enabled": _env_bool("PY3WALLET_METRICS_ENABLED", False),
        "metrics_port": int(os.getenv("PY3WALLET_METRICS_PORT", "8081")),
        "metrics_host": os.getenv("PY3WALLET_METRICS_HOST", "127.0.0.1"),
        "data_dir": _env_path("PY3WALLET_DATA_DIR"),
        "protected_key_path": _env_path("PY3WALLET_PROTECTED_KEY_PATH"),
        "network": os.getenv("PY3WALLET_NETWORK", "mainnet"),
        "address_cache_size": int(os.getenv("PY3WALLET_ADDRESS_CACHE_SIZE", "256")),
        "session_timeout": float(os.getenv("PY3WALLET_SESSION_TIMEOUT", "300")),
        "lock_on_background": _env_bool("PY3WALLET_LOCK_ON_BACKGROUND", False),
        "max_pin_attempts": int(os.getenv("PY3WALLET_MAX_PIN_ATTEMPTS", "0")),
        "pin_lockout_seconds": float(os.getenv("PY3WALLET_PIN_LOCKOUT_SECONDS", "300")),
        "biometric_enabled": _env_bool("PY3WALLET_BIOMETRIC_ENABLED", True),
        "pin_kdf_iterations": int(os.getenv("PY3WALLET_PIN_KDF_ITERATIONS", "100000")),
        "backup_kdf_iterations": int(os.getenv("PY3WALLET_BACKUP_KDF_ITERATIONS", "100000")),
    }

    try:
        config = msgspec.convert(config_dict, Config)
    except msgspec.ValidationError as e:
        raise ValueError(f"Configuration validation error: {e}") from e

    return config
