"""Tests for configuration management."""

import json
import os
import sys
from pathlib import Path

import pytest

from py3wallet.asgi import CONFIG_ENV_VAR, load_config_from_env, store_config_in_env
from py3wallet.config import Config, get_config


class TestConfigValidation:
    """Tests for Config field validation."""

    def test_defaults(self) -> None:
        """Test the default configuration is in-memory on mainnet."""
        config = Config()
        assert config.port == 8080
        assert config.network == "mainnet"
        assert config.data_dir is None
        assert config.resolved_protected_key_path is None
        assert config.session_timeout == 300.0

    @pytest.mark.parametrize("port", [0, 65536])
    def test_invalid_port(self, port: int) -> None:
        """Test ports outside 1-65535 are rejected."""
        with pytest.raises(ValueError, match="port must be between"):
            Config(port=port)

    def test_log_level_case_insensitive(self) -> None:
        """Test log levels are normalized to upper case."""
        assert Config(log_level="debug").normalized_log_level == "DEBUG"

    def test_invalid_log_level(self) -> None:
        """Test an unknown log level is rejected."""
        with pytest.raises(ValueError, match="log_level must be one of"):
            Config(log_level="VERBOSE")

    def test_invalid_network(self) -> None:
        """Test an unknown network is rejected."""
        with pytest.raises(ValueError, match="network must be one of"):
            Config(network="signet")

    def test_metrics_port_conflict(self) -> None:
        """Test the metrics server cannot share the API port."""
        with pytest.raises(ValueError, match="metrics_port must differ"):
            Config(metrics_enabled=True, port=9000, metrics_port=9000)

    def test_metrics_port_conflict_ignored_when_disabled(self) -> None:
        """Test the same ports are fine with metrics disabled."""
        Config(port=9000, metrics_port=9000)

    @pytest.mark.parametrize(
        ("field", "value", "message"),
        [
            ("address_cache_size", 0, "address_cache_size"),
            ("session_timeout", 0.0, "session_timeout"),
            ("max_pin_attempts", -1, "max_pin_attempts"),
            ("pin_lockout_seconds", 0.0, "pin_lockout_seconds"),
            ("pin_kdf_iterations", 0, "KDF iteration"),
            ("backup_kdf_iterations", 0, "KDF iteration"),
        ],
    )
    def test_invalid_numbers(self, field: str, value: float, message: str) -> None:
        """Test numeric settings are range checked."""
        with pytest.raises(ValueError, match=message):
            Config(**{field: value})  # type: ignore[arg-type]

    def test_data_dir_not_directory(self, tmp_path: Path) -> None:
        """Test error when data_dir is a file."""
        data_file = tmp_path / "data"
        data_file.write_text("not a directory")
        with pytest.raises(ValueError, match="data_dir must be a directory"):
            Config(data_dir=data_file)

    def test_data_dir_may_not_exist_yet(self, tmp_path: Path) -> None:
        """Test a missing data_dir is accepted and created later."""
        config = Config(data_dir=tmp_path / "new")
        assert config.data_dir == tmp_path / "new"

    def test_protected_key_path_is_directory(self, tmp_path: Path) -> None:
        """Test the protected key path must not be a directory."""
        with pytest.raises(ValueError, match="protected_key_path must be a file"):
            Config(protected_key_path=tmp_path)

    def test_protected_key_defaults_into_data_dir(self, tmp_path: Path) -> None:
        """Test the key file defaults to data_dir/protected.key."""
        config = Config(data_dir=tmp_path)
        assert config.resolved_protected_key_path == tmp_path / "protected.key"

    def test_explicit_protected_key_path(self, tmp_path: Path) -> None:
        """Test an explicit key path wins over the data_dir default."""
        key_path = tmp_path / "keys" / "wallet.key"
        config = Config(data_dir=tmp_path, protected_key_path=key_path)
        assert config.resolved_protected_key_path == key_path


class TestGetConfig:
    """Tests for command line and environment parsing."""

    def test_cli_arguments(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test command line flags map onto Config fields."""
        monkeypatch.delenv("PY3WALLET_FROM_ENV", raising=False)
        monkeypatch.setattr(
            sys,
            "argv",
            [
                "py3wallet",
                "--port",
                "9090",
                "--network",
                "testnet",
                "--data-dir",
                str(tmp_path),
                "--session-timeout",
                "60",
                "--max-pin-attempts",
                "5",
                "--pin-lockout-seconds",
                "30",
                "--disable-biometric",
                "--lock-on-background",
            ],
        )
        config = get_config()
        assert config.port == 9090
        assert config.network == "testnet"
        assert config.data_dir == tmp_path
        assert config.session_timeout == 60.0
        assert config.max_pin_attempts == 5
        assert config.pin_lockout_seconds == 30.0
        assert not config.biometric_enabled
        assert config.lock_on_background

    def test_cli_validation_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test invalid values surface as ValueError."""
        monkeypatch.delenv("PY3WALLET_FROM_ENV", raising=False)
        monkeypatch.setattr(sys, "argv", ["py3wallet", "--address-cache-size", "0"])
        with pytest.raises(ValueError, match="Configuration validation error"):
            get_config()

    def test_from_environment(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test PY3WALLET_* variables are used when PY3WALLET_FROM_ENV is set."""
        monkeypatch.setenv("PY3WALLET_FROM_ENV", "1")
        monkeypatch.setenv("PY3WALLET_PORT", "7000")
        monkeypatch.setenv("PY3WALLET_NETWORK", "regtest")
        monkeypatch.setenv("PY3WALLET_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("PY3WALLET_METRICS_ENABLED", "true")
        monkeypatch.setenv("PY3WALLET_BIOMETRIC_ENABLED", "no")
        monkeypatch.setenv("PY3WALLET_PIN_LOCKOUT_SECONDS", "45")
        config = get_config()
        assert config.host == "0.0.0.0"
        assert config.port == 7000
        assert config.network == "regtest"
        assert config.data_dir == tmp_path
        assert config.metrics_enabled
        assert not config.biometric_enabled
        assert config.pin_lockout_seconds == 45.0


class TestConfigHandoff:
    """Passing configuration to the server worker."""

    def test_round_trip(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test the config survives the environment handoff, including paths."""
        monkeypatch.setenv(CONFIG_ENV_VAR, "")
        config = Config(port=9001, data_dir=tmp_path, network="testnet", auth_token="t")
        store_config_in_env(config)
        assert json.loads(os.environ[CONFIG_ENV_VAR])["data_dir"] == str(tmp_path)
        assert load_config_from_env() == config

    def test_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test no config is returned when the variable is unset."""
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert load_config_from_env() is None

    def test_invalid(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test an invalid stored config is reported as missing."""
        monkeypatch.setenv(CONFIG_ENV_VAR, json.dumps({"port": 0}))
        assert load_config_from_env() is None
