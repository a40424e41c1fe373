"""Tests for the command line entry point."""

import logging
import stat
import sys
from pathlib import Path

import pytest

from py3wallet import cli
from py3wallet.config import Config


@pytest.fixture
def served(monkeypatch: pytest.MonkeyPatch) -> list[Config]:
    """Replace the server with a stub that records the config it was given."""
    configs: list[Config] = []

    async def fake_run_server(config: Config) -> None:
        configs.append(config)

    monkeypatch.delenv("PY3WALLET_FROM_ENV", raising=False)
    monkeypatch.setattr(cli, "run_server", fake_run_server)
    return configs


def run_main(monkeypatch: pytest.MonkeyPatch, *args: str) -> None:
    monkeypatch.setattr(sys, "argv", ["py3wallet", *args])
    cli.main()


class TestMain:
    """Startup checks before the server runs."""

    def test_creates_private_data_dir(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path, served: list[Config]
    ) -> None:
        """Test a missing data directory is created without group or other access."""
        data_dir = tmp_path / "wallet" / "data"
        run_main(monkeypatch, "--data-dir", str(data_dir))
        assert data_dir.is_dir()
        assert stat.S_IMODE(data_dir.stat().st_mode) & 0o077 == 0
        assert [c.data_dir for c in served] == [data_dir]

    def test_shared_data_dir_warns(
        self,
        monkeypatch: pytest.MonkeyPatch,
        tmp_path: Path,
        served: list[Config],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test an existing world-readable data directory is reported."""
        tmp_path.chmod(0o755)
        with caplog.at_level(logging.WARNING, logger="py3wallet.cli"):
            run_main(monkeypatch, "--data-dir", str(tmp_path))
        assert "accessible to other users" in caplog.text
        assert len(served) == 1

    def test_unusable_data_dir_exits(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path, served: list[Config]
    ) -> None:
        """Test a data directory that cannot be created stops startup."""
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, "--data-dir", str(blocker / "data"))
        assert exc_info.value.code == 1
        assert served == []

    def test_invalid_config_exits(self, monkeypatch: pytest.MonkeyPatch, served: list[Config]) -> None:
        """Test configuration errors exit with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, "--session-timeout", "0")
        assert exc_info.value.code == 1
        assert served == []

    @pytest.mark.parametrize(
        ("args", "warned"),
        [
            (["--host", "0.0.0.0"], True),
            (["--host", "0.0.0.0", "--auth-token", "secret"], False),
            (["--host", "127.0.0.1"], False),
        ],
    )
    def test_exposed_host_warns(
        self,
        monkeypatch: pytest.MonkeyPatch,
        served: list[Config],
        caplog: pytest.LogCaptureFixture,
        args: list[str],
        warned: bool,
    ) -> None:
        """Test listening beyond loopback without a token is reported."""
        with caplog.at_level(logging.WARNING, logger="py3wallet.cli"):
            run_main(monkeypatch, *args)
        assert ("without --auth-token" in caplog.text) is warned
        assert len(served) == 1


@pytest.mark.parametrize(
    ("host", "expected"),
    [
        ("127.0.0.1", True),
        ("::1", True),
        ("localhost", True),
        ("0.0.0.0", False),
        ("192.168.1.10", False),
        ("wallet.example", False),
    ],
)
def test_is_loopback(host: str, expected: bool) -> None:
    assert cli.is_loopback(host) is expected
