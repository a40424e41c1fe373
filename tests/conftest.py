"""Test fixtures and utilities."""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
from litestar.testing import AsyncTestClient

from py3wallet.config import Config
from py3wallet.protected_key import SoftwareProtectedKey
from py3wallet.server import create_app
from py3wallet.session import AuthenticationManager
from py3wallet.storage import SecureStorage
from py3wallet.wallet import WalletService

# Low KDF cost keeps PIN and backup tests fast
TEST_KDF_ITERATIONS = 1_000

ABANDON_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
ABANDON_SEED_HEX = (
    "5eb00bbddcf069084889a8ab9155568165f5c453ccb85e70811aaed6f6da5fc1"
    "9a5ac40b389cd370d086206dec8aa6c43daea6690f20ad3d8d48b2d2ce9e38e4"
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBiometrics:
    """Biometric authenticator returning a scripted result."""

    def __init__(self, result: bool = True, available: bool = True) -> None:
        self.result = result
        self.available = available
        self.prompts: list[str] = []

    def is_available(self) -> bool:
        return self.available

    async def authenticate(self, reason: str) -> bool:
        self.prompts.append(reason)
        return self.result


@pytest.fixture
def config() -> Config:
    """Create a test configuration."""
    return Config(
        host="127.0.0.1",
        port=8080,
        log_level="DEBUG",
        pin_kdf_iterations=TEST_KDF_ITERATIONS,
        backup_kdf_iterations=TEST_KDF_ITERATIONS,
    )


@pytest.fixture
def protected_key() -> SoftwareProtectedKey:
    return SoftwareProtectedKey.generate()


@pytest.fixture
def storage(protected_key: SoftwareProtectedKey) -> Generator[SecureStorage, None, None]:
    """Create a fresh in-memory secure storage."""
    storage = SecureStorage(
        protected_key,
        pin_iterations=TEST_KDF_ITERATIONS,
        backup_iterations=TEST_KDF_ITERATIONS,
    )
    yield storage
    storage.wipe_all_data()


@pytest.fixture
def temp_data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auth(storage: SecureStorage, clock: FakeClock) -> Generator[AuthenticationManager, None, None]:
    """Create an authentication manager with no gate and a fake clock."""
    manager = AuthenticationManager(storage, session_timeout=300, clock=clock)
    yield manager
    manager.close()


@pytest.fixture
def wallet(storage: SecureStorage, auth: AuthenticationManager) -> WalletService:
    return WalletService(storage, auth, cache_size=16)


@pytest.fixture
async def unlocked_wallet(wallet: WalletService) -> WalletService:
    """Wallet service whose session has been unlocked."""
    await wallet.auth.request_unlock()
    return wallet


@pytest.fixture
async def client(config: Config) -> AsyncGenerator[AsyncTestClient, None]:
    """Create a test client."""
    app = create_app(config)
    async with AsyncTestClient(app) as client:
        yield client


@pytest.fixture
async def unlocked_client(client: AsyncTestClient) -> AsyncTestClient:
    """Test client whose session has been unlocked."""
    resp = await client.post("/api/v1/session/unlock")
    assert resp.status_code == 200
    assert resp.json()["state"] == "unlocked"
    return client


@pytest.fixture
async def client_with_token(config: Config) -> AsyncGenerator[AsyncTestClient, None]:
    """Create a test client that requires a bearer token."""
    token_config = Config(
        host=config.host,
        port=config.port,
        log_level=config.log_level,
        auth_token="s3cret",
        pin_kdf_iterations=TEST_KDF_ITERATIONS,
        backup_kdf_iterations=TEST_KDF_ITERATIONS,
    )
    app = create_app(token_config)
    async with AsyncTestClient(app) as client:
        yield client
