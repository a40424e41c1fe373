"""Base types, structs and validation helpers for handlers."""

from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING, Any, TypeVar

import msgspec
from litestar import MediaType, Response
from litestar.exceptions import NotAuthorizedException, ValidationException
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from py3wallet.address import Network, ScriptType
from py3wallet.bech32 import Bech32Error
from py3wallet.bip39 import VALID_STRENGTHS, InvalidMnemonic
from py3wallet.hdkey import DerivationError
from py3wallet.session import BiometricRequired, SessionError, SessionExpired
from py3wallet.storage import (
    AuthenticationFailed,
    DecryptionFailed,
    InvalidBackup,
    NotFound,
    StorageError,
    validate_wallet_id,
)
from py3wallet.wallet import WalletError, WalletExists

if TYPE_CHECKING:
    from litestar import Request
    from litestar.connection import ASGIConnection
    from litestar.handlers.base import BaseRouteHandler

    from py3wallet.models import AddressInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Request/Response structs


class GenerateMnemonicRequest(msgspec.Struct):
    """Request struct for generating a mnemonic."""

    strength: int = 256

    def __post_init__(self) -> None:
        if self.strength not in VALID_STRENGTHS:
            raise ValueError(f"strength must be one of {VALID_STRENGTHS}")


class MnemonicRequest(msgspec.Struct):
    mnemonic: str


class MnemonicResponse(msgspec.Struct):
    mnemonic: str
    word_count: int


class ValidateMnemonicResponse(msgspec.Struct):
    valid: bool
    word_count: int
    error: str | None = None


class PinRequest(msgspec.Struct):
    pin: str

    def __post_init__(self) -> None:
        if not self.pin:
            raise ValueError("pin must not be empty")


class SessionStatusResponse(msgspec.Struct):
    """Session state as seen by the client."""

    state: str
    expires_in: float | None
    gate_configured: bool
    has_pin: bool
    biometric_enabled: bool


class CreateWalletRequest(msgspec.Struct):
    """Request struct for creating or restoring a wallet.

    A wallet is restored when mnemonic is given, otherwise a new mnemonic
    of the requested strength is generated.
    """

    wallet_id: str
    mnemonic: str | None = None
    strength: int = 256
    passphrase: str = ""
    # None protects the seed with biometrics whenever they are usable
    requires_biometric: bool | None = None
    overwrite: bool = False

    def __post_init__(self) -> None:
        validate_wallet_id(self.wallet_id)
        if self.mnemonic is None and self.strength not in VALID_STRENGTHS:
            raise ValueError(f"strength must be one of {VALID_STRENGTHS}")


class CreateWalletResponse(msgspec.Struct):
    wallet_id: str
    first_address: str
    # only set for newly generated wallets
    mnemonic: str | None = None


class WalletInfo(msgspec.Struct):
    wallet_id: str
    requires_biometric: bool
    created_at: float | None = None
    word_count: int | None = None
    restored: bool | None = None


class ListWalletsResponse(msgspec.Struct):
    data: list[WalletInfo]


class AddressResponse(msgspec.Struct):
    """A derived address. Never carries private key material."""

    wallet_id: str
    path: str
    address: str
    public_key: str
    script_type: str
    network: str

    @classmethod
    def from_info(cls, info: AddressInfo) -> AddressResponse:
        return cls(
            wallet_id=info.wallet_id,
            path=info.path,
            address=info.address,
            public_key=info.public_key_hex,
            script_type=info.script_type,
            network=info.network,
        )


class AddressListResponse(msgspec.Struct):
    data: list[AddressResponse]


class XpubResponse(msgspec.Struct):
    wallet_id: str
    path: str
    xpub: str


class PasswordRequest(msgspec.Struct):
    password: str

    def __post_init__(self) -> None:
        if not self.password:
            raise ValueError("password must not be empty")


class ImportBackupRequest(msgspec.Struct):
    """Backup blob (as exported) and its password."""

    backup: dict[str, Any]
    password: str


class ImportBackupResponse(msgspec.Struct):
    wallets: list[str]


class HealthResponse(msgspec.Struct):
    """Health check response."""

    status: str
    wallets_stored: int
    session: str


class HealthcheckResponse(msgspec.Struct):
    status: str
    outcome: str


class StatusResponse(msgspec.Struct):
    status: str


# Validation helpers


def parse_request(data: dict[str, Any], type_: type[T]) -> T:
    """Validate and parse a request body into type_.

    Raises:
        ValidationException: If validation fails

    """
    try:
        return msgspec.convert(data, type_)
    except (msgspec.ValidationError, msgspec.DecodeError) as e:
        raise ValidationException(detail=f"Validation error: {e}") from e
    except ValueError as e:
        raise ValidationException(detail=str(e)) from e


def parse_network(value: str | None) -> Network | None:
    if value is None:
        return None
    try:
        return Network(value.lower())
    except ValueError as e:
        raise ValidationException(detail=f"Unknown network {value!r}") from e


def parse_script_type(value: str | None) -> ScriptType | None:
    if value is None:
        return None
    try:
        return ScriptType(value.lower())
    except ValueError as e:
        raise ValidationException(detail=f"Unknown script type {value!r}") from e


# Guards


def require_api_token(connection: ASGIConnection[Any, Any, Any, Any], _: BaseRouteHandler) -> None:
    """Reject requests without the configured bearer token."""
    token: str | None = connection.app.state.get("auth_token")
    if token is None:
        return
    auth_header = connection.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer ") or not hmac.compare_digest(
        auth_header[7:].encode("utf-8"), token.encode("utf-8")
    ):
        raise NotAuthorizedException(detail="Missing or invalid bearer token")


# Domain error mapping


def _error_response(status_code: int, detail: str) -> Response[dict[str, Any]]:
    return Response(
        content={"status_code": status_code, "detail": detail},
        status_code=status_code,
        media_type=MediaType.JSON,
    )


def handle_session_error(_: Request[Any, Any, Any], exc: SessionError) -> Response[dict[str, Any]]:
    if isinstance(exc, SessionExpired):
        detail = "Session expired"
    elif isinstance(exc, BiometricRequired):
        detail = "Biometric authentication required"
    else:
        detail = "Session locked"
    return _error_response(HTTP_401_UNAUTHORIZED, detail)


def handle_not_found(_: Request[Any, Any, Any], exc: NotFound) -> Response[dict[str, Any]]:
    return _error_response(HTTP_404_NOT_FOUND, str(exc))


def handle_wallet_exists(_: Request[Any, Any, Any], exc: WalletExists) -> Response[dict[str, Any]]:
    return _error_response(HTTP_409_CONFLICT, str(exc))


def handle_authentication_failed(
    _: Request[Any, Any, Any], exc: AuthenticationFailed
) -> Response[dict[str, Any]]:
    return _error_response(HTTP_403_FORBIDDEN, str(exc))


def handle_bad_input(_: Request[Any, Any, Any], exc: Exception) -> Response[dict[str, Any]]:
    return _error_response(HTTP_400_BAD_REQUEST, str(exc))


def handle_storage_error(_: Request[Any, Any, Any], exc: StorageError) -> Response[dict[str, Any]]:
    logger.error(f"Secure storage failure: {exc}")
    detail = "Stored secret could not be decrypted" if isinstance(exc, DecryptionFailed) else "Storage error"
    return _error_response(HTTP_500_INTERNAL_SERVER_ERROR, detail)


# Matched along the exception MRO, most specific class first.
EXCEPTION_HANDLERS: dict[type[Exception], Any] = {
    SessionError: handle_session_error,
    NotFound: handle_not_found,
    WalletExists: handle_wallet_exists,
    AuthenticationFailed: handle_authentication_failed,
    WalletError: handle_bad_input,
    InvalidMnemonic: handle_bad_input,
    DerivationError: handle_bad_input,
    Bech32Error: handle_bad_input,
    InvalidBackup: handle_bad_input,
    StorageError: handle_storage_error,
}
