"""
Astrix error taxonomy and normalizer.

Every failure that crosses the executor boundary is turned into one of a
closed set of error kinds. The original exception is kept as ``cause`` and
chained with ``raise ... from``.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Optional

import httpx
import jsonschema
from eth_abi import decode
from eth_abi.exceptions import DecodingError as AbiDecodingError
from eth_abi.exceptions import EncodingError as AbiEncodingError


class ErrorKind(str, Enum):
    CONNECTION = "ConnectionError"
    AUTHORIZATION_REQUIRED = "AuthorizationRequired"
    VALIDATION = "ValidationError"
    REMOTE_REJECTED = "RemoteRejected"
    TIMEOUT = "Timeout"
    MISSING_EXPECTED_EVENT = "MissingExpectedEvent"
    DECODING = "DecodingError"


class AstrixError(RuntimeError):
    """Base class for every error surfaced by the SDK."""

    kind: ErrorKind = ErrorKind.REMOTE_REJECTED

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class ChainConnectionError(AstrixError):
    """The read endpoint or the signer is unreachable or misconfigured."""

    kind = ErrorKind.CONNECTION


class AuthorizationRequiredError(AstrixError):
    """A write was attempted with no identity attached."""

    kind = ErrorKind.AUTHORIZATION_REQUIRED


class ValidationError(AstrixError):
    """Parameters were rejected before any network call was made."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        errors: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, cause)
        self.errors = errors or []


class RemoteRejectedError(AstrixError):
    """The node rejected the call (revert, invalid nonce, insufficient funds...)."""

    kind = ErrorKind.REMOTE_REJECTED

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        reason: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> None:
        super().__init__(message, cause)
        self.reason = reason
        self.tx_hash = tx_hash


class ConfirmationTimeoutError(AstrixError):
    """A submitted transaction did not finalize within the configured window."""

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        tx_hash: Optional[str] = None,
    ) -> None:
        super().__init__(message, cause)
        self.tx_hash = tx_hash


class MissingExpectedEventError(AstrixError):
    """The transaction succeeded but its receipt lacks the promised event."""

    kind = ErrorKind.MISSING_EXPECTED_EVENT

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        event: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> None:
        super().__init__(message, cause)
        self.event = event
        self.tx_hash = tx_hash


class DecodingError(AstrixError):
    """A response arrived but could not be decoded into the expected shape."""

    kind = ErrorKind.DECODING


_ERROR_CLASSES: dict[ErrorKind, type[AstrixError]] = {
    ErrorKind.CONNECTION: ChainConnectionError,
    ErrorKind.AUTHORIZATION_REQUIRED: AuthorizationRequiredError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.REMOTE_REJECTED: RemoteRejectedError,
    ErrorKind.TIMEOUT: ConfirmationTimeoutError,
    ErrorKind.MISSING_EXPECTED_EVENT: MissingExpectedEventError,
    ErrorKind.DECODING: DecodingError,
}

# Error(string) and Panic(uint256) selectors
_ERROR_STRING_SELECTOR = "08c379a0"
_PANIC_SELECTOR = "4e487b71"


class RpcError(RuntimeError):
    """A JSON-RPC response carrying an ``error`` object."""

    def __init__(self, code: Optional[int], message: str, data: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message
        self.data = data


def decode_revert_reason(data: Any) -> Optional[str]:
    """
    Decode a revert payload returned by a node.

    Args:
        data: ``0x``-prefixed hex string (or dict with a ``data`` key, as some
              nodes nest it)

    Returns:
        Human readable reason, or None if the payload is not a standard
        ``Error(string)`` / ``Panic(uint256)`` encoding
    """
    if isinstance(data, dict):
        data = data.get("data")
    if not isinstance(data, str) or not data.startswith("0x") or len(data) < 10:
        return None

    selector = data[2:10].lower()
    try:
        payload = bytes.fromhex(data[10:])
        if selector == _ERROR_STRING_SELECTOR:
            (reason,) = decode(["string"], payload)
            return reason
        if selector == _PANIC_SELECTOR:
            (code,) = decode(["uint256"], payload)
            return f"panic code 0x{code:02x}"
    except (ValueError, AbiDecodingError):
        return None
    return None


def _rpc_reason(exc: RpcError) -> str:
    reason = decode_revert_reason(exc.data)
    if reason:
        return reason
    return exc.rpc_message


def normalize_error(
    exc: BaseException,
    message: str = "Operation failed",
    default: ErrorKind = ErrorKind.REMOTE_REJECTED,
) -> AstrixError:
    """
    Map any exception to an ``AstrixError``.

    Pure function: no state, no I/O. Already-normalized errors are returned
    unchanged so that the normalizer can be applied at every boundary.

    Args:
        exc: The raw exception
        message: Context prefix for the resulting message
        default: Kind used when the exception type is not recognized

    Returns:
        The normalized error (not raised)
    """
    if isinstance(exc, AstrixError):
        return exc

    if isinstance(exc, RpcError):
        reason = _rpc_reason(exc)
        return RemoteRejectedError(f"{message}: {reason}", cause=exc, reason=reason)

    if isinstance(exc, httpx.TimeoutException):
        return ChainConnectionError(f"{message}: RPC request timed out", cause=exc)

    if isinstance(exc, httpx.HTTPStatusError):
        return ChainConnectionError(
            f"{message}: HTTP {exc.response.status_code} from RPC endpoint", cause=exc
        )

    # TimeoutError is an OSError subclass, so it is matched first
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ConfirmationTimeoutError(f"{message}: {exc}", cause=exc)

    if isinstance(exc, (httpx.TransportError, httpx.InvalidURL, OSError)):
        return ChainConnectionError(f"{message}: {exc}", cause=exc)

    if isinstance(exc, jsonschema.ValidationError):
        return ValidationError(f"{message}: {exc.message}", cause=exc)

    if isinstance(exc, AbiEncodingError):
        return ValidationError(f"{message}: {exc}", cause=exc)

    if isinstance(exc, AbiDecodingError):
        return DecodingError(f"{message}: {exc}", cause=exc)

    detail = str(exc) or type(exc).__name__
    return _ERROR_CLASSES[default](f"{message}: {detail}", cause=exc)
