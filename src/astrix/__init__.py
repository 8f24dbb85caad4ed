__all__ = [
    # Facade
    "AstrixSDK",
    "SdkConfig",
    # Operations
    "Operation",
    "OperationKind",
    "read_prefix",
    "validate_address",
    "validate_non_empty_string",
    "validate_positive_int",
    "validate_token_amount",
    # Execution
    "CacheOptions",
    "OperationExecutor",
    "ConfirmedResult",
    "TransactionDriver",
    "TxState",
    # Chain
    "BlockMonitor",
    "BlockSnapshot",
    "ChainConnection",
    # Cache
    "ResultCache",
    "make_key",
    # Errors
    "AstrixError",
    "AuthorizationRequiredError",
    "ChainConnectionError",
    "ConfirmationTimeoutError",
    "DecodingError",
    "ErrorKind",
    "MissingExpectedEventError",
    "RemoteRejectedError",
    "ValidationError",
    "normalize_error",
    # Identity
    "load_identity",
    "resolve_identity",
    # Logging
    "configure_logging",
]

from .errors import (
    AstrixError,
    AuthorizationRequiredError,
    ChainConnectionError,
    ConfirmationTimeoutError,
    DecodingError,
    ErrorKind,
    MissingExpectedEventError,
    RemoteRejectedError,
    ValidationError,
    normalize_error,
)
from .anamnesis.cache import ResultCache, make_key
from .operations import (
    Operation,
    OperationKind,
    read_prefix,
    validate_address,
    validate_non_empty_string,
    validate_positive_int,
    validate_token_amount,
)
from .pneuma.rpc import ChainConnection
from .pneuma.blocks import BlockMonitor, BlockSnapshot
from .pneuma.tx import ConfirmedResult, TransactionDriver, TxState
from .executor import CacheOptions, OperationExecutor
from .config import SdkConfig
from .sdk import AstrixSDK
from .sigil.eth import load_identity, resolve_identity
from .logging_setup import configure_logging
