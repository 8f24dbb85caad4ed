"""
Operation Executor - the single path from domain modules to the chain.

Reads are cached and need no identity; writes need a signer, run the full
transaction lifecycle and invalidate the cached reads they make stale.
Every failure leaving this module is an ``AstrixError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .anamnesis.cache import ResultCache, make_key
from .errors import (
    AstrixError,
    AuthorizationRequiredError,
    DecodingError,
    ErrorKind,
    ValidationError,
    normalize_error,
)
from .operations import Operation, OperationKind
from .pneuma.abi import decode_result, encode_call
from .pneuma.blocks import BlockMonitor
from .pneuma.rpc import ChainConnection
from .pneuma.tx import ConfirmedResult, TransactionDriver

logger = logging.getLogger(__name__)

_MISS = object()


@dataclass(frozen=True)
class CacheOptions:
    """Per-read cache policy. ``None`` fields fall back to executor defaults."""

    disabled: bool = False
    max_age: Optional[float] = None
    block_based: Optional[bool] = None


class OperationExecutor:
    def __init__(
        self,
        connection: ChainConnection,
        cache: ResultCache,
        driver: TransactionDriver,
        monitor: Optional[BlockMonitor] = None,
        cache_disabled: bool = False,
        default_block_based: bool = False,
    ) -> None:
        self._connection = connection
        self._cache = cache
        self._driver = driver
        self._monitor = monitor
        self.cache_disabled = cache_disabled
        self.default_block_based = default_block_based

    @property
    def cache(self) -> ResultCache:
        return self._cache

    def cache_key(self, operation: Operation, params: Sequence[Any] = ()) -> str:
        return make_key(self._connection.chain_id, operation.name, params)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read(
        self,
        operation: Operation,
        params: Sequence[Any] = (),
        cache_options: Optional[CacheOptions] = None,
    ) -> Any:
        """
        Execute a read-only operation (eth_call), through the cache.

        Args:
            operation: Read operation definition
            params: Ordered call parameters
            cache_options: Per-call cache policy

        Returns:
            The decoded (and operation-decoded) result

        Raises:
            ValidationError, ChainConnectionError, RemoteRejectedError,
            DecodingError
        """
        params = list(params)
        options = cache_options or CacheOptions()
        try:
            if operation.kind is not OperationKind.READ:
                raise ValidationError(f"{operation.name} is not a read operation")
            operation.validate(params)

            use_cache = not (self.cache_disabled or options.disabled)
            key = self.cache_key(operation, params) if use_cache else ""
            if use_cache:
                cached = self._cache.get(key, _MISS)
                if cached is not _MISS:
                    logger.debug("Cache hit %s", key)
                    return cached

            try:
                calldata = encode_call(operation.abi, operation.function, params)
            except Exception as exc:
                raise ValidationError(
                    f"Cannot encode parameters for {operation.name}: {exc}", cause=exc
                ) from exc

            # Height before the call: a pin may be stale, never too new
            height = self._observed_height()
            raw = await self._connection.call(operation.contract, calldata)
            value = self._decode(operation, raw)

            if use_cache:
                self._store(key, value, options, height)
            return value
        except AstrixError:
            raise
        except Exception as exc:
            raise normalize_error(exc, f"Failed to read {operation.name}") from exc

    def _decode(self, operation: Operation, raw: Any) -> Any:
        if not isinstance(raw, str):
            raise DecodingError(f"{operation.name} returned non-hex data: {raw!r}")
        try:
            decoded = decode_result(operation.abi, operation.function, raw)
            if operation.decoder is not None:
                decoded = operation.decoder(decoded)
        except AstrixError:
            raise
        except Exception as exc:
            raise normalize_error(
                exc, f"Cannot decode {operation.name} result", default=ErrorKind.DECODING
            ) from exc
        return decoded

    def _observed_height(self) -> Optional[int]:
        if self._monitor is None or not self._monitor.is_live:
            return None
        return self._monitor.height

    def _store(
        self,
        key: str,
        value: Any,
        options: CacheOptions,
        height: Optional[int],
    ) -> None:
        block_based = (
            options.block_based if options.block_based is not None else self.default_block_based
        )
        if not block_based:
            self._cache.put(key, value, max_age=options.max_age)
            return
        if height is None:
            # No height observed yet: a pin would have nothing to match
            logger.debug("No block height observed, not caching %s", key)
            return
        self._cache.put(key, value, max_age=options.max_age, pinned_height=height)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def write(
        self,
        operation: Operation,
        params: Sequence[Any] = (),
        value: int = 0,
    ) -> ConfirmedResult:
        """
        Execute a state-mutating operation and wait for its confirmation.

        Fails fast, with no network call, when no signer is attached.
        Cache prefixes declared by the operation are invalidated only after
        a confirmed success.

        Raises:
            AuthorizationRequiredError, ValidationError, ChainConnectionError,
            RemoteRejectedError, ConfirmationTimeoutError,
            MissingExpectedEventError, DecodingError
        """
        params = list(params)
        try:
            signer = self._connection.signer
            if signer is None:
                raise AuthorizationRequiredError(
                    f"No signer connected for {operation.name}. Call connect() first."
                )
            if operation.kind is not OperationKind.WRITE:
                raise ValidationError(f"{operation.name} is not a write operation")
            operation.validate(params)

            result = await self._driver.execute(operation, params, value=value, signer=signer)
        except AstrixError:
            raise
        except Exception as exc:
            raise normalize_error(exc, f"Failed to execute {operation.name}") from exc

        try:
            prefixes = operation.invalidation_prefixes(params)
        except Exception:
            # Write already confirmed: fall back to the whole chain prefix
            logger.exception(
                "Invalidation for %s failed, dropping every cached read on chain %d",
                operation.name,
                self._connection.chain_id,
            )
            prefixes = [""]

        dropped = 0
        for prefix in prefixes:
            dropped += self.invalidate_prefix(prefix)

        logger.debug(
            "%s confirmed in block %d (%s), value=%r, %d cache entries invalidated",
            operation.name,
            result.block_number,
            result.tx_hash,
            result.value,
            dropped,
        )
        return result

    # ------------------------------------------------------------------
    # Manual invalidation
    # ------------------------------------------------------------------

    def invalidate(self, operation: Operation, params: Sequence[Any] = ()) -> bool:
        return self._cache.invalidate(self.cache_key(operation, params))

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop cached reads on this chain whose ``{operation}:{params}`` starts with ``prefix``."""
        return self._cache.invalidate_prefix(f"{self._connection.chain_id}:{prefix}")

