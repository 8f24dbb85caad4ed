"""
Astrix SDK facade.

Owns one chain connection, one result cache, one block monitor and one
executor. Domain modules receive the executor; nothing here is a
process-wide singleton.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx

from .anamnesis.cache import ResultCache
from .config import SdkConfig
from .errors import ChainConnectionError, normalize_error
from .executor import CacheOptions, OperationExecutor
from .logging_setup import set_verbose
from .operations import Operation
from .pneuma.blocks import BlockMonitor, BlockSnapshot
from .pneuma.rpc import ChainConnection
from .pneuma.tx import ConfirmedResult, TransactionDriver
from .sigil.eth import Identity, resolve_identity

logger = logging.getLogger(__name__)


class AstrixSDK:
    """
    Entry point for talking to the Astrix contracts.

    Example:
        >>> async with AstrixSDK(SdkConfig(rpc_url=..., chain_id=...)) as sdk:
        ...     sdk.connect("0x...")
        ...     result = await sdk.write(create_tribe, ["name", "{}", []])
    """

    def __init__(
        self,
        config: SdkConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        if config.verbose:
            set_verbose(True)

        self.connection = ChainConnection(
            config.rpc_url,
            config.chain_id,
            timeout=config.request_timeout,
            transport=transport,
        )
        self.cache = ResultCache(default_ttl=config.cache_ttl)
        self.monitor = BlockMonitor(
            self.connection, self.cache, poll_interval=config.block_poll_interval
        )
        self.driver = TransactionDriver(
            self.connection, timeout=config.tx_timeout, poll_interval=config.poll_interval
        )
        self.executor = OperationExecutor(
            self.connection,
            self.cache,
            self.driver,
            monitor=self.monitor,
            cache_disabled=config.cache_disabled,
            default_block_based=config.default_block_based,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, verify_chain: bool = False) -> None:
        """
        Start the block monitor.

        Args:
            verify_chain: Also check that the node serves ``config.chain_id``
        """
        if verify_chain:
            try:
                remote = await self.connection.remote_chain_id()
            except Exception as exc:
                raise normalize_error(exc, "Failed to reach RPC endpoint") from exc
            if remote != self.config.chain_id:
                raise ChainConnectionError(
                    f"RPC endpoint serves chain {remote}, expected {self.config.chain_id}"
                )
        await self.monitor.start()

    async def close(self) -> None:
        await self.monitor.aclose()
        await self.connection.aclose()

    async def __aenter__(self) -> "AstrixSDK":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def connect(self, identity: Identity) -> str:
        """
        Attach (or replace) the signing identity.

        Writes already in flight keep the identity they started with.

        Returns:
            The connected address
        """
        try:
            account = resolve_identity(identity)
        except Exception as exc:
            raise ChainConnectionError("Failed to connect signer", cause=exc) from exc
        self.connection.attach_signer(account)
        logger.debug("Connected with address: %s", account.address)
        return account.address

    def disconnect(self) -> None:
        self.connection.attach_signer(None)

    @property
    def is_connected(self) -> bool:
        return self.connection.signer is not None

    @property
    def address(self) -> str:
        address = self.connection.address
        if address is None:
            raise ChainConnectionError("No signer connected")
        return address

    # ------------------------------------------------------------------
    # Pass-throughs
    # ------------------------------------------------------------------

    def contract_address(self, name: str) -> str:
        return self.config.contract_address(name)

    def block_status(self) -> BlockSnapshot:
        return self.monitor.snapshot()

    async def read(
        self,
        operation: Operation,
        params: Sequence[Any] = (),
        cache_options: Optional[CacheOptions] = None,
    ) -> Any:
        return await self.executor.read(operation, params, cache_options)

    async def write(
        self,
        operation: Operation,
        params: Sequence[Any] = (),
        value: int = 0,
    ) -> ConfirmedResult:
        return await self.executor.write(operation, params, value=value)

