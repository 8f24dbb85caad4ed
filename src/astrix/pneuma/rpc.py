"""
JSON-RPC chain connection.

Lightweight alternative to web3.py: uses httpx for HTTP + eth-abi for encoding.
Holds the read endpoint and the optional write identity shared by every
component of one SDK instance, and exposes a polling new-block channel.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable, Optional

import httpx
from eth_account.signers.local import LocalAccount

from ..errors import ChainConnectionError, RpcError

logger = logging.getLogger(__name__)

BlockListener = Callable[[int], None]
ErrorListener = Callable[[BaseException], None]


class BlockSubscription:
    """Handle on a running new-block poller. ``unsubscribe`` is idempotent."""

    def __init__(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def unsubscribe(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait until the poller has actually finished (after ``unsubscribe``)."""
        await asyncio.wait({self._task})


class ChainConnection:
    """
    Read endpoint plus optional signer for one chain.

    The signer is held by reference: every component built on this
    connection sees the identity attached by the latest ``attach_signer``.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        signer: Optional[LocalAccount] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self._signer = signer
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def signer(self) -> Optional[LocalAccount]:
        return self._signer

    @property
    def address(self) -> Optional[str]:
        return self._signer.address if self._signer is not None else None

    def attach_signer(self, signer: Optional[LocalAccount]) -> None:
        self._signer = signer

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def request(self, method: str, params: list) -> Any:
        """
        Make a JSON-RPC call.

        Args:
            method: RPC method name (e.g., "eth_call")
            params: RPC parameters

        Returns:
            Result field from the RPC response

        Raises:
            RpcError: If the node answers with an error object
            httpx.HTTPError: On transport failures and non-2xx statuses
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        response = await self._client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise ChainConnectionError(
                f"RPC endpoint {self.rpc_url} returned a non JSON-RPC response", cause=exc
            ) from exc

        if not isinstance(data, dict):
            raise ChainConnectionError(
                f"RPC endpoint {self.rpc_url} returned a non JSON-RPC response"
            )

        if "error" in data:
            error = data["error"] or {}
            raise RpcError(error.get("code"), error.get("message", ""), error.get("data"))

        return data.get("result")

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Typed wrappers
    # ------------------------------------------------------------------

    async def call(
        self,
        to: str,
        data: str,
        block: str = "latest",
        sender: Optional[str] = None,
    ) -> str:
        """Read from a contract (eth_call). Returns raw 0x-hex return data."""
        tx: dict[str, Any] = {"to": to, "data": data}
        if sender:
            tx["from"] = sender
        return await self.request("eth_call", [tx, block])

    async def block_number(self) -> int:
        return int(await self.request("eth_blockNumber", []), 16)

    async def remote_chain_id(self) -> int:
        return int(await self.request("eth_chainId", []), 16)

    async def get_nonce(self, address: str, block: str = "pending") -> int:
        """Get transaction count for an address, pending transactions included."""
        result = await self.request("eth_getTransactionCount", [address, block])
        return int(result, 16)

    async def gas_price(self) -> int:
        return int(await self.request("eth_gasPrice", []), 16)

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return int(await self.request("eth_estimateGas", [tx]), 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """Send a signed raw transaction. Returns the 0x-prefixed tx hash."""
        return await self.request("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.request("eth_getTransactionReceipt", [tx_hash])

    # ------------------------------------------------------------------
    # New-block channel
    # ------------------------------------------------------------------

    def subscribe_blocks(
        self,
        listener: BlockListener,
        interval: float = 4.0,
        on_error: Optional[ErrorListener] = None,
    ) -> BlockSubscription:
        """
        Start polling ``eth_blockNumber`` and call ``listener`` on every change.

        Must be called with a running event loop. Poll failures go to
        ``on_error`` (or the log) and polling continues.
        """
        task = asyncio.get_running_loop().create_task(
            self._poll_blocks(listener, interval, on_error)
        )
        return BlockSubscription(task)

    async def _poll_blocks(
        self,
        listener: BlockListener,
        interval: float,
        on_error: Optional[ErrorListener],
    ) -> None:
        last: Optional[int] = None
        while True:
            try:
                height = await self.block_number()
                if height != last:
                    last = height
                    listener(height)
            except Exception as exc:
                if on_error is not None:
                    on_error(exc)
                else:
                    logger.warning("Block poll on %s failed: %s", self.rpc_url, exc)
            await asyncio.sleep(interval)
