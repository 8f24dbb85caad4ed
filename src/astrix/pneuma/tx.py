"""
Transaction Lifecycle Driver - build, sign, submit, confirm, decode.

Uses eth-account for signing and the httpx-based chain connection for
sending. All gas is paid by the signer's EOA. The driver blocks until the
transaction is confirmed or rejected; it never resubmits.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from eth_account.signers.local import LocalAccount

from ..errors import (
    AuthorizationRequiredError,
    ConfirmationTimeoutError,
    DecodingError,
    MissingExpectedEventError,
    RemoteRejectedError,
    RpcError,
    ValidationError,
    decode_revert_reason,
)
from ..operations import Operation
from .abi import (
    decode_event_log,
    encode_call,
    find_event,
    find_event_log,
    select_fields,
    to_checksum_address,
)
from .rpc import ChainConnection

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 500_000
GAS_ESTIMATE_BUFFER = 1.2


class TxState(str, Enum):
    BUILDING = "building"
    SUBMITTED = "submitted"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class PendingTransaction:
    tx_hash: str
    operation_name: str
    sender: str
    calldata: str
    submitted_at: float


@dataclass(frozen=True)
class ConfirmedResult:
    operation_name: str
    value: Any
    tx_hash: str
    block_number: int
    receipt: dict[str, Any] = field(repr=False, compare=False)


class NonceAllocator:
    """
    Hands out nonces per sender.

    Allocation and submission happen under one lock per sender so that
    concurrent writes from the same identity never reuse a nonce. A failed
    submission releases its nonce by resyncing with the node next time.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._next: dict[str, int] = {}

    def lock_for(self, sender: str) -> asyncio.Lock:
        key = sender.lower()
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def allocate(self, connection: ChainConnection, sender: str) -> int:
        """Must be called while holding ``lock_for(sender)``."""
        key = sender.lower()
        chain_nonce = await connection.get_nonce(sender, "pending")
        nonce = max(chain_nonce, self._next.get(key, 0))
        self._next[key] = nonce + 1
        return nonce

    def release(self, sender: str) -> None:
        self._next.pop(sender.lower(), None)


class TransactionDriver:
    """Drives one write operation from calldata to decoded confirmation."""

    def __init__(
        self,
        connection: ChainConnection,
        timeout: float = 120.0,
        poll_interval: float = 2.0,
        nonces: Optional[NonceAllocator] = None,
    ) -> None:
        self._connection = connection
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._nonces = nonces or NonceAllocator()

    async def execute(
        self,
        operation: Operation,
        params: list[Any],
        value: int = 0,
        signer: Optional[LocalAccount] = None,
    ) -> ConfirmedResult:
        """
        Run a write operation to a terminal state.

        Args:
            operation: Write operation definition
            params: Ordered call parameters
            value: ETH value in wei
            signer: Identity to sign with; defaults to the connection's
                    signer at call time

        Returns:
            ConfirmedResult carrying the decoded expected event field(s)

        Raises:
            AuthorizationRequiredError: No signer available
            ValidationError: Parameters cannot be ABI-encoded
            RemoteRejectedError: Submission refused or transaction reverted
            ConfirmationTimeoutError: No receipt within ``timeout``
            MissingExpectedEventError: Receipt lacks the declared event
        """
        signer = signer or self._connection.signer
        if signer is None:
            raise AuthorizationRequiredError(
                f"No signer connected for {operation.name}. Call connect() first."
            )

        pending = await self._submit(operation, params, value, signer)
        receipt = await self._await_receipt(pending)
        return await self._finalize(operation, pending, receipt, value)

    # ------------------------------------------------------------------
    # Building, Submitted
    # ------------------------------------------------------------------

    async def _submit(
        self,
        operation: Operation,
        params: list[Any],
        value: int,
        signer: LocalAccount,
    ) -> PendingTransaction:
        self._transition(operation, TxState.BUILDING)
        try:
            calldata = encode_call(operation.abi, operation.function, params)
        except Exception as exc:
            raise ValidationError(
                f"Cannot encode parameters for {operation.name}: {exc}", cause=exc
            ) from exc

        sender = signer.address
        to = to_checksum_address(operation.contract)
        gas_limit = operation.gas_limit or await self._estimate_gas(
            sender, to, calldata, value
        )
        gas_price = await self._connection.gas_price()

        async with self._nonces.lock_for(sender):
            nonce = await self._nonces.allocate(self._connection, sender)
            tx = {
                "to": to,
                "data": calldata,
                "value": value,
                "nonce": nonce,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "chainId": self._connection.chain_id,
            }
            signed = signer.sign_transaction(tx)
            raw_tx = "0x" + signed.raw_transaction.hex()
            try:
                tx_hash = await self._connection.send_raw_transaction(raw_tx)
            except Exception:
                self._nonces.release(sender)
                raise

        pending = PendingTransaction(
            tx_hash=tx_hash,
            operation_name=operation.name,
            sender=sender,
            calldata=calldata,
            submitted_at=time.monotonic(),
        )
        self._transition(operation, TxState.SUBMITTED, tx_hash)
        return pending

    async def _estimate_gas(self, sender: str, to: str, calldata: str, value: int) -> int:
        try:
            estimate = await self._connection.estimate_gas(
                {"from": sender, "to": to, "data": calldata, "value": hex(value)}
            )
        except RpcError:
            # A reverting estimate is reported by the receipt, with its reason
            logger.debug("Gas estimation failed, using default limit %d", DEFAULT_GAS_LIMIT)
            return DEFAULT_GAS_LIMIT
        return int(estimate * GAS_ESTIMATE_BUFFER)

    # ------------------------------------------------------------------
    # AwaitingConfirmation
    # ------------------------------------------------------------------

    async def _await_receipt(self, pending: PendingTransaction) -> dict[str, Any]:
        logger.debug(
            "%s %s: %s", pending.operation_name, TxState.AWAITING_CONFIRMATION.value, pending.tx_hash
        )
        deadline = pending.submitted_at + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            # A hung poll must not outlive the confirmation window
            try:
                receipt = await asyncio.wait_for(
                    self._connection.get_transaction_receipt(pending.tx_hash), remaining
                )
            except asyncio.TimeoutError:
                break
            if receipt is not None:
                return receipt
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval, remaining))

        logger.debug("%s %s: timed out", pending.operation_name, TxState.REJECTED.value)
        raise ConfirmationTimeoutError(
            f"Transaction {pending.tx_hash} for {pending.operation_name} "
            f"not confirmed within {self.timeout}s",
            tx_hash=pending.tx_hash,
        )

    # ------------------------------------------------------------------
    # Confirmed | Rejected
    # ------------------------------------------------------------------

    async def _finalize(
        self,
        operation: Operation,
        pending: PendingTransaction,
        receipt: dict[str, Any],
        value: int,
    ) -> ConfirmedResult:
        status = int(receipt.get("status", "0x0"), 16)
        block_number = int(receipt.get("blockNumber", "0x0"), 16)

        if status != 1:
            self._transition(operation, TxState.REJECTED, pending.tx_hash)
            reason = await self._revert_reason(operation, pending, receipt, value)
            message = f"Transaction {pending.tx_hash} for {operation.name} reverted"
            if reason:
                message += f": {reason}"
            raise RemoteRejectedError(message, reason=reason, tx_hash=pending.tx_hash)

        result_value = None
        if operation.event is not None:
            result_value = self._extract_event(operation, pending, receipt)

        self._transition(operation, TxState.CONFIRMED, pending.tx_hash)
        return ConfirmedResult(
            operation_name=operation.name,
            value=result_value,
            tx_hash=pending.tx_hash,
            block_number=block_number,
            receipt=receipt,
        )

    def _extract_event(
        self,
        operation: Operation,
        pending: PendingTransaction,
        receipt: dict[str, Any],
    ) -> Any:
        event = find_event(operation.abi, operation.event)
        log = find_event_log(receipt.get("logs") or [], event, address=operation.contract)
        if log is None:
            self._transition(operation, TxState.REJECTED, pending.tx_hash)
            raise MissingExpectedEventError(
                f"{operation.event} event not found in receipt of {pending.tx_hash}",
                event=operation.event,
                tx_hash=pending.tx_hash,
            )
        try:
            args = decode_event_log(event, log)
            return select_fields(args, operation.event_fields)
        except Exception as exc:
            raise DecodingError(
                f"Cannot decode {operation.event} from {pending.tx_hash}: {exc}", cause=exc
            ) from exc

    async def _revert_reason(
        self,
        operation: Operation,
        pending: PendingTransaction,
        receipt: dict[str, Any],
        value: int,
    ) -> Optional[str]:
        """Replay the call at the receipt's block to recover the revert reason."""
        block = receipt.get("blockNumber") or "latest"
        replay = {
            "from": pending.sender,
            "to": operation.contract,
            "data": pending.calldata,
            "value": hex(value),
        }
        try:
            await self._connection.request("eth_call", [replay, block])
        except RpcError as exc:
            return decode_revert_reason(exc.data) or exc.rpc_message or None
        except Exception as exc:
            logger.debug("Revert reason replay failed for %s: %s", pending.tx_hash, exc)
        return None

    @staticmethod
    def _transition(operation: Operation, state: TxState, tx_hash: str = "") -> None:
        logger.debug("%s %s %s", operation.name, state.value, tx_hash)
