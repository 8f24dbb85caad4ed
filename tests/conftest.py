"""
Shared fixtures: a scripted JSON-RPC node behind httpx.MockTransport.

No test needs network access or a running chain.
"""

from __future__ import annotations

import json
from collections import Counter
from typing import Any, Callable, Optional

import httpx
import pytest
from eth_abi import encode
from eth_account import Account

from astrix.anamnesis.cache import ResultCache
from astrix.executor import OperationExecutor
from astrix.operations import Operation, read_prefix
from astrix.pneuma.abi import event_topic, find_event, find_function, function_selector, keccak256
from astrix.pneuma.blocks import BlockMonitor
from astrix.pneuma.rpc import ChainConnection
from astrix.pneuma.tx import TransactionDriver

CHAIN_ID = 31337
RPC_URL = "http://node.test"
THING_REGISTRY = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
SIGNER_KEY = "0x" + "11" * 32
SIGNER_ADDRESS = Account.from_key(SIGNER_KEY).address

TEST_ABI = [
    {
        "type": "function",
        "name": "getThing",
        "stateMutability": "view",
        "inputs": [{"name": "thingId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "type": "function",
        "name": "thingCount",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getStats",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "count", "type": "uint256"},
            {"name": "admin", "type": "address"},
        ],
    },
    {
        "type": "function",
        "name": "createThing",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "name", "type": "string"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "touch",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "ThingCreated",
        "anonymous": False,
        "inputs": [
            {"name": "thingId", "type": "uint256", "indexed": True},
            {"name": "owner", "type": "address", "indexed": True},
            {"name": "name", "type": "string", "indexed": False},
        ],
    },
]


def selector(function_name: str) -> str:
    """Bare 4-byte selector hex, as the node sees it in calldata."""
    return function_selector(find_function(TEST_ABI, function_name)).hex()


def encoded(types: list[str], values: list[Any]) -> str:
    return "0x" + encode(types, values).hex()


def revert_data(reason: str) -> str:
    return "0x08c379a0" + encode(["string"], [reason]).hex()


def thing_created_log(
    thing_id: int,
    owner: str = SIGNER_ADDRESS,
    name: str = "thing",
    address: str = THING_REGISTRY,
) -> dict[str, Any]:
    event = find_event(TEST_ABI, "ThingCreated")
    return {
        "address": address.lower(),
        "topics": [
            event_topic(event),
            encoded(["uint256"], [thing_id]),
            encoded(["address"], [owner]),
        ],
        "data": encoded(["string"], [name]),
    }


def make_receipt(
    tx_hash: str,
    status: int = 1,
    logs: Optional[list[dict[str, Any]]] = None,
    block_number: int = 101,
) -> dict[str, Any]:
    return {
        "transactionHash": tx_hash,
        "status": hex(status),
        "blockNumber": hex(block_number),
        "logs": logs or [],
    }


class NodeError(Exception):
    """Raised by a scripted handler to answer with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class FakeNode:
    """
    Minimal Ethereum JSON-RPC node.

    ``call_results`` maps a selector to a hex result or to a callable
    ``(tx, block) -> hex``; unknown selectors revert. ``failures`` maps a
    method to an exception raised instead of answering (``NodeError`` for
    JSON-RPC errors, httpx exceptions for transport failures).
    """

    def __init__(self, chain_id: int = CHAIN_ID, block_number: int = 100) -> None:
        self.chain_id = chain_id
        self.block_number = block_number
        self.pending_nonce = 0
        self.gas_price = 10**9
        self.calls: Counter = Counter()
        self.requests: list[dict[str, Any]] = []
        self.call_results: dict[str, Any] = {}
        self.failures: dict[str, Exception] = {}
        self.sent: list[str] = []
        self.raw_transactions: list[str] = []
        self.receipt_delay = 0
        self.receipt_builder: Callable[[int, str], Optional[dict[str, Any]]] = self.success_receipt
        self._receipt_polls: Counter = Counter()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def network_calls(self) -> int:
        return sum(self.calls.values())

    def success_receipt(self, index: int, tx_hash: str) -> dict[str, Any]:
        return make_receipt(tx_hash, logs=[thing_created_log(index + 1)])

    def handle(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        method = payload["method"]
        self.calls[method] += 1
        self.requests.append(payload)

        body: dict[str, Any] = {"jsonrpc": "2.0", "id": payload["id"]}
        try:
            failure = self.failures.get(method)
            if failure is not None:
                raise failure
            body["result"] = getattr(self, "_" + method)(*payload["params"])
        except NodeError as exc:
            body["error"] = exc.to_dict()
        return httpx.Response(200, json=body)

    # JSON-RPC methods

    def _eth_chainId(self) -> str:
        return hex(self.chain_id)

    def _eth_blockNumber(self) -> str:
        return hex(self.block_number)

    def _eth_call(self, tx: dict[str, Any], block: str) -> str:
        handler = self.call_results.get(tx["data"][2:10])
        if handler is None:
            raise NodeError(3, "execution reverted")
        if callable(handler):
            return handler(tx, block)
        return handler

    def _eth_getTransactionCount(self, address: str, block: str) -> str:
        return hex(self.pending_nonce)

    def _eth_gasPrice(self) -> str:
        return hex(self.gas_price)

    def _eth_estimateGas(self, tx: dict[str, Any]) -> str:
        return hex(50_000)

    def _eth_sendRawTransaction(self, raw_tx: str) -> str:
        tx_hash = "0x" + keccak256(bytes.fromhex(raw_tx[2:])).hex()
        self.sent.append(tx_hash)
        self.raw_transactions.append(raw_tx)
        return tx_hash

    def _eth_getTransactionReceipt(self, tx_hash: str) -> Optional[dict[str, Any]]:
        if tx_hash not in self.sent:
            return None
        polls = self._receipt_polls[tx_hash]
        self._receipt_polls[tx_hash] += 1
        if polls < self.receipt_delay:
            return None
        return self.receipt_builder(self.sent.index(tx_hash), tx_hash)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============ Fixtures ============


@pytest.fixture()
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture()
def connection(node: FakeNode) -> ChainConnection:
    return ChainConnection(RPC_URL, CHAIN_ID, transport=node.transport())


@pytest.fixture()
def signer():
    return Account.from_key(SIGNER_KEY)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> ResultCache:
    return ResultCache(clock=clock)


@pytest.fixture()
def monitor(connection: ChainConnection, cache: ResultCache) -> BlockMonitor:
    return BlockMonitor(connection, cache, poll_interval=0.01)


@pytest.fixture()
def driver(connection: ChainConnection) -> TransactionDriver:
    return TransactionDriver(connection, timeout=1.0, poll_interval=0.01)


@pytest.fixture()
def executor(
    connection: ChainConnection,
    cache: ResultCache,
    driver: TransactionDriver,
    monitor: BlockMonitor,
) -> OperationExecutor:
    return OperationExecutor(connection, cache, driver, monitor=monitor)


@pytest.fixture()
def get_thing() -> Operation:
    return Operation.read(
        "things.getThing",
        THING_REGISTRY,
        TEST_ABI,
        function="getThing",
        params_schema={
            "type": "array",
            "prefixItems": [{"type": "integer", "minimum": 1}],
        },
    )


@pytest.fixture()
def thing_count() -> Operation:
    return Operation.read("things.thingCount", THING_REGISTRY, TEST_ABI, function="thingCount")


@pytest.fixture()
def create_thing() -> Operation:
    return Operation.write(
        "things.createThing",
        THING_REGISTRY,
        TEST_ABI,
        function="createThing",
        params_schema={
            "type": "array",
            "prefixItems": [{"type": "string", "minLength": 1}],
        },
        event="ThingCreated",
        event_fields=("thingId",),
        invalidates=(read_prefix("things.thingCount"),),
    )
