"""
ABI helpers - artifact loading, call encoding, result and event decoding.

Artifacts may be Hardhat or Foundry compilation outputs (a JSON object with
an ``abi`` key) or a bare ABI list. Which artifact belongs to which contract
is the caller's business; this module only reads and interprets them.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from eth_abi import decode, encode
from eth_hash.auto import keccak

FieldRef = Union[str, int]


def keccak256(data: bytes) -> bytes:
    """Compute Keccak-256. NOTE: Keccak-256 != SHA3-256 (NIST)."""
    return keccak(data)


def to_checksum_address(address: str) -> str:
    """Convert an address to EIP-55 checksummed format.

    eth-account requires checksummed addresses in transaction fields.
    """
    addr = address.lower().replace("0x", "")
    addr_hash = keccak256(addr.encode("utf-8")).hex()
    result = "0x"
    for i, c in enumerate(addr):
        if c in "abcdef":
            result += c.upper() if int(addr_hash[i], 16) >= 8 else c
        else:
            result += c
    return result


@lru_cache(maxsize=32)
def _load_artifact(path: str) -> tuple[str, ...]:
    with open(path, "r", encoding="utf-8") as f:
        artifact = json.load(f)
    abi = artifact["abi"] if isinstance(artifact, dict) else artifact
    if not isinstance(abi, list):
        raise ValueError(f"No ABI list in artifact: {path}")
    # JSON strings keep the cached value immutable
    return tuple(json.dumps(entry, sort_keys=True) for entry in abi)


def load_abi(path: Union[str, Path]) -> list[dict[str, Any]]:
    """
    Load an ABI from a compilation artifact.

    Args:
        path: Path to a Hardhat/Foundry artifact or a bare ABI JSON file

    Returns:
        ABI as a list of dicts

    Raises:
        FileNotFoundError: If the artifact does not exist
        ValueError: If the file carries no ABI list
    """
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise FileNotFoundError(f"ABI artifact not found: {resolved}")
    return [json.loads(entry) for entry in _load_artifact(str(resolved))]


def _canonical_type(param: dict[str, Any]) -> str:
    typ = param["type"]
    if typ.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def find_function(abi: Sequence[dict[str, Any]], function_name: str) -> dict[str, Any]:
    for entry in abi:
        if entry.get("type") == "function" and entry.get("name") == function_name:
            return entry
    raise ValueError(f"Function {function_name} not found in ABI")


def find_event(abi: Sequence[dict[str, Any]], event_name: str) -> dict[str, Any]:
    for entry in abi:
        if entry.get("type") == "event" and entry.get("name") == event_name:
            return entry
    raise ValueError(f"Event {event_name} not found in ABI")


def input_types(entry: dict[str, Any]) -> list[str]:
    return [_canonical_type(inp) for inp in entry.get("inputs", [])]


def signature(entry: dict[str, Any]) -> str:
    """Canonical signature, e.g. ``createTribe(string,string,address[])``."""
    return f"{entry['name']}({','.join(input_types(entry))})"


def function_selector(entry: dict[str, Any]) -> bytes:
    return keccak256(signature(entry).encode("utf-8"))[:4]


def event_topic(entry: dict[str, Any]) -> str:
    return "0x" + keccak256(signature(entry).encode("utf-8")).hex()


def encode_call(abi: Sequence[dict[str, Any]], function_name: str, args: Sequence[Any]) -> str:
    """
    ABI-encode a function call.

    Args:
        abi: Contract ABI
        function_name: Function name to call
        args: Function arguments, in ABI order

    Returns:
        0x-prefixed hex encoded calldata
    """
    func = find_function(abi, function_name)
    types = input_types(func)
    if len(types) != len(args):
        raise ValueError(
            f"{function_name} expects {len(types)} arguments, got {len(args)}"
        )

    encoded_args = encode(types, list(args)) if args else b""
    return "0x" + function_selector(func).hex() + encoded_args.hex()


def _hex_to_bytes(data: str) -> bytes:
    return bytes.fromhex(data[2:]) if data.startswith("0x") else bytes.fromhex(data)


def decode_result(abi: Sequence[dict[str, Any]], function_name: str, data: str) -> Any:
    """
    ABI-decode a function call result.

    Args:
        abi: Contract ABI
        function_name: Function name
        data: 0x-prefixed hex encoded return data

    Returns:
        Decoded result (single value or tuple), None for functions without
        outputs
    """
    func = find_function(abi, function_name)
    output_types = [_canonical_type(out) for out in func.get("outputs", [])]
    if not output_types:
        return None

    decoded = decode(output_types, _hex_to_bytes(data))
    if len(decoded) == 1:
        return decoded[0]
    return decoded


def decode_event_log(event: dict[str, Any], log: dict[str, Any]) -> dict[str, Any]:
    """
    Decode a receipt log entry against an event ABI entry.

    Indexed dynamic types (strings, bytes, arrays) are stored by the EVM as
    their Keccak hash; those come back as the raw 32-byte topic.

    Returns:
        Dict mapping argument name (or positional index as string when the
        ABI leaves it unnamed) to decoded value, in declaration order
    """
    topics = list(log.get("topics", []))[1:]
    inputs = event.get("inputs", [])

    indexed = [inp for inp in inputs if inp.get("indexed")]
    if len(topics) != len(indexed):
        raise ValueError(
            f"Log has {len(topics)} indexed topics, event {event['name']} declares {len(indexed)}"
        )

    plain = [inp for inp in inputs if not inp.get("indexed")]
    plain_values = decode(
        [_canonical_type(inp) for inp in plain], _hex_to_bytes(log.get("data", "0x"))
    ) if plain else ()

    topic_iter = iter(topics)
    plain_iter = iter(plain_values)
    result: dict[str, Any] = {}
    for position, inp in enumerate(inputs):
        key = inp.get("name") or str(position)
        if inp.get("indexed"):
            raw = _hex_to_bytes(next(topic_iter))
            typ = _canonical_type(inp)
            if typ in ("string", "bytes") or typ.endswith("]") or typ.startswith("("):
                result[key] = raw
            else:
                (result[key],) = decode([typ], raw)
        else:
            result[key] = next(plain_iter)
    return result


def find_event_log(
    logs: Sequence[dict[str, Any]],
    event: dict[str, Any],
    address: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    """Return the first log matching the event topic (and emitter, if given)."""
    topic = event_topic(event)
    for log in logs:
        topics = log.get("topics") or []
        if not topics or str(topics[0]).lower() != topic:
            continue
        if address and str(log.get("address", "")).lower() != address.lower():
            continue
        return log
    return None


def select_fields(args: dict[str, Any], fields: Sequence[FieldRef]) -> Any:
    """
    Pick declared fields out of decoded event arguments.

    No fields gives all arguments as a dict, one field gives that value and
    several give a tuple in the declared order. Integer refs address arguments by position.
    """
    if not fields:
        return args

    values = list(args.values())
    picked = []
    for ref in fields:
        if isinstance(ref, int):
            picked.append(values[ref])
        else:
            picked.append(args[ref])
    if len(picked) == 1:
        return picked[0]
    return tuple(picked)
