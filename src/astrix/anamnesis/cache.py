"""
Result Cache Module

Keyed in-memory storage for read results. Entries are invalidated by
wall-clock age, by block height, or explicitly by key and key prefix.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import rfc8785

DEFAULT_TTL_SECONDS = 30.0

# Largest integer RFC 8785 (I-JSON) represents exactly
_MAX_SAFE_INT = 2**53 - 1


def _jsonable(value: Any) -> Any:
    if isinstance(value, bool) or value is None or isinstance(value, (str, float)):
        return value
    if isinstance(value, int):
        return value if abs(value) <= _MAX_SAFE_INT else str(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)


def serialize_params(params: Sequence[Any]) -> str:
    """Canonical (RFC 8785) JSON for an ordered parameter list."""
    return rfc8785.dumps(_jsonable(list(params))).decode("utf-8")


def make_key(chain_id: int, operation_name: str, params: Sequence[Any]) -> str:
    """Build the ``{chain_id}:{operation}:{params}`` cache key."""
    return f"{chain_id}:{operation_name}:{serialize_params(params)}"


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float
    max_age: Optional[float] = None
    pinned_height: Optional[int] = None


@dataclass
class ResultCache:
    """
    Read-result cache owned by one SDK instance.

    An entry is usable iff its age is below ``max_age`` (when it has one) and
    its pinned height equals the current height (when it is pinned). The
    current height is pushed in by the block monitor through ``advance_to``.

    Concurrent misses for the same key are not collapsed: callers racing on
    a cold key each hit the node once.
    """

    default_ttl: float = DEFAULT_TTL_SECONDS
    clock: Callable[[], float] = time.time
    _entries: dict[str, CacheEntry] = field(default_factory=dict, init=False, repr=False)
    _current_height: int = field(default=0, init=False)
    _hits: int = field(default=0, init=False)
    _misses: int = field(default=0, init=False)

    @property
    def current_height(self) -> int:
        return self._current_height

    def _is_valid(self, entry: CacheEntry) -> bool:
        if entry.max_age is not None and self.clock() - entry.stored_at >= entry.max_age:
            return False
        if entry.pinned_height is not None and entry.pinned_height != self._current_height:
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a cached value.

        Returns:
            The cached value if valid, ``default`` if expired or not found
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return default

        if not self._is_valid(entry):
            # Lazy eviction; pop keeps a concurrent put of a fresh entry intact
            if self._entries.get(key) is entry:
                self._entries.pop(key, None)
            self._misses += 1
            return default

        self._hits += 1
        return entry.value

    def put(
        self,
        key: str,
        value: Any,
        max_age: Optional[float] = None,
        pinned_height: Optional[int] = None,
    ) -> CacheEntry:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to store (treated as immutable)
            max_age: Seconds the entry stays valid. Unpinned entries fall back
                     to ``default_ttl``; pinned entries have no age limit
                     unless one is given.
            pinned_height: Block height the value was read at
        """
        if max_age is None and pinned_height is None:
            max_age = self.default_ttl
        entry = CacheEntry(
            value=value,
            stored_at=self.clock(),
            max_age=max_age,
            pinned_height=pinned_height,
        )
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``. Returns the count."""
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            self._entries.pop(key, None)
        return len(doomed)

    def advance_to(self, height: int) -> int:
        """
        Record a new chain head and drop entries pinned below it.

        Entries pinned to ``height`` itself stay valid.

        Returns:
            Number of entries dropped
        """
        self._current_height = height
        doomed = [
            key
            for key, entry in self._entries.items()
            if entry.pinned_height is not None and entry.pinned_height < height
        ]
        for key in doomed:
            self._entries.pop(key, None)
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "height": self._current_height,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._is_valid(entry)
