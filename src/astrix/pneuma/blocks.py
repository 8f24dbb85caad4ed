"""
Block Monitor - tracks the chain head and drives block-pinned cache eviction.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..anamnesis.cache import ResultCache
from .rpc import BlockSubscription, ChainConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockSnapshot:
    height: int
    last_updated: Optional[float]
    running: bool

    @property
    def is_live(self) -> bool:
        return self.last_updated is not None


class BlockMonitor:
    """
    Keeps the current block height for one chain connection.

    Each new height is pushed into the result cache before listeners are
    notified, so block-pinned entries older than the head are gone by the
    time anyone reacts to the block.
    """

    def __init__(
        self,
        connection: ChainConnection,
        cache: ResultCache,
        poll_interval: float = 4.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._connection = connection
        self._cache = cache
        self._poll_interval = poll_interval
        self._clock = clock
        self._height = 0
        self._last_updated: Optional[float] = None
        self._subscription: Optional[BlockSubscription] = None
        self._listeners: list[Callable[[int], None]] = []

    @property
    def height(self) -> int:
        return self._height

    @property
    def last_updated(self) -> Optional[float]:
        return self._last_updated

    @property
    def is_live(self) -> bool:
        """True once at least one height has been observed."""
        return self._last_updated is not None

    @property
    def running(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def snapshot(self) -> BlockSnapshot:
        return BlockSnapshot(self._height, self._last_updated, self.running)

    def add_listener(self, listener: Callable[[int], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[int], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def start(self) -> None:
        """
        Subscribe to new blocks, then fetch the current height once.

        A failed initial fetch leaves the height at 0; it never raises.
        """
        if self._subscription is None:
            self._subscription = self._connection.subscribe_blocks(
                self.on_block,
                interval=self._poll_interval,
                on_error=self._on_poll_error,
            )

        try:
            height = await self._connection.block_number()
        except Exception as exc:
            logger.warning("Initial block height fetch failed, starting at 0: %s", exc)
            return
        self.on_block(height)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def aclose(self) -> None:
        """Stop and wait for the poller to finish, so the connection can be closed."""
        subscription = self._subscription
        self.stop()
        if subscription is not None:
            await subscription.wait_closed()

    def on_block(self, height: int) -> None:
        """Handle a new-block notification."""
        if self._last_updated is not None and height == self._height:
            self._last_updated = self._clock()
            return

        self._height = height
        self._last_updated = self._clock()
        dropped = self._cache.advance_to(height)
        if dropped:
            logger.debug("Block %d: dropped %d pinned cache entries", height, dropped)

        for listener in list(self._listeners):
            try:
                listener(height)
            except Exception:
                logger.exception("Block listener failed for block %d", height)

    def _on_poll_error(self, exc: BaseException) -> None:
        logger.warning("New-block notification failed: %s", exc)
