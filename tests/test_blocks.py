"""Tests for the block monitor and the polling new-block channel."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from astrix.anamnesis.cache import ResultCache
from astrix.pneuma.blocks import BlockMonitor
from astrix.pneuma.rpc import BlockSubscription, ChainConnection

from conftest import FakeNode


class TestStartStop:
    @pytest.mark.asyncio
    async def test_start_fetches_current_height(self, monitor: BlockMonitor) -> None:
        try:
            await monitor.start()
            assert monitor.height == 100
            assert monitor.is_live
            assert monitor.running
        finally:
            monitor.stop()

    @pytest.mark.asyncio
    async def test_failed_initial_fetch_starts_at_zero(
        self, node: FakeNode, monitor: BlockMonitor
    ) -> None:
        node.failures["eth_blockNumber"] = httpx.ConnectError("connection refused")
        try:
            await monitor.start()
            assert monitor.height == 0
            assert not monitor.is_live
            assert monitor.snapshot().last_updated is None
        finally:
            monitor.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, monitor: BlockMonitor) -> None:
        await monitor.start()
        monitor.stop()
        monitor.stop()
        assert not monitor.running

    @pytest.mark.asyncio
    async def test_polling_picks_up_new_blocks(
        self, node: FakeNode, monitor: BlockMonitor, cache: ResultCache
    ) -> None:
        try:
            await monitor.start()
            node.block_number = 105
            for _ in range(100):
                if monitor.height == 105:
                    break
                await asyncio.sleep(0.01)
            assert monitor.height == 105
            assert cache.current_height == 105
        finally:
            monitor.stop()

    @pytest.mark.asyncio
    async def test_polling_recovers_after_failures(
        self, node: FakeNode, monitor: BlockMonitor, cache: ResultCache
    ) -> None:
        try:
            await monitor.start()
            polls = node.calls["eth_blockNumber"]
            node.failures["eth_blockNumber"] = httpx.ConnectError("connection refused")
            for _ in range(100):
                if node.calls["eth_blockNumber"] >= polls + 2:
                    break
                await asyncio.sleep(0.01)
            assert monitor.running
            assert monitor.height == 100

            del node.failures["eth_blockNumber"]
            node.block_number = 120
            for _ in range(100):
                if monitor.height == 120:
                    break
                await asyncio.sleep(0.01)
            assert monitor.height == 120
            assert cache.current_height == 120
        finally:
            monitor.stop()

    @pytest.mark.asyncio
    async def test_aclose_waits_for_poller(
        self,
        connection: ChainConnection,
        monitor: BlockMonitor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        subscriptions: list[BlockSubscription] = []
        subscribe = connection.subscribe_blocks

        def recording_subscribe(*args, **kwargs) -> BlockSubscription:
            subscription = subscribe(*args, **kwargs)
            subscriptions.append(subscription)
            return subscription

        monkeypatch.setattr(connection, "subscribe_blocks", recording_subscribe)
        await monitor.start()
        assert subscriptions[0].active

        await monitor.aclose()
        assert not subscriptions[0].active
        assert not monitor.running

        # Idempotent once stopped
        await monitor.aclose()


class TestOnBlock:
    def test_cache_advances_before_listeners_run(
        self, monitor: BlockMonitor, cache: ResultCache
    ) -> None:
        seen = []
        monitor.add_listener(lambda height: seen.append((height, cache.current_height)))

        monitor.on_block(42)
        assert seen == [(42, 42)]

    def test_pinned_entries_dropped_on_new_block(
        self, monitor: BlockMonitor, cache: ResultCache
    ) -> None:
        monitor.on_block(50)
        cache.put("k", "v", pinned_height=50)

        monitor.on_block(51)
        assert cache.get("k") is None

    def test_same_height_only_refreshes_timestamp(self, monitor: BlockMonitor) -> None:
        seen = []
        monitor.add_listener(seen.append)

        monitor.on_block(10)
        monitor.on_block(10)
        assert seen == [10]
        assert monitor.is_live

    def test_failing_listener_does_not_block_others(self, monitor: BlockMonitor) -> None:
        def broken(height: int) -> None:
            raise RuntimeError("boom")

        seen = []
        monitor.add_listener(broken)
        monitor.add_listener(seen.append)

        monitor.on_block(11)
        assert seen == [11]
        assert monitor.height == 11

    def test_remove_listener(self, monitor: BlockMonitor) -> None:
        seen = []
        monitor.add_listener(seen.append)
        monitor.remove_listener(seen.append)
        monitor.remove_listener(seen.append)

        monitor.on_block(12)
        assert seen == []
