"""
Unit tests for the WatcherCoordinator.

Tests:
- One crawler per program, each with its own cursor
- A fatally failed or crashed crawler does not stop the others
- Metrics reporting
"""

import asyncio
import logging

import pytest

from lpwatch.config import BackoffConfig, CrawlerConfig, WatcherConfig
from lpwatch.coordinator import WatcherCoordinator
from lpwatch.dlmm import DLMM_PROGRAM_ID
from lpwatch.metrics import CrawlerMetrics, MetricsReporter
from lpwatch.pipeline import MemoryCursorStore
from lpwatch.transport import MockTransport
from lpwatch.types import Position

from builders import (
    WATCHED_WALLET,
    RecordingSink,
    add_liquidity_data,
    address,
    irrelevant_tx,
    make_tx,
)


UNKNOWN_PROGRAM = address(60)


async def fast_sleep(seconds):
    await asyncio.sleep(0)


async def wait_until(condition, rounds=500):
    for _ in range(rounds):
        if condition():
            return True
        await asyncio.sleep(0)
    return condition()


def make_config(program_ids, max_permanent_retries=5):
    return WatcherConfig(
        program_ids=list(program_ids),
        lp_wallets=[WATCHED_WALLET],
        cursor_backend="memory",
        metrics_flush_interval=60.0,
        crawler=CrawlerConfig(
            start_from="genesis",
            backoff=BackoffConfig(max_permanent_retries=max_permanent_retries),
        ),
    ).validate()


@pytest.fixture
def transport():
    transport = MockTransport()
    transport.add_transactions(DLMM_PROGRAM_ID, [
        irrelevant_tx(1, 100),
        make_tx(2, 101, [add_liquidity_data()]),
    ])
    return transport


class TestCoordinator:

    @pytest.mark.asyncio
    async def test_crawlers_per_program(self, transport):
        config = make_config([DLMM_PROGRAM_ID, UNKNOWN_PROGRAM])
        coordinator = WatcherCoordinator(
            config, transport, RecordingSink(), MemoryCursorStore(), sleep=fast_sleep
        )

        assert set(coordinator.crawlers) == {DLMM_PROGRAM_ID, UNKNOWN_PROGRAM}
        windows = {id(c.dispatcher.window) for c in coordinator.crawlers.values()}
        assert len(windows) == 2
        assert [m.program_id for m in coordinator.metrics()] == [DLMM_PROGRAM_ID, UNKNOWN_PROGRAM]

    @pytest.mark.asyncio
    async def test_failed_crawler_isolated(self, transport):
        config = make_config([DLMM_PROGRAM_ID, UNKNOWN_PROGRAM], max_permanent_retries=1)
        sink = RecordingSink()
        store = MemoryCursorStore()
        coordinator = WatcherCoordinator(config, transport, sink, store, sleep=fast_sleep)

        task = asyncio.create_task(coordinator.run())
        assert await wait_until(lambda: coordinator.failed_programs and sink.matches)

        # The healthy crawler keeps polling after its neighbour failed
        transport.add_transactions(DLMM_PROGRAM_ID, [make_tx(3, 102, [add_liquidity_data(7, 7)])])
        assert await wait_until(lambda: len(sink.matches) == 2)

        coordinator.stop()
        result = await asyncio.wait_for(task, timeout=5)

        assert result is False
        assert coordinator.failed_programs == [UNKNOWN_PROGRAM]
        assert store.load(DLMM_PROGRAM_ID) == Position(102, "sig0003")
        assert store.load(UNKNOWN_PROGRAM) is None

    @pytest.mark.asyncio
    async def test_clean_stop(self, transport):
        config = make_config([DLMM_PROGRAM_ID])
        sink = RecordingSink()
        coordinator = WatcherCoordinator(config, transport, sink, MemoryCursorStore(), sleep=fast_sleep)

        task = asyncio.create_task(coordinator.run())
        assert await wait_until(lambda: sink.matches)
        coordinator.stop()

        assert await asyncio.wait_for(task, timeout=5) is True
        assert coordinator.failed_programs == []
        assert coordinator.metrics()[0].events_dispatched == 1


class BrokenProgramTransport(MockTransport):
    """Raises a non-transport error for one program."""

    def __init__(self, broken_program):
        super().__init__()
        self.broken_program = broken_program

    async def get_newest_position(self, program_id):
        if program_id == self.broken_program:
            raise KeyError("transaction")
        return await super().get_newest_position(program_id)


class TestUnexpectedCrawlerError:

    @pytest.mark.asyncio
    async def test_other_crawlers_keep_running(self):
        transport = BrokenProgramTransport(UNKNOWN_PROGRAM)
        transport.add_transactions(DLMM_PROGRAM_ID, [make_tx(1, 100, [add_liquidity_data()])])
        sink = RecordingSink()
        coordinator = WatcherCoordinator(
            make_config([DLMM_PROGRAM_ID, UNKNOWN_PROGRAM]), transport, sink,
            MemoryCursorStore(), sleep=fast_sleep
        )

        task = asyncio.create_task(coordinator.run())
        assert await wait_until(lambda: coordinator.failed_programs and sink.matches)
        assert not task.done()

        transport.add_transactions(DLMM_PROGRAM_ID, [make_tx(2, 101, [add_liquidity_data(7, 7)])])
        assert await wait_until(lambda: len(sink.matches) == 2)

        coordinator.stop()
        assert await asyncio.wait_for(task, timeout=5) is False
        assert coordinator.failed_programs == [UNKNOWN_PROGRAM]
        assert coordinator.crawlers[UNKNOWN_PROGRAM].state.value == "FAILED"
        assert coordinator.crawlers[DLMM_PROGRAM_ID].state.value == "STOPPED"


class TestMetricsReporter:

    def test_flush_logs_each_crawler(self, caplog):
        metrics = [CrawlerMetrics(program_id=DLMM_PROGRAM_ID, cycles=3, events_dispatched=2)]
        reporter = MetricsReporter(lambda: metrics, interval=1.0)

        with caplog.at_level(logging.INFO, logger="Metrics"):
            reporter.flush()

        assert "cycles=3" in caplog.text
        assert "dispatched=2" in caplog.text

    @pytest.mark.asyncio
    async def test_run_flushes_on_stop(self, caplog):
        reporter = MetricsReporter(lambda: [CrawlerMetrics(program_id="prog")], interval=60.0)

        with caplog.at_level(logging.INFO, logger="Metrics"):
            task = asyncio.create_task(reporter.run())
            await asyncio.sleep(0)
            reporter.stop()
            await asyncio.wait_for(task, timeout=1)

        assert "state=IDLE" in caplog.text

    def test_to_dict(self):
        data = CrawlerMetrics(program_id="prog", backoff_seconds=1.234).to_dict()
        assert data["backoff_seconds"] == 1.23
        assert data["state"] == "IDLE"
