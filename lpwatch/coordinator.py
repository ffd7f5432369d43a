"""
Watcher Coordinator

Runs one Crawler per tracked program as concurrent asyncio tasks.

Shared: Transport, sink, cursor store (one record per program), watchlist.
Per crawler: DedupWindow, Dispatcher, CrawlerMetrics.

A crawler that stops fatally is logged and recorded; the others keep
running until stop() is called.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .config import WatcherConfig
from .crawler import Crawler, SleepFn
from .decoding import DecoderRegistry
from .dlmm.decoder import MeteoraDlmmDecoder
from .errors import CrawlerFatalError
from .metrics import CrawlerMetrics, MetricsReporter
from .pipeline.classifier import EventClassifier
from .pipeline.cursor_store import CursorStore
from .pipeline.dispatcher import DedupWindow, Dispatcher
from .pipeline.watchlist import Watchlist


class WatcherCoordinator:
    """
    Usage:
        coordinator = WatcherCoordinator(config, transport, sink, cursor_store)
        task = asyncio.create_task(coordinator.run())
        ...
        coordinator.stop()
        await task
        if coordinator.failed_programs: ...
    """

    def __init__(
        self,
        config: WatcherConfig,
        transport,
        sink,
        cursor_store: CursorStore,
        watchlist: Optional[Watchlist] = None,
        decoders: Optional[Dict[str, DecoderRegistry]] = None,
        sleep: Optional[SleepFn] = None
    ):
        self.config = config
        self.transport = transport
        self.sink = sink
        self.cursor_store = cursor_store
        self.watchlist = watchlist or Watchlist(config.lp_wallets)
        self._logger = logging.getLogger("WatcherCoordinator")

        classifier = EventClassifier(config.crawler.event_source)
        self.crawlers: Dict[str, Crawler] = {}
        for program_id in config.program_ids:
            registry = (decoders or {}).get(program_id) or {
                program_id: MeteoraDlmmDecoder(program_id)
            }
            window = DedupWindow(
                max_entries=config.crawler.dedup.max_entries,
                ttl_seconds=config.crawler.dedup.ttl_seconds,
            )
            self.crawlers[program_id] = Crawler(
                program_id=program_id,
                transport=transport,
                decoders=registry,
                classifier=classifier,
                watchlist=self.watchlist,
                dispatcher=Dispatcher(sink, window),
                cursor_store=cursor_store,
                config=config.crawler,
                metrics=CrawlerMetrics(program_id=program_id),
                sleep=sleep,
            )

        self.reporter = MetricsReporter(self.metrics, config.metrics_flush_interval)
        self.failed_programs: List[str] = []

    def metrics(self) -> List[CrawlerMetrics]:
        return [c.metrics for c in self.crawlers.values()]

    async def _run_crawler(self, crawler: Crawler) -> bool:
        try:
            await crawler.run()
            return True
        except CrawlerFatalError as e:
            self.failed_programs.append(crawler.program_id)
            self._logger.error(f"Crawler for {crawler.program_id} failed: {e}")
            return False
        except Exception as e:
            self.failed_programs.append(crawler.program_id)
            self._logger.error(
                f"Crawler for {crawler.program_id} crashed: {type(e).__name__}: {e}",
                exc_info=True
            )
            return False

    async def run(self) -> bool:
        """
        Run every crawler until stopped or failed.

        Returns:
            True if no crawler stopped fatally.
        """
        self._logger.info(
            f"Watching {len(self.crawlers)} program(s) for "
            f"{len(self.watchlist)} LP wallet(s)"
        )
        reporter_task = asyncio.create_task(self.reporter.run())
        try:
            results = await asyncio.gather(
                *[self._run_crawler(c) for c in self.crawlers.values()]
            )
        finally:
            self.reporter.stop()
            await reporter_task
        return all(results)

    def stop(self) -> None:
        self._logger.info("Stopping crawlers")
        for crawler in self.crawlers.values():
            crawler.stop()
