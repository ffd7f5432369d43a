"""
Crawler Metrics

Dataclasses for tracking crawl progress and health, plus a reporter
that logs them at a fixed interval.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable


@dataclass
class CrawlerMetrics:
    """Metrics for one crawl loop."""

    program_id: str = ""
    state: str = "IDLE"

    # Crawl progress
    cycles: int = 0
    pages_fetched: int = 0
    transactions_seen: int = 0
    transactions_skipped: int = 0   # At/before cursor or failed on-chain
    cursor_slot: int = 0

    # Pipeline
    instructions_decoded: int = 0
    decode_mismatches: int = 0
    classification_failures: int = 0
    events_classified: int = 0
    events_matched: int = 0

    # Dispatch
    events_dispatched: int = 0
    duplicates_suppressed: int = 0
    sink_failures: int = 0

    # Transport
    transport_errors: int = 0
    backoff_seconds: float = 0.0

    # Timing
    start_time: float = field(default_factory=time.time)
    last_cycle_time: float = 0.0

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.start_time

    def to_dict(self) -> Dict:
        """Convert metrics to dictionary for JSON serialization."""
        return {
            "program_id": self.program_id,
            "state": self.state,
            "uptime_seconds": round(self.uptime_seconds, 1),
            "cycles": self.cycles,
            "pages_fetched": self.pages_fetched,
            "transactions_seen": self.transactions_seen,
            "transactions_skipped": self.transactions_skipped,
            "cursor_slot": self.cursor_slot,
            "instructions_decoded": self.instructions_decoded,
            "decode_mismatches": self.decode_mismatches,
            "classification_failures": self.classification_failures,
            "events_classified": self.events_classified,
            "events_matched": self.events_matched,
            "events_dispatched": self.events_dispatched,
            "duplicates_suppressed": self.duplicates_suppressed,
            "sink_failures": self.sink_failures,
            "transport_errors": self.transport_errors,
            "backoff_seconds": round(self.backoff_seconds, 2),
        }


class MetricsReporter:
    """
    Logs crawler metrics every `interval` seconds.

    Usage:
        reporter = MetricsReporter(lambda: [c.metrics for c in crawlers], 3.0)
        task = asyncio.create_task(reporter.run())
        ...
        reporter.stop()
    """

    def __init__(self, source, interval: float = 3.0):
        self._source = source
        self.interval = interval
        self._logger = logging.getLogger("Metrics")
        self._stop = asyncio.Event()

    def flush(self) -> None:
        metrics: Iterable[CrawlerMetrics] = self._source()
        for m in metrics:
            self._logger.info(
                f"[{m.program_id[:8]}] state={m.state} cycles={m.cycles} "
                f"pages={m.pages_fetched} txs={m.transactions_seen} "
                f"matched={m.events_matched} dispatched={m.events_dispatched} "
                f"dupes={m.duplicates_suppressed} decode_miss={m.decode_mismatches} "
                f"class_fail={m.classification_failures} sink_fail={m.sink_failures} "
                f"transport_err={m.transport_errors} cursor_slot={m.cursor_slot}"
            )

    async def run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                self.flush()
        self.flush()

    def stop(self) -> None:
        self._stop.set()
