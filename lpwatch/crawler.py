"""
Crawler

One crawl loop per tracked program:

    IDLE -> POLLING -> PAGING -> ADVANCING -> IDLE
      any state --(transport failure)--> BACKOFF -> POLLING

Each transaction is handled in order. Every instruction goes through
Decoder -> Classifier -> Watchlist, and every match is dispatched before the
next transaction starts. The cursor advances only after a page has been
fully dispatched, so a crash mid-page re-fetches that page and the
DedupWindow collapses what was already delivered.

Stop requests are honored while idle, while polling and between
transactions.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from .config import CrawlerConfig
from .decoding import DecoderRegistry, decode_instruction
from .errors import (
    ClassificationInconsistency,
    CrawlerFatalError,
    CursorOrderingViolation,
    RateLimited,
    SinkFailure,
    TransportError,
)
from .metrics import CrawlerMetrics
from .pipeline.classifier import EventClassifier
from .pipeline.cursor_store import CursorStore
from .pipeline.dispatcher import Dispatcher, DispatchResult
from .pipeline.watchlist import Watchlist
from .types import Position, RawTransaction


class CrawlerState(Enum):
    IDLE = "IDLE"
    POLLING = "POLLING"
    PAGING = "PAGING"
    ADVANCING = "ADVANCING"
    BACKOFF = "BACKOFF"
    STOPPED = "STOPPED"
    FAILED = "FAILED"


SleepFn = Callable[[float], Awaitable[None]]


class Crawler:
    """
    Crawl loop for a single program.

    Usage:
        crawler = Crawler(program_id, transport, decoders, classifier,
                          watchlist, dispatcher, cursor_store, CrawlerConfig())
        task = asyncio.create_task(crawler.run())
        ...
        crawler.stop()
        await task
    """

    def __init__(
        self,
        program_id: str,
        transport,
        decoders: DecoderRegistry,
        classifier: EventClassifier,
        watchlist: Watchlist,
        dispatcher: Dispatcher,
        cursor_store: CursorStore,
        config: Optional[CrawlerConfig] = None,
        metrics: Optional[CrawlerMetrics] = None,
        sleep: Optional[SleepFn] = None
    ):
        self.program_id = program_id
        self.transport = transport
        self.decoders = decoders
        self.classifier = classifier
        self.watchlist = watchlist
        self.dispatcher = dispatcher
        self.cursor_store = cursor_store
        self.config = config or CrawlerConfig()
        self.metrics = metrics or CrawlerMetrics(program_id=program_id)

        # Injected sleep replaces the interruptible idle wait (tests)
        self._sleep = sleep
        self._stop_event = asyncio.Event()
        self._stop_requested = False

        self._logger = logging.getLogger("Crawler")
        self._tag = f"[{program_id[:8]}]"
        self.state = CrawlerState.IDLE

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def stop(self) -> None:
        """Request a stop. Takes effect at the next stop point."""
        self._stop_requested = True
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def _set_state(self, state: CrawlerState) -> None:
        if state is not self.state:
            self._logger.debug(f"{self._tag} {self.state.value} -> {state.value}")
        self.state = state
        self.metrics.state = state.value

    async def _wait(self, seconds: float) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """
        Run until stopped.

        Raises:
            CrawlerFatalError: permanent transport failures exhausted their
                retries, or the cursor would have moved backward.
        """
        backoff = self.config.backoff
        transient_attempts = 0
        permanent_attempts = 0

        self._logger.info(f"{self._tag} Crawler started for {self.program_id}")
        try:
            while not self._stop_requested:
                try:
                    await self.run_cycle()
                    transient_attempts = 0
                    permanent_attempts = 0

                except TransportError as e:
                    self.metrics.transport_errors += 1
                    if e.transient:
                        transient_attempts += 1
                        attempt = transient_attempts
                        limit = backoff.max_transient_retries
                    else:
                        permanent_attempts += 1
                        attempt = permanent_attempts
                        limit = backoff.max_permanent_retries
                    if limit is not None and attempt > limit:
                        raise CrawlerFatalError(
                            self.program_id,
                            f"giving up after {attempt - 1} retries: {type(e).__name__}: {e}"
                        ) from e

                    delay = backoff.delay_for(attempt)
                    if isinstance(e, RateLimited) and e.retry_after:
                        delay = max(delay, e.retry_after)
                    self._logger.warning(
                        f"{self._tag} {type(e).__name__}: {e} "
                        f"(attempt {attempt}, retrying in {delay:.1f}s)"
                    )
                    self._set_state(CrawlerState.BACKOFF)
                    self.metrics.backoff_seconds += delay
                    await self._wait(delay)
                    continue

                except SinkFailure as e:
                    self.metrics.sink_failures += 1
                    self._logger.warning(
                        f"{self._tag} Sink failure, cursor held for replay: {e}"
                    )

                except CursorOrderingViolation as e:
                    raise CrawlerFatalError(self.program_id, str(e)) from e

                if self._stop_requested:
                    break
                self._set_state(CrawlerState.IDLE)
                await self._wait(self.config.poll_interval)

        except CrawlerFatalError as e:
            self._set_state(CrawlerState.FAILED)
            self._logger.error(f"{self._tag} Crawler stopped: {e}")
            raise
        except Exception:
            self._set_state(CrawlerState.FAILED)
            raise

        self._set_state(CrawlerState.STOPPED)
        self._logger.info(f"{self._tag} Crawler stopped")

    # =========================================================================
    # Crawl cycle
    # =========================================================================

    async def run_cycle(self) -> int:
        """
        Poll once and page until caught up with the newest position.

        Returns:
            Number of transactions processed.
        """
        self.metrics.cycles += 1
        self.metrics.last_cycle_time = time.time()

        self._set_state(CrawlerState.POLLING)
        cursor = self.cursor_store.load(self.program_id)
        newest = await self.transport.get_newest_position(self.program_id)

        if cursor is None:
            if self.config.start_from == "latest":
                self.cursor_store.advance(self.program_id, newest)
                self.metrics.cursor_slot = newest.slot
                self._logger.info(
                    f"{self._tag} No cursor, tailing from newest slot {newest.slot}"
                )
                return 0
            self._logger.info(f"{self._tag} No cursor, backfilling from oldest available history")
        elif newest.same_point(cursor) or newest.precedes(cursor):
            return 0

        processed = 0
        while not self._stop_requested:
            self._set_state(CrawlerState.PAGING)
            transactions, _ = await self.transport.get_page(
                self.program_id, cursor, self.config.page_size
            )
            self.metrics.pages_fetched += 1

            fresh = self._after_cursor(transactions, cursor)
            self.metrics.transactions_seen += len(transactions) - len(fresh)
            self.metrics.transactions_skipped += len(transactions) - len(fresh)

            last_handled: Optional[Position] = None
            for tx in fresh:
                if self._stop_requested:
                    break
                self.metrics.transactions_seen += 1

                if tx.failed and not self.config.include_failed:
                    self.metrics.transactions_skipped += 1
                    last_handled = tx.position
                    continue

                await self.process_transaction(tx)
                processed += 1
                last_handled = tx.position

            if last_handled is None:
                if transactions and not fresh:
                    self._logger.warning(
                        f"{self._tag} Page of {len(transactions)} ended at or before the cursor "
                        f"({cursor.signature[:16]}...), waiting for the next poll"
                    )
                break

            self._set_state(CrawlerState.ADVANCING)
            self.cursor_store.advance(self.program_id, last_handled)
            cursor = last_handled
            self.metrics.cursor_slot = cursor.slot

            if len(transactions) < self.config.page_size or cursor.same_point(newest):
                break

        return processed

    @staticmethod
    def _after_cursor(transactions, cursor: Optional[Position]) -> list:
        """
        Transactions of an ascending page that lie strictly after the cursor.

        Slots are not unique, so when the cursor's own transaction is in the
        page everything up to and including it is dropped, same-slot
        neighbours included. Otherwise only older slots are dropped.
        """
        if cursor is None:
            return list(transactions)
        for i, tx in enumerate(transactions):
            if tx.signature == cursor.signature:
                return list(transactions[i + 1:])
        return [tx for tx in transactions if not tx.position.precedes(cursor)]

    async def process_transaction(self, tx: RawTransaction) -> int:
        """
        Decode, classify, filter and dispatch every instruction of a
        transaction, in instruction order.

        Returns:
            Number of matches delivered (duplicates excluded).

        Raises:
            SinkFailure: a match could not be delivered.
        """
        delivered = 0
        for instruction in tx.instructions:
            decoded = decode_instruction(instruction, self.decoders)
            if decoded is None:
                if instruction.program_id in self.decoders:
                    self.metrics.decode_mismatches += 1
                continue
            self.metrics.instructions_decoded += 1

            try:
                event = self.classifier.classify(decoded, instruction, tx)
            except ClassificationInconsistency as e:
                self.metrics.classification_failures += 1
                self._logger.warning(
                    f"{self._tag} Skipping instruction #{instruction.index} of "
                    f"{tx.signature[:16]}...: {e}"
                )
                continue
            if event is None:
                continue
            self.metrics.events_classified += 1

            match = self.watchlist.match(event)
            if match is None:
                continue
            self.metrics.events_matched += 1

            result = await self.dispatcher.dispatch(match)
            if result is DispatchResult.DUPLICATE:
                self.metrics.duplicates_suppressed += 1
            else:
                self.metrics.events_dispatched += 1
                delivered += 1
        return delivered
