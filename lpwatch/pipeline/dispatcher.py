"""
Dispatcher and Dedup Window

Delivers WatchlistMatches to the sink at-least-once and collapses
re-deliveries of the same (signature, kind, instruction) through a
bounded dedup window.
"""

import logging
import time
from collections import OrderedDict
from enum import Enum
from typing import Callable, Hashable, Optional

from ..errors import SinkFailure
from ..types import WatchlistMatch


class DedupWindow:
    """
    Bounded set of recently dispatched keys.

    - O(1) membership
    - FIFO eviction by insertion order once max_entries is reached
    - Optional time horizon: keys older than ttl_seconds are dropped
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[Hashable, float]" = OrderedDict()
        self.evictions = 0

    def __contains__(self, key: Hashable) -> bool:
        self._expire()
        return key in self._entries

    def __len__(self) -> int:
        self._expire()
        return len(self._entries)

    def add(self, key: Hashable) -> None:
        if key in self._entries:
            return
        self._entries[key] = self._clock()
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.evictions += 1

    def _expire(self) -> None:
        if self.ttl_seconds is None:
            return
        cutoff = self._clock() - self.ttl_seconds
        while self._entries:
            key, inserted_at = next(iter(self._entries.items()))
            if inserted_at > cutoff:
                break
            self._entries.popitem(last=False)
            self.evictions += 1


class DispatchResult(Enum):
    DELIVERED = "delivered"
    DUPLICATE = "duplicate"


class Dispatcher:
    """
    Sink delivery with dedup.

    Usage:
        dispatcher = Dispatcher(sink, DedupWindow())
        result = await dispatcher.dispatch(match)
    """

    def __init__(self, sink, window: Optional[DedupWindow] = None):
        self._sink = sink
        self.window = window or DedupWindow()
        self._logger = logging.getLogger("Dispatcher")

        self.delivered = 0
        self.duplicates = 0
        self.failures = 0

    async def dispatch(self, match: WatchlistMatch) -> DispatchResult:
        """
        Deliver a match once.

        Raises:
            SinkFailure: sink rejected the delivery; the key is not recorded,
                so a later dispatch of the same match retries it.
        """
        key = match.dedup_key
        if key in self.window:
            self.duplicates += 1
            self._logger.debug(f"Suppressed duplicate {key[1]} in {key[0][:8]}... #{key[2]}")
            return DispatchResult.DUPLICATE

        try:
            await self._sink.emit(match)
        except SinkFailure:
            self.failures += 1
            raise
        except Exception as e:
            self.failures += 1
            raise SinkFailure(f"Sink rejected {key[1]} in {key[0][:8]}...: {e}") from e

        self.window.add(key)
        self.delivered += 1
        return DispatchResult.DELIVERED
