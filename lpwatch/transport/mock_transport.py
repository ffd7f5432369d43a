"""
Mock Transport

In-memory ledger that follows the Transport contract, for offline
development and tests.

- Transactions are appended per program in ascending order
- Pages re-deliver `overlap` transactions at/before the cursor to
  exercise at-least-once handling
- Failures can be queued and are raised by the next calls
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from ..errors import NotFound, TransportError
from ..types import Position, RawTransaction


@dataclass
class MockTransportStats:
    newest_calls: int = 0
    page_calls: int = 0
    failures_raised: int = 0
    pages_served: List[Tuple[str, ...]] = field(default_factory=list)


class MockTransport:
    """
    Usage:
        transport = MockTransport(overlap=1)
        transport.add_transactions(program_id, [tx1, tx2, tx3])
        transport.fail_with(RateLimited(), RateLimited())
        txs, next_cursor = await transport.get_page(program_id, None, 10)
    """

    def __init__(self, overlap: int = 0):
        self.overlap = overlap
        self._ledger: Dict[str, List[RawTransaction]] = defaultdict(list)
        self._failures: Deque[TransportError] = deque()
        self.stats = MockTransportStats()

    # =========================================================================
    # Ledger setup
    # =========================================================================

    def add_transactions(self, program_id: str, transactions: List[RawTransaction]) -> None:
        ledger = self._ledger[program_id]
        for tx in transactions:
            if ledger and tx.slot < ledger[-1].slot:
                raise ValueError(f"Transaction {tx.signature} at slot {tx.slot} is older than ledger tail")
            ledger.append(tx)

    def fail_with(self, *errors: TransportError) -> None:
        """Queue errors raised by the next Transport calls, one per call."""
        self._failures.extend(errors)

    def _maybe_fail(self) -> None:
        if self._failures:
            self.stats.failures_raised += 1
            raise self._failures.popleft()

    # =========================================================================
    # Transport contract
    # =========================================================================

    async def get_newest_position(self, program_id: str) -> Position:
        self.stats.newest_calls += 1
        self._maybe_fail()
        ledger = self._ledger.get(program_id)
        if not ledger:
            raise NotFound(f"No transactions for program {program_id}")
        return ledger[-1].position

    async def get_page(
        self,
        program_id: str,
        from_cursor: Optional[Position],
        page_size: int
    ) -> Tuple[List[RawTransaction], Optional[Position]]:
        self.stats.page_calls += 1
        self._maybe_fail()
        ledger = self._ledger.get(program_id)
        if ledger is None:
            raise NotFound(f"No transactions for program {program_id}")

        # A page always reaches at least one transaction past the cursor
        overlap = min(self.overlap, max(page_size - 1, 0))
        start = self._start_index(ledger, from_cursor, overlap)
        page = ledger[start:start + page_size]
        self.stats.pages_served.append(tuple(tx.signature for tx in page))
        next_cursor = page[-1].position if page else None
        return list(page), next_cursor

    def _start_index(self, ledger: List[RawTransaction], cursor: Optional[Position], overlap: int) -> int:
        if cursor is None:
            return 0
        for i, tx in enumerate(ledger):
            if tx.signature == cursor.signature:
                return max(0, i + 1 - overlap)
        # Cursor signature unknown here: resume after its slot
        for i, tx in enumerate(ledger):
            if tx.slot > cursor.slot:
                return max(0, i - overlap)
        return len(ledger)
