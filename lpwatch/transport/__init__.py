"""
Ledger Transport

Contract consumed by the Crawler:
- get_newest_position(program_id) -> Position
- get_page(program_id, from_cursor, page_size) -> (transactions ascending, next_cursor)

Pages may overlap across calls (at-least-once delivery). Failures surface as
TransportTimeout, RateLimited, TransportUnavailable (transient) or NotFound
(permanent).

Implementations:
- SolanaRpcTransport: JSON-RPC over aiohttp
- MockTransport: in-memory ledger for tests and offline runs
"""

from abc import abstractmethod
from typing import List, Optional, Protocol, Tuple

from ..types import Position, RawTransaction

from .mock_transport import MockTransport
from .rpc_transport import SolanaRpcTransport, classify_rpc_error, parse_transaction


Page = Tuple[List[RawTransaction], Optional[Position]]


class Transport(Protocol):

    @abstractmethod
    async def get_newest_position(self, program_id: str) -> Position:
        ...

    @abstractmethod
    async def get_page(
        self,
        program_id: str,
        from_cursor: Optional[Position],
        page_size: int
    ) -> Page:
        ...


__all__ = [
    "Page",
    "Transport",
    "MockTransport",
    "SolanaRpcTransport",
    "classify_rpc_error",
    "parse_transaction",
]
