"""
Stateless pipeline stages and crawl state stores.

Components:
- EventClassifier: decoded DLMM variants -> DomainEvent
- Watchlist: DomainEvent -> WatchlistMatch
- CursorStore: per-program crawl position (memory / sqlite / json)
- Dispatcher + DedupWindow: effectively-once sink delivery
"""

from .classifier import EventClassifier, EventSource
from .cursor_store import (
    CursorStore,
    JsonCursorStore,
    MemoryCursorStore,
    SqliteCursorStore,
    create_cursor_store,
)
from .dispatcher import DedupWindow, Dispatcher, DispatchResult
from .watchlist import Watchlist, normalize_address

__all__ = [
    "EventClassifier",
    "EventSource",
    "CursorStore",
    "JsonCursorStore",
    "MemoryCursorStore",
    "SqliteCursorStore",
    "create_cursor_store",
    "DedupWindow",
    "Dispatcher",
    "DispatchResult",
    "Watchlist",
    "normalize_address",
]
