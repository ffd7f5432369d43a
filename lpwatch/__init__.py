"""
Meteora DLMM LP Watcher

Crawl -> decode -> classify -> filter -> dispatch pipeline over Solana
transaction history.

Components:
- transport/: ledger access (Solana JSON-RPC, in-memory mock)
- dlmm/: Meteora DLMM instruction and event-record decoder
- pipeline/: classifier, watchlist, cursor store, dispatcher
- crawler.py: per-program crawl loop state machine
- coordinator.py: concurrent crawlers, metrics reporting
- sinks/: log and Telegram delivery
"""

from .config import WatcherConfig, load_config
from .coordinator import WatcherCoordinator
from .crawler import Crawler, CrawlerState
from .types import (
    DomainEvent,
    EventKind,
    Position,
    RawInstruction,
    RawTransaction,
    WatchlistMatch,
)

__version__ = "0.1.0"

__all__ = [
    'Crawler',
    'CrawlerState',
    'WatcherConfig',
    'WatcherCoordinator',
    'load_config',
    'DomainEvent',
    'EventKind',
    'Position',
    'RawInstruction',
    'RawTransaction',
    'WatchlistMatch',
]
