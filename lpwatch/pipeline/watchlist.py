"""
Watchlist Matcher

Holds the configured LP wallet addresses and filters DomainEvents
against them. Addresses are normalized once at load time to their
canonical base58 form; matching is exact string equality.
"""

import json
import logging
from pathlib import Path
from typing import FrozenSet, Iterable, Optional

import base58

from ..errors import ConfigError
from ..types import DomainEvent, WatchlistMatch


ADDRESS_LENGTH = 32

_logger = logging.getLogger("Watchlist")


def normalize_address(address: str) -> str:
    """
    Canonical base58 form of a 32-byte address.

    Raises:
        ConfigError: not valid base58 or not 32 bytes.
    """
    text = (address or "").strip()
    try:
        raw = base58.b58decode(text)
    except ValueError as e:
        raise ConfigError(f"Invalid address '{address}': {e}")
    if len(raw) != ADDRESS_LENGTH:
        raise ConfigError(
            f"Invalid address '{address}': expected {ADDRESS_LENGTH} bytes, got {len(raw)}"
        )
    return base58.b58encode(raw).decode()


class Watchlist:
    """
    Immutable set of addresses of interest.

    Usage:
        watchlist = Watchlist.from_file("config.json")
        match = watchlist.match(event)  # None if no address intersects
    """

    def __init__(self, addresses: Iterable[str]):
        self._addresses: FrozenSet[str] = frozenset(normalize_address(a) for a in addresses)

    @classmethod
    def from_file(cls, path: str) -> "Watchlist":
        """Load `{"lp_wallets": [...]}` from a JSON file."""
        try:
            with open(Path(path), "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ConfigError(f"Watchlist file not found: {path}")
        except json.JSONDecodeError as e:
            raise ConfigError(f"Watchlist file {path} is not valid JSON: {e}")

        wallets = data.get("lp_wallets") if isinstance(data, dict) else None
        if not isinstance(wallets, list):
            raise ConfigError(f"Watchlist file {path} must contain an 'lp_wallets' list")

        watchlist = cls(wallets)
        _logger.info(f"Loaded {len(watchlist)} LP wallets from {path}")
        return watchlist

    @property
    def addresses(self) -> FrozenSet[str]:
        return self._addresses

    def __len__(self) -> int:
        return len(self._addresses)

    def __contains__(self, address: str) -> bool:
        return address in self._addresses

    def match(self, event: DomainEvent) -> Optional[WatchlistMatch]:
        """Return a WatchlistMatch if any involved address is watched."""
        matched = tuple(a for a in event.involved_addresses if a in self._addresses)
        if not matched:
            return None
        return WatchlistMatch(event=event, matched_addresses=matched)
