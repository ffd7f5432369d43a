"""
Match sinks.

A sink exposes `async emit(match)`, may be called again for a match it
already received, and raises SinkFailure when delivery fails.

Components:
- LogSink: match details through logging
- TelegramSink: Bot API sendMessage to a group
- CompositeSink: fan-out to several sinks in order
- TokenMetadataResolver: Metaplex name/symbol lookups for message labels
"""

from abc import abstractmethod
from typing import List, Protocol

from ..types import WatchlistMatch

from .formatting import format_match
from .log_sink import LogSink
from .telegram_sink import TelegramSink
from .token_metadata import (
    METADATA_PROGRAM_ID,
    TokenMetadata,
    TokenMetadataResolver,
    metadata_pda,
    parse_metadata,
)


class Sink(Protocol):

    @abstractmethod
    async def emit(self, match: WatchlistMatch) -> None:
        ...


class CompositeSink:
    """
    Emits to every sink in order; the first failure fails the emit.

    A failed emit is replayed from the start, so sinks before the failing
    one see the match again. Put sinks that can fail first.
    """

    def __init__(self, sinks: List[Sink]):
        self.sinks = list(sinks)

    async def emit(self, match: WatchlistMatch) -> None:
        for sink in self.sinks:
            await sink.emit(match)


__all__ = [
    "Sink",
    "CompositeSink",
    "LogSink",
    "TelegramSink",
    "TokenMetadata",
    "TokenMetadataResolver",
    "METADATA_PROGRAM_ID",
    "format_match",
    "metadata_pda",
    "parse_metadata",
]
