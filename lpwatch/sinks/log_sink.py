"""Sink that writes matches to the log."""

import logging

from ..types import WatchlistMatch
from .formatting import format_match


class LogSink:
    """
    Logs each match at INFO.

    Usage:
        sink = LogSink()
        await sink.emit(match)
    """

    def __init__(self, logger_name: str = "LpEvents"):
        self._logger = logging.getLogger(logger_name)
        self.emitted = 0

    async def emit(self, match: WatchlistMatch) -> None:
        self._logger.info(format_match(match).replace("\n", " | "))
        self.emitted += 1
