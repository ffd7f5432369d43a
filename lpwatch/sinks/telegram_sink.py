"""
Telegram Sink

Posts each match to a Telegram group through the Bot API sendMessage
method. Token X / token Y are labelled with their Metaplex symbols when a
TokenMetadataResolver is configured; lookups that fail leave the mint
address in place.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from ..errors import SinkFailure
from ..types import WatchlistMatch
from .formatting import format_match
from .token_metadata import TokenMetadataResolver


TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramSink:
    """
    Usage:
        sink = TelegramSink(bot_token, group_id, resolver)
        await sink.start()
        await sink.emit(match)
        await sink.stop()
    """

    def __init__(
        self,
        bot_token: str,
        group_id: int,
        resolver: Optional[TokenMetadataResolver] = None,
        request_timeout: float = 10.0,
        api_url: str = TELEGRAM_API_URL
    ):
        self.bot_token = bot_token
        self.group_id = group_id
        self.resolver = resolver
        self.request_timeout = request_timeout
        self.api_url = api_url
        self._session: Optional[aiohttp.ClientSession] = None
        self._logger = logging.getLogger("TelegramSink")

        self.messages_sent = 0

    async def start(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )

    async def stop(self):
        if self._session:
            await self._session.close()
            self._session = None

    async def render(self, match: WatchlistMatch) -> str:
        symbol_x = symbol_y = None
        if self.resolver is not None:
            payload = match.event.payload
            symbol_x = await self.resolver.symbol(payload.token_x_mint)
            symbol_y = await self.resolver.symbol(payload.token_y_mint)
        return format_match(match, symbol_x, symbol_y)

    async def emit(self, match: WatchlistMatch) -> None:
        """
        Raises:
            SinkFailure: Telegram rejected the message or could not be reached.
        """
        await self.send_message(await self.render(match))

    async def send_message(self, text: str) -> None:
        if self._session is None:
            await self.start()

        url = f"{self.api_url}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": self.group_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        try:
            async with self._session.post(url, json=payload) as resp:
                data = await resp.json(content_type=None)
                if not isinstance(data, dict):
                    data = {}
                if resp.status != 200 or not data.get("ok"):
                    description = data.get("description", "")
                    raise SinkFailure(f"sendMessage failed: HTTP {resp.status} {description}")
        except asyncio.TimeoutError:
            raise SinkFailure("sendMessage timed out")
        except (aiohttp.ClientError, ValueError) as e:
            raise SinkFailure(f"sendMessage error: {e}")

        self.messages_sent += 1
        self._logger.debug(f"Sent message to group {self.group_id}")
