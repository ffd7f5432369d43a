"""
Unit tests for match sinks.

Tests:
- Message formatting (add / remove, symbols, wallets, tx link)
- LogSink and CompositeSink delivery
- Sink order: Telegram before the log sink
- TelegramSink sendMessage against a local Bot API stand-in
"""

import logging
from contextlib import asynccontextmanager

import pytest
from aiohttp import web

from lpwatch.__main__ import build_sink
from lpwatch.config import TelegramConfig, WatcherConfig
from lpwatch.dlmm import MeteoraDlmmDecoder
from lpwatch.errors import SinkFailure
from lpwatch.pipeline import EventClassifier, Watchlist
from lpwatch.sinks import CompositeSink, LogSink, TelegramSink, format_match
from lpwatch.sinks.formatting import short

from builders import (
    LB_PAIR,
    MINT_X,
    WATCHED_WALLET,
    RecordingSink,
    add_liquidity_data,
    make_tx,
    remove_liquidity_data,
)


def make_match(payload_data):
    tx = make_tx(1, 4242, [payload_data])
    instruction = tx.instructions[0]
    event = EventClassifier().classify(MeteoraDlmmDecoder().decode(instruction), instruction, tx)
    return Watchlist([WATCHED_WALLET]).match(event)


class FakeResolver:
    def __init__(self, symbols):
        self.symbols = symbols

    async def symbol(self, mint):
        return self.symbols.get(mint)


class TestFormatting:

    def test_add_liquidity(self):
        text = format_match(make_match(add_liquidity_data(1_500, 0, [(-2, 10000, 0)])))
        lines = text.split("\n")

        assert lines[0] == "AddLiquidity (slot 4242)"
        assert f"Pair: {LB_PAIR}" in lines
        assert f"Amount {short(MINT_X)}: 1500" in lines
        assert "Bins: -2..-2 (1)" in lines
        assert lines[-1] == "Tx: https://solscan.io/tx/sig0001"

    def test_symbols_replace_mints(self):
        text = format_match(make_match(add_liquidity_data()), "SOL", "USDC")

        assert "Amount SOL: 1000" in text
        assert "Amount USDC: 2000" in text

    def test_remove_liquidity_share(self):
        text = format_match(make_match(remove_liquidity_data([(3, 5000), (4, 5000)])))

        assert text.startswith("RemoveLiquidity")
        assert "Bins: 3..4 (2), removed 50%" in text

    def test_remove_liquidity_mixed(self):
        text = format_match(make_match(remove_liquidity_data([(3, 5000), (4, 10000)])))
        assert "removed mixed" in text

    def test_wallets_shortened(self):
        text = format_match(make_match(add_liquidity_data()))
        assert f"Wallets: {short(WATCHED_WALLET)}" in text

    def test_short(self):
        assert short(None) == "?"
        assert short("abc") == "abc"
        assert short("A" * 20 + "wxyz") == "AAAAAA...wxyz"


class TestLogSink:

    @pytest.mark.asyncio
    async def test_logs_single_line(self, caplog):
        sink = LogSink()
        with caplog.at_level(logging.INFO, logger="LpEvents"):
            await sink.emit(make_match(add_liquidity_data()))

        assert sink.emitted == 1
        assert "AddLiquidity (slot 4242) | Pair:" in caplog.text


class TestCompositeSink:

    @pytest.mark.asyncio
    async def test_emits_in_order(self):
        first, second = RecordingSink(), RecordingSink()
        await CompositeSink([first, second]).emit(make_match(add_liquidity_data()))

        assert len(first.matches) == 1
        assert len(second.matches) == 1

    @pytest.mark.asyncio
    async def test_first_failure_stops_emit(self):
        first, second = RecordingSink(), RecordingSink()
        first.fail_next = 1

        with pytest.raises(ConnectionError):
            await CompositeSink([first, second]).emit(make_match(add_liquidity_data()))

        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_replay_after_failure_logs_once(self):
        telegram, log = RecordingSink(), RecordingSink()
        telegram.fail_next = 1
        sink = CompositeSink([telegram, log])
        match = make_match(add_liquidity_data())

        with pytest.raises(ConnectionError):
            await sink.emit(match)
        await sink.emit(match)

        assert log.calls == 1
        assert len(telegram.matches) == 1


class TestBuildSink:

    def test_telegram_before_log(self):
        config = WatcherConfig(
            lp_wallets=[WATCHED_WALLET],
            telegram=TelegramConfig(bot_token="123:abc", group_id=-100),
        )
        sink, telegram = build_sink(config, transport=None)

        assert [type(s) for s in sink.sinks] == [TelegramSink, LogSink]
        assert sink.sinks[0] is telegram

    def test_log_only(self):
        sink, telegram = build_sink(WatcherConfig(lp_wallets=[WATCHED_WALLET]), transport=None)

        assert telegram is None
        assert [type(s) for s in sink.sinks] == [LogSink]


@asynccontextmanager
async def bot_api(reply_status=200, reply_body=None):
    received = []

    async def send_message(request):
        received.append((request.match_info["token"], await request.json()))
        return web.json_response(reply_body if reply_body is not None else {"ok": True}, status=reply_status)

    app = web.Application()
    app.router.add_post("/bot{token}/sendMessage", send_message)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    try:
        yield f"http://{host}:{port}", received
    finally:
        await runner.cleanup()


class TestTelegramSink:

    @pytest.mark.asyncio
    async def test_render_uses_resolver(self):
        sink = TelegramSink("token", -100, resolver=FakeResolver({MINT_X: "SOL"}))
        text = await sink.render(make_match(add_liquidity_data()))

        assert "Amount SOL: 1000" in text
        assert "Amount SOL: 2000" not in text

    @pytest.mark.asyncio
    async def test_send_message(self):
        async with bot_api() as (url, received):
            sink = TelegramSink("123:abc", -100, api_url=url)
            await sink.emit(make_match(add_liquidity_data()))
            await sink.stop()

        assert sink.messages_sent == 1
        token, body = received[0]
        assert token == "123:abc"
        assert body["chat_id"] == -100
        assert body["text"].startswith("AddLiquidity")
        assert body["disable_web_page_preview"] is True

    @pytest.mark.asyncio
    async def test_rejected_message(self):
        reply = {"ok": False, "description": "Bad Request: chat not found"}
        async with bot_api(reply_status=400, reply_body=reply) as (url, _):
            sink = TelegramSink("123:abc", -100, api_url=url)
            with pytest.raises(SinkFailure, match="chat not found"):
                await sink.emit(make_match(add_liquidity_data()))
            await sink.stop()

        assert sink.messages_sent == 0

    @pytest.mark.asyncio
    async def test_unreachable(self):
        async with bot_api() as (url, _):
            pass
        sink = TelegramSink("123:abc", -100, request_timeout=2.0, api_url=url)
        with pytest.raises(SinkFailure):
            await sink.emit(make_match(add_liquidity_data()))
        await sink.stop()
