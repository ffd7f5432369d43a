"""
LP Watcher Runner.

Crawls the tracked programs' transaction history and reports liquidity
events touching the configured LP wallets.

Usage:
    python -m lpwatch [--config config.json] [--env-file .env] [--log-level DEBUG]
    python -m lpwatch --status   # Print stored cursors and exit

Exit codes:
    0  stopped cleanly
    1  invalid configuration or a crawler stopped fatally
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional, Tuple

from .config import WatcherConfig, load_config
from .coordinator import WatcherCoordinator
from .errors import ConfigError
from .pipeline.cursor_store import create_cursor_store
from .sinks import CompositeSink, LogSink, TelegramSink, TokenMetadataResolver
from .transport import SolanaRpcTransport


def setup_logging(level: str = "INFO"):
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger("lpwatch")


def print_header(config: WatcherConfig):
    """Print startup header."""
    print()
    print("=" * 60)
    print("METEORA DLMM LP WATCHER")
    print("=" * 60)
    print(f"RPC: {config.rpc_url} ({config.commitment})")
    print(f"Programs: {', '.join(config.program_ids)}")
    print(f"LP wallets: {len(config.lp_wallets)}")
    print(f"Event source: {config.crawler.event_source.value}")
    print(f"Cursor backend: {config.cursor_backend} ({config.cursor_path})")
    print(f"Telegram: {'enabled' if config.telegram.enabled else 'disabled'}")
    print("=" * 60)
    print()


def print_status(config: WatcherConfig):
    """Print stored cursors."""
    store = create_cursor_store(config.cursor_backend, config.cursor_path)
    try:
        for program_id in config.program_ids:
            cursor = store.load(program_id)
            if cursor is None:
                print(f"{program_id}: no cursor")
            else:
                print(f"{program_id}: slot {cursor.slot} ({cursor.signature})")
    finally:
        store.close()


def build_sink(config: WatcherConfig, transport) -> Tuple[CompositeSink, Optional[TelegramSink]]:
    """Telegram first, log last: a failed emit is replayed and would repeat earlier sinks."""
    sinks: List = []
    telegram: Optional[TelegramSink] = None
    if config.telegram.enabled:
        resolver = TokenMetadataResolver(transport) if config.telegram.resolve_token_symbols else None
        telegram = TelegramSink(config.telegram.bot_token, config.telegram.group_id, resolver)
        sinks.append(telegram)
    sinks.append(LogSink())
    return CompositeSink(sinks), telegram


async def run(config: WatcherConfig, logger: logging.Logger) -> int:
    transport = SolanaRpcTransport(
        config.rpc_url,
        commitment=config.commitment,
        request_timeout=config.request_timeout,
        max_concurrent_requests=config.max_concurrent_requests,
        max_backfill_signatures=config.max_backfill_signatures,
    )
    cursor_store = create_cursor_store(config.cursor_backend, config.cursor_path)

    sink, telegram = build_sink(config, transport)

    coordinator = WatcherCoordinator(config, transport, sink, cursor_store)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, coordinator.stop)
        except NotImplementedError:
            # Windows: KeyboardInterrupt reaches asyncio.run instead
            pass

    await transport.start()
    if telegram is not None:
        await telegram.start()
    try:
        ok = await coordinator.run()
    finally:
        await transport.stop()
        if telegram is not None:
            await telegram.stop()
        cursor_store.close()

    if not ok:
        logger.error(f"Crawler(s) stopped fatally: {', '.join(coordinator.failed_programs)}")
        return 1
    logger.info("Watcher stopped")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Meteora DLMM LP watcher")
    parser.add_argument("--config", default=None,
                        help="JSON config with lp_wallets (default: $LP_WALLETS_CONFIG or config.json)")
    parser.add_argument("--env-file", default=".env", help="dotenv file to load")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--status", action="store_true", help="Print stored cursors and exit")
    args = parser.parse_args(argv)

    logger = setup_logging(args.log_level or "INFO")
    try:
        config = load_config(args.config, args.env_file)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logging.getLogger().setLevel(getattr(logging, (args.log_level or config.log_level).upper(), logging.INFO))

    if args.status:
        print_status(config)
        return 0

    print_header(config)
    try:
        return asyncio.run(run(config, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())
