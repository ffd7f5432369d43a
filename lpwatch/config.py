"""
Watcher Configuration

All configurable parameters for the crawl pipeline.

Sources, later overriding earlier:
1. Dataclass defaults
2. JSON config file (config.json: "lp_wallets" plus optional overrides)
3. Environment variables (a .env file is loaded first with python-dotenv)
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .dlmm.decoder import DLMM_PROGRAM_ID
from .errors import ConfigError
from .pipeline.classifier import EventSource
from .pipeline.cursor_store import CURSOR_BACKENDS
from .pipeline.watchlist import normalize_address


START_FROM_CHOICES = ("latest", "genesis")
COMMITMENT_CHOICES = ("confirmed", "finalized")


@dataclass
class BackoffConfig:
    """Retry schedule for Transport failures."""

    initial_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0

    # None = retry transient failures forever
    max_transient_retries: Optional[int] = None

    # Likely-permanent failures (NotFound) stop the crawler after this many retries
    max_permanent_retries: int = 5

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


@dataclass
class DedupConfig:
    max_entries: int = 10_000
    ttl_seconds: Optional[float] = None


@dataclass
class CrawlerConfig:
    """Per-program crawl loop settings."""

    # ========== Polling ==========
    poll_interval: float = 5.0
    page_size: int = 10

    # First run without a cursor: "latest" tails from the newest transaction,
    # "genesis" walks history (bounded by max_backfill_signatures)
    start_from: str = "latest"

    # ========== Classification ==========
    event_source: EventSource = EventSource.INSTRUCTIONS
    include_failed: bool = False

    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)


@dataclass
class TelegramConfig:
    bot_token: str = ""
    group_id: Optional[int] = None
    resolve_token_symbols: bool = True

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token) and self.group_id is not None


@dataclass
class WatcherConfig:
    """Top-level configuration."""

    # ========== Transport ==========
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    commitment: str = "finalized"
    request_timeout: float = 30.0
    max_concurrent_requests: int = 1
    max_backfill_signatures: int = 10_000

    # ========== Tracked programs ==========
    program_ids: List[str] = field(default_factory=lambda: [DLMM_PROGRAM_ID])

    # ========== Watchlist ==========
    lp_wallets: List[str] = field(default_factory=list)

    # ========== Cursor persistence ==========
    cursor_backend: str = "sqlite"
    cursor_path: str = "data/cursors.db"

    # ========== Observability ==========
    log_level: str = "INFO"
    metrics_flush_interval: float = 3.0

    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)

    def validate(self) -> "WatcherConfig":
        """Normalize addresses and check ranges. Raises ConfigError."""
        if not self.rpc_url:
            raise ConfigError("RPC_URL is required")
        if not self.program_ids:
            raise ConfigError("At least one program id must be tracked")
        self.program_ids = [normalize_address(p) for p in self.program_ids]
        self.lp_wallets = [normalize_address(w) for w in self.lp_wallets]
        if not self.lp_wallets:
            raise ConfigError("Watchlist is empty: configure lp_wallets")

        c = self.crawler
        if c.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be positive, got {c.poll_interval}")
        if not 1 <= c.page_size <= 1000:
            raise ConfigError(f"page_size must be in 1..1000, got {c.page_size}")
        if c.start_from not in START_FROM_CHOICES:
            raise ConfigError(f"start_from must be one of {START_FROM_CHOICES}, got '{c.start_from}'")
        if c.backoff.initial_delay <= 0 or c.backoff.max_delay < c.backoff.initial_delay:
            raise ConfigError("backoff delays must satisfy 0 < initial_delay <= max_delay")
        if c.backoff.multiplier < 1:
            raise ConfigError(f"backoff multiplier must be >= 1, got {c.backoff.multiplier}")
        if c.backoff.max_permanent_retries < 0:
            raise ConfigError("max_permanent_retries must be >= 0")
        if c.dedup.max_entries <= 0:
            raise ConfigError("dedup max_entries must be positive")

        if self.commitment not in COMMITMENT_CHOICES:
            raise ConfigError(f"commitment must be one of {COMMITMENT_CHOICES}, got '{self.commitment}'")
        if self.cursor_backend not in CURSOR_BACKENDS:
            raise ConfigError(f"cursor backend must be one of {CURSOR_BACKENDS}, got '{self.cursor_backend}'")
        if self.metrics_flush_interval <= 0:
            raise ConfigError("metrics_flush_interval must be positive")
        return self


# =============================================================================
# Loading
# =============================================================================

def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _number(name: str, value, cast):
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got '{value}'")


def _apply_overrides(config: WatcherConfig, values: Dict) -> None:
    """Apply flat key/value overrides (from the JSON file or the environment)."""
    c = config.crawler
    if values.get("rpc_url"):
        config.rpc_url = str(values["rpc_url"])
    if values.get("program_ids"):
        ids = values["program_ids"]
        config.program_ids = [p.strip() for p in ids.split(",") if p.strip()] if isinstance(ids, str) else list(ids)
    if values.get("commitment"):
        config.commitment = str(values["commitment"])
    if values.get("cursor_backend"):
        config.cursor_backend = str(values["cursor_backend"])
    if values.get("cursor_path"):
        config.cursor_path = str(values["cursor_path"])
    if values.get("log_level"):
        config.log_level = str(values["log_level"]).upper()
    if values.get("metrics_flush_interval") is not None:
        config.metrics_flush_interval = _number("metrics_flush_interval", values["metrics_flush_interval"], float)
    if values.get("max_backfill_signatures") is not None:
        config.max_backfill_signatures = _number("max_backfill_signatures", values["max_backfill_signatures"], int)
    if values.get("request_timeout") is not None:
        config.request_timeout = _number("request_timeout", values["request_timeout"], float)

    if values.get("poll_interval") is not None:
        c.poll_interval = _number("poll_interval", values["poll_interval"], float)
    if values.get("page_size") is not None:
        c.page_size = _number("page_size", values["page_size"], int)
    if values.get("start_from"):
        c.start_from = str(values["start_from"]).lower()
    if values.get("event_source"):
        c.event_source = EventSource.parse(str(values["event_source"]))
    if values.get("include_failed") is not None:
        flag = values["include_failed"]
        c.include_failed = _parse_bool(flag) if isinstance(flag, str) else bool(flag)
    if values.get("max_permanent_retries") is not None:
        c.backoff.max_permanent_retries = _number("max_permanent_retries", values["max_permanent_retries"], int)
    if values.get("backoff_max_delay") is not None:
        c.backoff.max_delay = _number("backoff_max_delay", values["backoff_max_delay"], float)

    if values.get("telegram_bot_token"):
        config.telegram.bot_token = str(values["telegram_bot_token"])
    if values.get("telegram_group_id"):
        config.telegram.group_id = _number("telegram_group_id", values["telegram_group_id"], int)


_ENV_KEYS = {
    "rpc_url": "RPC_URL",
    "program_ids": "PROGRAM_IDS",
    "commitment": "COMMITMENT",
    "cursor_backend": "CURSOR_BACKEND",
    "cursor_path": "CURSOR_PATH",
    "log_level": "LOG_LEVEL",
    "metrics_flush_interval": "METRICS_FLUSH_INTERVAL",
    "max_backfill_signatures": "MAX_BACKFILL_SIGNATURES",
    "request_timeout": "REQUEST_TIMEOUT",
    "poll_interval": "POLL_INTERVAL",
    "page_size": "PAGE_SIZE",
    "start_from": "START_FROM",
    "event_source": "EVENT_SOURCE",
    "include_failed": "INCLUDE_FAILED",
    "max_permanent_retries": "MAX_PERMANENT_RETRIES",
    "backoff_max_delay": "BACKOFF_MAX_DELAY",
    "telegram_bot_token": "TELEGRAM_BOT_TOKEN",
    "telegram_group_id": "TELEGRAM_GROUP_ID",
}


def _env_values() -> Dict[str, str]:
    values = {key: os.getenv(env) for key, env in _ENV_KEYS.items() if os.getenv(env)}
    if "rpc_url" not in values and os.getenv("SOLANA_RPC"):
        values["rpc_url"] = os.getenv("SOLANA_RPC")
    return values


def load_config(
    config_path: Optional[str] = None,
    env_file: Optional[str] = ".env"
) -> WatcherConfig:
    """
    Build and validate the watcher configuration.

    Args:
        config_path: JSON file with "lp_wallets" (default: $LP_WALLETS_CONFIG
            or config.json)
        env_file: dotenv file to load into the environment (None to skip)
    """
    if env_file:
        load_dotenv(env_file)

    config = WatcherConfig()

    path = Path(config_path or os.getenv("LP_WALLETS_CONFIG", "config.json"))
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {path} is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    wallets = data.get("lp_wallets", [])
    if not isinstance(wallets, list):
        raise ConfigError(f"'lp_wallets' in {path} must be a list")
    config.lp_wallets = list(wallets)

    _apply_overrides(config, data)
    _apply_overrides(config, _env_values())

    return config.validate()
