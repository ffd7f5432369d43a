"""
Watcher Error Taxonomy

    WatcherError
    ├── ConfigError                 invalid configuration (startup)
    ├── DecodeMismatch              payload matches no known layout (skipped)
    ├── ClassificationInconsistency decoded instruction references a missing account
    ├── TransportError
    │   ├── TransportTransient      retried with backoff
    │   │   ├── TransportTimeout
    │   │   ├── RateLimited
    │   │   └── TransportUnavailable
    │   └── TransportPermanent      retried a bounded number of times
    │       └── NotFound
    ├── SinkFailure                 delivery rejected; page replayed next cycle
    ├── CursorOrderingViolation     cursor regression; always fatal
    └── CrawlerFatalError           crawl loop stopped
"""

from typing import Optional


class WatcherError(Exception):
    """Base class for all watcher errors."""
    pass


class ConfigError(WatcherError):
    """Raised when configuration is missing or invalid."""
    pass


class DecodeMismatch(WatcherError):
    """Raised inside a decoder when a payload does not fit the expected layout."""
    pass


class ClassificationInconsistency(WatcherError):
    """Raised when a decoded instruction references an out-of-range account."""

    def __init__(self, message: str, signature: str = "", instruction_index: int = -1):
        super().__init__(message)
        self.signature = signature
        self.instruction_index = instruction_index


# =============================================================================
# Transport
# =============================================================================

class TransportError(WatcherError):
    """Base class for Transport failures."""
    transient = True


class TransportTransient(TransportError):
    transient = True


class TransportTimeout(TransportTransient):
    pass


class RateLimited(TransportTransient):

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransportUnavailable(TransportTransient):
    pass


class TransportPermanent(TransportError):
    transient = False


class NotFound(TransportPermanent):
    pass


# =============================================================================
# Dispatch / cursor
# =============================================================================

class SinkFailure(WatcherError):
    """Raised when the sink rejects a delivery. Always retryable."""
    retryable = True


class CursorOrderingViolation(WatcherError):
    """Raised when a cursor advance would move backward."""
    pass


class CrawlerFatalError(WatcherError):
    """Raised when a crawl loop stops and cannot continue."""

    def __init__(self, program_id: str, message: str):
        super().__init__(f"[{program_id[:8]}] {message}")
        self.program_id = program_id
