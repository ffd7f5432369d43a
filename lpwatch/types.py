"""
Ledger and Event Types (Immutable)

Data structures flowing through the crawl pipeline:

    RawTransaction / RawInstruction  (from Transport)
        -> DecodedInstruction variants (lpwatch.dlmm.decoder)
        -> DomainEvent                 (lpwatch.pipeline.classifier)
        -> WatchlistMatch              (lpwatch.pipeline.watchlist)
        -> Sink

All types are frozen dataclasses. Invariants are checked in __post_init__.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from .errors import WatcherError


# =============================================================================
# Positions
# =============================================================================

@dataclass(frozen=True)
class Position:
    """
    A point in a program's transaction history.

    Ordering compares slots only: slots are non-decreasing across the
    ledger but several transactions may share one. Two positions denote the
    same point when their signatures are equal.
    """
    slot: int
    signature: str

    def __post_init__(self):
        if self.slot < 0:
            raise WatcherError(f"Position slot must be >= 0, got {self.slot}")
        if not self.signature:
            raise WatcherError("Position signature must not be empty")

    def same_point(self, other: Optional["Position"]) -> bool:
        return other is not None and other.signature == self.signature

    def precedes(self, other: "Position") -> bool:
        """True if this position is strictly older than `other`."""
        return self.slot < other.slot

    def to_dict(self) -> dict:
        return {"slot": self.slot, "signature": self.signature}

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        return cls(slot=int(data["slot"]), signature=str(data["signature"]))


# The cursor is the last fully processed position of a tracked program.
Cursor = Position


# =============================================================================
# Raw ledger data
# =============================================================================

@dataclass(frozen=True)
class RawInstruction:
    """One instruction of a transaction, flattened in execution order."""
    program_id: str
    data: bytes
    accounts: Tuple[int, ...]  # Indices into RawTransaction.account_keys
    index: int                 # Position in the flattened instruction list
    is_inner: bool = False     # Emitted through CPI by an outer instruction


@dataclass(frozen=True)
class RawTransaction:
    """A confirmed transaction as delivered by the Transport."""
    signature: str
    slot: int
    account_keys: Tuple[str, ...]
    instructions: Tuple[RawInstruction, ...]
    block_time: Optional[int] = None
    failed: bool = False

    @property
    def position(self) -> Position:
        return Position(slot=self.slot, signature=self.signature)

    @property
    def fee_payer(self) -> Optional[str]:
        return self.account_keys[0] if self.account_keys else None


# =============================================================================
# Domain events
# =============================================================================

class EventKind(Enum):
    """Closed set of reported event kinds."""
    ADD_LIQUIDITY = "AddLiquidity"
    REMOVE_LIQUIDITY = "RemoveLiquidity"


@dataclass(frozen=True)
class AddLiquidityPayload:
    lb_pair: str
    position: str
    sender: str
    amounts: Tuple[int, int]        # (amount_x, amount_y)
    bin_ids: Tuple[int, ...] = ()
    active_bin_id: Optional[int] = None
    token_x_mint: Optional[str] = None
    token_y_mint: Optional[str] = None


@dataclass(frozen=True)
class RemoveLiquidityPayload:
    lb_pair: str
    position: str
    sender: str
    bin_removals: Tuple[Tuple[int, int], ...] = ()  # (bin_id, bps_to_remove)
    amounts: Optional[Tuple[int, int]] = None       # Known from event records only
    active_bin_id: Optional[int] = None
    token_x_mint: Optional[str] = None
    token_y_mint: Optional[str] = None


EventPayload = Union[AddLiquidityPayload, RemoveLiquidityPayload]

_PAYLOAD_TYPES = {
    EventKind.ADD_LIQUIDITY: AddLiquidityPayload,
    EventKind.REMOVE_LIQUIDITY: RemoveLiquidityPayload,
}


@dataclass(frozen=True)
class DomainEvent:
    """
    A classified liquidity event.

    Invariant: the payload type is the one defined for `kind`.
    """
    signature: str
    slot: int
    kind: EventKind
    instruction_index: int
    involved_addresses: Tuple[str, ...]
    payload: EventPayload
    block_time: Optional[int] = None

    def __post_init__(self):
        expected = _PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise WatcherError(
                f"{self.kind.value} event requires {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    @property
    def position(self) -> Position:
        return Position(slot=self.slot, signature=self.signature)


DedupKey = Tuple[str, str, int]


@dataclass(frozen=True)
class WatchlistMatch:
    """A DomainEvent annotated with the watchlist addresses it touched."""
    event: DomainEvent
    matched_addresses: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.matched_addresses:
            raise WatcherError("WatchlistMatch requires at least one matched address")

    @property
    def dedup_key(self) -> DedupKey:
        return (
            self.event.signature,
            self.event.kind.value,
            self.event.instruction_index,
        )
