"""
Meteora DLMM Instruction Decoder

Decodes Anchor-encoded instructions of the Meteora DLMM program.

Layouts:
- Instruction: sha256("global:<name>")[:8] + borsh(args)
- Event record (emitted through self-CPI):
  sha256("anchor:event")[:8] + sha256("event:<Name>")[:8] + borsh(fields)

Typed variants:
- AddLiquidityInstruction / RemoveLiquidityInstruction / SwapInstruction
- AddLiquidityEvent / RemoveLiquidityEvent
- OtherInstruction (known discriminator, no typed layout)

Payloads that do not fit any layout decode to None.
"""

import hashlib
import logging
import struct
from dataclasses import dataclass
from typing import Callable, ClassVar, Dict, List, Optional, Tuple, TypeVar, Union

import base58

from ..errors import DecodeMismatch
from ..types import RawInstruction


DLMM_PROGRAM_ID = "LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo"

_logger = logging.getLogger("MeteoraDlmmDecoder")


def instruction_discriminator(name: str) -> bytes:
    """Anchor instruction discriminator for a snake_case instruction name."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def event_discriminator(name: str) -> bytes:
    """Anchor event discriminator for a CamelCase event name."""
    return hashlib.sha256(f"event:{name}".encode()).digest()[:8]


EVENT_IX_TAG = hashlib.sha256(b"anchor:event").digest()[:8]


# =============================================================================
# Borsh reader
# =============================================================================

T = TypeVar("T")


class BorshReader:
    """Sequential little-endian reader over an instruction payload."""

    def __init__(self, data: bytes, offset: int = 0):
        self._data = data
        self._offset = offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def _unpack(self, fmt: str, size: int):
        if self.remaining < size:
            raise DecodeMismatch(
                f"need {size} bytes at offset {self._offset}, have {self.remaining}"
            )
        value = struct.unpack_from(fmt, self._data, self._offset)[0]
        self._offset += size
        return value

    def u8(self) -> int:
        return self._unpack("<B", 1)

    def u16(self) -> int:
        return self._unpack("<H", 2)

    def u32(self) -> int:
        return self._unpack("<I", 4)

    def i32(self) -> int:
        return self._unpack("<i", 4)

    def u64(self) -> int:
        return self._unpack("<Q", 8)

    def pubkey(self) -> str:
        if self.remaining < 32:
            raise DecodeMismatch(f"need 32 bytes for pubkey, have {self.remaining}")
        raw = self._data[self._offset:self._offset + 32]
        self._offset += 32
        return base58.b58encode(raw).decode()

    def skip(self, size: int) -> None:
        if self.remaining < size:
            raise DecodeMismatch(f"cannot skip {size} bytes, have {self.remaining}")
        self._offset += size

    def string(self) -> str:
        length = self.u32()
        if length > self.remaining:
            raise DecodeMismatch(f"string of {length} bytes exceeds remaining {self.remaining}")
        raw = self._data[self._offset:self._offset + length]
        self._offset += length
        return raw.decode("utf-8", errors="replace")

    def vec(self, read_item: Callable[["BorshReader"], T], item_size: int) -> Tuple[T, ...]:
        length = self.u32()
        if length * item_size > self.remaining:
            raise DecodeMismatch(
                f"vec of {length} items exceeds remaining {self.remaining} bytes"
            )
        return tuple(read_item(self) for _ in range(length))


# =============================================================================
# Decoded variants
# =============================================================================

# Account order shared by add_liquidity and remove_liquidity
LIQUIDITY_ACCOUNT_ROLES = (
    "position",
    "lb_pair",
    "bin_array_bitmap_extension",
    "user_token_x",
    "user_token_y",
    "reserve_x",
    "reserve_y",
    "token_x_mint",
    "token_y_mint",
    "bin_array_lower",
    "bin_array_upper",
    "sender",
    "token_x_program",
    "token_y_program",
    "event_authority",
    "program",
)

SWAP_ACCOUNT_ROLES = (
    "lb_pair",
    "bin_array_bitmap_extension",
    "reserve_x",
    "reserve_y",
    "user_token_in",
    "user_token_out",
    "token_x_mint",
    "token_y_mint",
    "oracle",
    "host_fee_in",
    "user",
    "token_x_program",
    "token_y_program",
    "event_authority",
    "program",
)


@dataclass(frozen=True)
class BinLiquidityDistribution:
    bin_id: int
    distribution_x: int  # basis points
    distribution_y: int


@dataclass(frozen=True)
class BinLiquidityReduction:
    bin_id: int
    bps_to_remove: int


class _AccountsMixin:
    """Role lookup for instructions that carry account index references."""

    ROLES: ClassVar[Tuple[str, ...]] = ()
    REQUIRED_ACCOUNTS: ClassVar[int] = 0

    def account_index(self, role: str) -> int:
        """Index into the transaction account table for a named account role."""
        return self.accounts[self.ROLES.index(role)]


@dataclass(frozen=True)
class AddLiquidityInstruction(_AccountsMixin):
    amount_x: int
    amount_y: int
    bin_liquidity_dist: Tuple[BinLiquidityDistribution, ...]
    accounts: Tuple[int, ...]

    name: ClassVar[str] = "AddLiquidity"
    ROLES: ClassVar[Tuple[str, ...]] = LIQUIDITY_ACCOUNT_ROLES
    REQUIRED_ACCOUNTS: ClassVar[int] = LIQUIDITY_ACCOUNT_ROLES.index("sender") + 1


@dataclass(frozen=True)
class RemoveLiquidityInstruction(_AccountsMixin):
    bin_liquidity_removal: Tuple[BinLiquidityReduction, ...]
    accounts: Tuple[int, ...]

    name: ClassVar[str] = "RemoveLiquidity"
    ROLES: ClassVar[Tuple[str, ...]] = LIQUIDITY_ACCOUNT_ROLES
    REQUIRED_ACCOUNTS: ClassVar[int] = LIQUIDITY_ACCOUNT_ROLES.index("sender") + 1


@dataclass(frozen=True)
class SwapInstruction(_AccountsMixin):
    amount_in: int
    min_amount_out: int
    accounts: Tuple[int, ...]

    name: ClassVar[str] = "Swap"
    ROLES: ClassVar[Tuple[str, ...]] = SWAP_ACCOUNT_ROLES
    REQUIRED_ACCOUNTS: ClassVar[int] = SWAP_ACCOUNT_ROLES.index("user") + 1


@dataclass(frozen=True)
class AddLiquidityEvent:
    lb_pair: str
    sender: str  # "from" in the program's event definition
    position: str
    amounts: Tuple[int, int]
    active_bin_id: int

    name: ClassVar[str] = "AddLiquidityEvent"


@dataclass(frozen=True)
class RemoveLiquidityEvent:
    lb_pair: str
    sender: str
    position: str
    amounts: Tuple[int, int]
    active_bin_id: int

    name: ClassVar[str] = "RemoveLiquidityEvent"


@dataclass(frozen=True)
class OtherInstruction:
    """A recognized DLMM instruction or event without a typed layout."""
    name: str


DecodedInstruction = Union[
    AddLiquidityInstruction,
    RemoveLiquidityInstruction,
    SwapInstruction,
    AddLiquidityEvent,
    RemoveLiquidityEvent,
    OtherInstruction,
]


# =============================================================================
# Layout readers
# =============================================================================

def _read_bin_distribution(r: BorshReader) -> BinLiquidityDistribution:
    return BinLiquidityDistribution(bin_id=r.i32(), distribution_x=r.u16(), distribution_y=r.u16())


def _read_bin_reduction(r: BorshReader) -> BinLiquidityReduction:
    return BinLiquidityReduction(bin_id=r.i32(), bps_to_remove=r.u16())


def _require_accounts(accounts: Tuple[int, ...], required: int, name: str):
    if len(accounts) < required:
        raise DecodeMismatch(f"{name} needs {required} accounts, got {len(accounts)}")


def _decode_add_liquidity(r: BorshReader, accounts: Tuple[int, ...]) -> AddLiquidityInstruction:
    _require_accounts(accounts, AddLiquidityInstruction.REQUIRED_ACCOUNTS, "add_liquidity")
    return AddLiquidityInstruction(
        amount_x=r.u64(),
        amount_y=r.u64(),
        bin_liquidity_dist=r.vec(_read_bin_distribution, 8),
        accounts=accounts,
    )


def _decode_remove_liquidity(r: BorshReader, accounts: Tuple[int, ...]) -> RemoveLiquidityInstruction:
    _require_accounts(accounts, RemoveLiquidityInstruction.REQUIRED_ACCOUNTS, "remove_liquidity")
    return RemoveLiquidityInstruction(
        bin_liquidity_removal=r.vec(_read_bin_reduction, 6),
        accounts=accounts,
    )


def _decode_swap(r: BorshReader, accounts: Tuple[int, ...]) -> SwapInstruction:
    _require_accounts(accounts, SwapInstruction.REQUIRED_ACCOUNTS, "swap")
    return SwapInstruction(amount_in=r.u64(), min_amount_out=r.u64(), accounts=accounts)


def _decode_liquidity_event(event_type):
    def decode(r: BorshReader, accounts: Tuple[int, ...]):
        return event_type(
            lb_pair=r.pubkey(),
            sender=r.pubkey(),
            position=r.pubkey(),
            amounts=(r.u64(), r.u64()),
            active_bin_id=r.i32(),
        )
    return decode


_Reader = Callable[[BorshReader, Tuple[int, ...]], DecodedInstruction]

_INSTRUCTION_LAYOUTS: Dict[bytes, _Reader] = {
    instruction_discriminator("add_liquidity"): _decode_add_liquidity,
    instruction_discriminator("remove_liquidity"): _decode_remove_liquidity,
    instruction_discriminator("swap"): _decode_swap,
}

_EVENT_LAYOUTS: Dict[bytes, _Reader] = {
    event_discriminator("AddLiquidity"): _decode_liquidity_event(AddLiquidityEvent),
    event_discriminator("RemoveLiquidity"): _decode_liquidity_event(RemoveLiquidityEvent),
}

# Recognized without a typed layout (reported as OtherInstruction)
KNOWN_INSTRUCTIONS: List[str] = [
    "initialize_lb_pair",
    "initialize_permission_lb_pair",
    "initialize_customizable_permissionless_lb_pair",
    "initialize_bin_array_bitmap_extension",
    "initialize_bin_array",
    "add_liquidity_by_weight",
    "add_liquidity_by_strategy",
    "add_liquidity_by_strategy_one_side",
    "add_liquidity_one_side",
    "add_liquidity_one_side_precise",
    "remove_all_liquidity",
    "remove_liquidity_by_range",
    "initialize_position",
    "initialize_position_pda",
    "initialize_position_by_operator",
    "update_position_operator",
    "close_position",
    "claim_fee",
    "claim_reward",
    "swap_exact_out",
    "swap_with_price_impact",
    "go_to_a_bin",
    "withdraw_protocol_fee",
    "initialize_reward",
    "fund_reward",
    "update_fees_and_rewards",
    "migrate_position",
    "migrate_bin_array",
    "set_activation_point",
    "increase_oracle_length",
]

KNOWN_EVENTS: List[str] = [
    "Swap",
    "ClaimFee",
    "ClaimReward",
    "CompositionFee",
    "FundReward",
    "InitializeReward",
    "LbPairCreate",
    "PositionCreate",
    "PositionClose",
    "FeeParameterUpdate",
    "IncreaseObservation",
    "GoToABin",
    "UpdatePositionOperator",
    "UpdatePositionLockReleasePoint",
    "WithdrawIneligibleReward",
]

_OTHER_INSTRUCTIONS: Dict[bytes, str] = {
    instruction_discriminator(name): "".join(p.capitalize() for p in name.split("_"))
    for name in KNOWN_INSTRUCTIONS
}

_OTHER_EVENTS: Dict[bytes, str] = {
    event_discriminator(name): f"{name}Event" for name in KNOWN_EVENTS
}


# =============================================================================
# Decoder
# =============================================================================

class MeteoraDlmmDecoder:
    """
    Decoder for the Meteora DLMM program.

    Usage:
        decoder = MeteoraDlmmDecoder()
        decoded = decoder.decode(raw_instruction)  # None if not applicable
    """

    def __init__(self, program_id: str = DLMM_PROGRAM_ID):
        self.program_id = program_id

    def decode(self, instruction: RawInstruction) -> Optional[DecodedInstruction]:
        """
        Decode a raw instruction.

        Returns None for other programs and for payloads that match no
        known layout (DecodeMismatch is logged at DEBUG, never raised).
        """
        if instruction.program_id != self.program_id:
            return None

        try:
            return self._decode(instruction.data, tuple(instruction.accounts))
        except DecodeMismatch as e:
            _logger.debug(f"Instruction #{instruction.index} does not match a known layout: {e}")
            return None

    def _decode(self, data: bytes, accounts: Tuple[int, ...]) -> DecodedInstruction:
        if len(data) < 8:
            raise DecodeMismatch(f"payload of {len(data)} bytes has no discriminator")

        head = data[:8]

        if head == EVENT_IX_TAG:
            if len(data) < 16:
                raise DecodeMismatch("event record without event discriminator")
            tag = data[8:16]
            reader = _EVENT_LAYOUTS.get(tag)
            if reader is not None:
                return reader(BorshReader(data, 16), accounts)
            if tag in _OTHER_EVENTS:
                return OtherInstruction(name=_OTHER_EVENTS[tag])
            raise DecodeMismatch(f"unknown event discriminator {tag.hex()}")

        reader = _INSTRUCTION_LAYOUTS.get(head)
        if reader is not None:
            return reader(BorshReader(data, 8), accounts)
        if head in _OTHER_INSTRUCTIONS:
            return OtherInstruction(name=_OTHER_INSTRUCTIONS[head])
        raise DecodeMismatch(f"unknown instruction discriminator {head.hex()}")
