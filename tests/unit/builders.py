"""
Ledger fixtures for unit tests.

Builds DLMM instruction payloads and RawTransactions with a fixed account
table:

    0  sender (fee payer)     8  token_x_mint
    1  position               9  token_y_mint
    2  lb_pair               10  bin_array_lower
    3  bitmap extension      11  bin_array_upper
    4  user_token_x          12  token program
    5  user_token_y          13  event authority
    6  reserve_x             14  DLMM program
    7  reserve_y             15  compute budget program
"""

import struct
from typing import Iterable, List, Optional, Sequence, Tuple

import base58

from lpwatch.dlmm.decoder import (
    DLMM_PROGRAM_ID,
    EVENT_IX_TAG,
    event_discriminator,
    instruction_discriminator,
)
from lpwatch.types import RawInstruction, RawTransaction


def address(n: int) -> str:
    """Deterministic valid 32-byte base58 address."""
    return base58.b58encode(bytes([n]) * 32).decode()


WATCHED_WALLET = address(1)
OTHER_WALLET = address(2)
SECOND_WATCHED_WALLET = address(3)

POSITION = address(10)
LB_PAIR = address(11)
BITMAP_EXTENSION = address(12)
USER_TOKEN_X = address(13)
USER_TOKEN_Y = address(14)
RESERVE_X = address(15)
RESERVE_Y = address(16)
MINT_X = address(20)
MINT_Y = address(21)
BIN_ARRAY_LOWER = address(22)
BIN_ARRAY_UPPER = address(23)
TOKEN_PROGRAM = address(24)
EVENT_AUTHORITY = address(25)
COMPUTE_BUDGET_PROGRAM = "ComputeBudget111111111111111111111111111111"

LIQUIDITY_ACCOUNTS = (1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 0, 12, 12, 13, 14)
SWAP_ACCOUNTS = (2, 3, 6, 7, 4, 5, 8, 9, 10, 14, 0, 12, 12, 13, 14)
DLMM_INDEX = 14
COMPUTE_BUDGET_INDEX = 15


def signature(n: int) -> str:
    return f"sig{n:04d}"


def account_table(sender: str) -> Tuple[str, ...]:
    return (
        sender, POSITION, LB_PAIR, BITMAP_EXTENSION, USER_TOKEN_X, USER_TOKEN_Y,
        RESERVE_X, RESERVE_Y, MINT_X, MINT_Y, BIN_ARRAY_LOWER, BIN_ARRAY_UPPER,
        TOKEN_PROGRAM, EVENT_AUTHORITY, DLMM_PROGRAM_ID, COMPUTE_BUDGET_PROGRAM,
    )


# =============================================================================
# Payloads
# =============================================================================

def add_liquidity_data(
    amount_x: int = 1_000,
    amount_y: int = 2_000,
    bins: Iterable[Tuple[int, int, int]] = ((-5, 5000, 0), (0, 5000, 10000))
) -> bytes:
    bins = list(bins)
    data = instruction_discriminator("add_liquidity") + struct.pack("<QQ", amount_x, amount_y)
    data += struct.pack("<I", len(bins))
    for bin_id, dist_x, dist_y in bins:
        data += struct.pack("<iHH", bin_id, dist_x, dist_y)
    return data


def remove_liquidity_data(bins: Iterable[Tuple[int, int]] = ((-5, 10000), (0, 10000))) -> bytes:
    bins = list(bins)
    data = instruction_discriminator("remove_liquidity") + struct.pack("<I", len(bins))
    for bin_id, bps in bins:
        data += struct.pack("<iH", bin_id, bps)
    return data


def swap_data(amount_in: int = 500, min_amount_out: int = 490) -> bytes:
    return instruction_discriminator("swap") + struct.pack("<QQ", amount_in, min_amount_out)


def event_record_data(
    name: str,
    lb_pair: str = LB_PAIR,
    sender: str = WATCHED_WALLET,
    position: str = POSITION,
    amounts: Tuple[int, int] = (1_000, 2_000),
    active_bin_id: int = -3
) -> bytes:
    return (
        EVENT_IX_TAG
        + event_discriminator(name)
        + base58.b58decode(lb_pair)
        + base58.b58decode(sender)
        + base58.b58decode(position)
        + struct.pack("<QQi", amounts[0], amounts[1], active_bin_id)
    )


# =============================================================================
# Instructions / transactions
# =============================================================================

def dlmm_instruction(
    data: bytes,
    index: int = 0,
    accounts: Sequence[int] = LIQUIDITY_ACCOUNTS,
    is_inner: bool = False
) -> RawInstruction:
    return RawInstruction(
        program_id=DLMM_PROGRAM_ID,
        data=data,
        accounts=tuple(accounts),
        index=index,
        is_inner=is_inner,
    )


def event_instruction(data: bytes, index: int) -> RawInstruction:
    return dlmm_instruction(data, index, accounts=(13,), is_inner=True)


def compute_budget_instruction(index: int = 0) -> RawInstruction:
    return RawInstruction(
        program_id=COMPUTE_BUDGET_PROGRAM,
        data=bytes([2, 0x40, 0x0D, 0x03, 0x00]),
        accounts=(),
        index=index,
    )


def make_tx(
    n: int,
    slot: int,
    payloads: Sequence[bytes] = (),
    sender: str = WATCHED_WALLET,
    failed: bool = False,
    instructions: Optional[List[RawInstruction]] = None
) -> RawTransaction:
    """
    Transaction `sig{n}` at `slot` with one top-level DLMM instruction per
    payload (liquidity account layout), or the explicit instruction list.
    """
    if instructions is None:
        instructions = [dlmm_instruction(data, i) for i, data in enumerate(payloads)]
    return RawTransaction(
        signature=signature(n),
        slot=slot,
        account_keys=account_table(sender),
        instructions=tuple(instructions),
        block_time=1_700_000_000 + slot,
        failed=failed,
    )


def irrelevant_tx(n: int, slot: int, sender: str = WATCHED_WALLET) -> RawTransaction:
    """Transaction touching no registered program."""
    return make_tx(n, slot, sender=sender, instructions=[compute_budget_instruction(0)])


class RecordingSink:
    """Sink that records every emitted match and can be told to fail."""

    def __init__(self):
        self.matches = []
        self.fail_next = 0
        self.calls = 0

    async def emit(self, match) -> None:
        self.calls += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            raise ConnectionError("sink unavailable")
        self.matches.append(match)

    @property
    def keys(self):
        return [m.dedup_key for m in self.matches]


class FakeSleep:
    """Records requested delays instead of sleeping; optionally stops a crawler."""

    def __init__(self, stop_after: Optional[int] = None):
        self.delays: List[float] = []
        self.stop_after = stop_after
        self.crawler = None

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.crawler is not None and self.stop_after is not None and len(self.delays) >= self.stop_after:
            self.crawler.stop()
