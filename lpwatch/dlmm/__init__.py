"""
Meteora DLMM program bindings.

Components:
- MeteoraDlmmDecoder: Anchor instruction / event-record decoder
- Decoded variants: AddLiquidityInstruction, RemoveLiquidityInstruction,
  SwapInstruction, AddLiquidityEvent, RemoveLiquidityEvent, OtherInstruction
"""

from .decoder import (
    DLMM_PROGRAM_ID,
    EVENT_IX_TAG,
    AddLiquidityEvent,
    AddLiquidityInstruction,
    BinLiquidityDistribution,
    BinLiquidityReduction,
    BorshReader,
    DecodedInstruction,
    MeteoraDlmmDecoder,
    OtherInstruction,
    RemoveLiquidityEvent,
    RemoveLiquidityInstruction,
    SwapInstruction,
    event_discriminator,
    instruction_discriminator,
)

__all__ = [
    "DLMM_PROGRAM_ID",
    "EVENT_IX_TAG",
    "AddLiquidityEvent",
    "AddLiquidityInstruction",
    "BinLiquidityDistribution",
    "BinLiquidityReduction",
    "BorshReader",
    "DecodedInstruction",
    "MeteoraDlmmDecoder",
    "OtherInstruction",
    "RemoveLiquidityEvent",
    "RemoveLiquidityInstruction",
    "SwapInstruction",
    "event_discriminator",
    "instruction_discriminator",
]
