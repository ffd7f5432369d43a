"""
Instruction Decoder Protocol.

A decoder owns one program id and exposes a single capability:
turning a raw instruction of that program into a typed variant.

Decoders are registered explicitly per crawler:

    decoders = {DLMM_PROGRAM_ID: MeteoraDlmmDecoder()}
    decoded = decode_instruction(raw_instruction, decoders)
"""

from abc import abstractmethod
from typing import Any, Mapping, Optional, Protocol

from .types import RawInstruction


class InstructionDecoder(Protocol):
    """Decoder for one on-chain program."""

    program_id: str

    @abstractmethod
    def decode(self, instruction: RawInstruction) -> Optional[Any]:
        """Return a decoded variant, or None when the payload matches no known layout."""
        ...


DecoderRegistry = Mapping[str, InstructionDecoder]


def decode_instruction(
    instruction: RawInstruction,
    decoders: DecoderRegistry
) -> Optional[Any]:
    """
    Decode an instruction if one of the registered decoders owns its program.

    Instructions of unregistered programs are not applicable and yield None.
    """
    decoder = decoders.get(instruction.program_id)
    if decoder is None:
        return None
    return decoder.decode(instruction)
