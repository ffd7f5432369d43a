"""
Event Classifier

Maps decoded DLMM variants to DomainEvents.

Event sources (exactly one active, so one liquidity action yields one event):
- INSTRUCTIONS: AddLiquidity / RemoveLiquidity instructions; account index
  references are resolved through the transaction account table.
- EVENTS: AddLiquidityEvent / RemoveLiquidityEvent records emitted by the
  program; these carry pubkeys directly.

Swap and Other variants never produce events.
"""

from enum import Enum
from typing import Iterable, List, Optional, Tuple

from ..dlmm.decoder import (
    AddLiquidityEvent,
    AddLiquidityInstruction,
    RemoveLiquidityEvent,
    RemoveLiquidityInstruction,
)
from ..errors import ClassificationInconsistency, ConfigError
from ..types import (
    AddLiquidityPayload,
    DomainEvent,
    EventKind,
    RawInstruction,
    RawTransaction,
    RemoveLiquidityPayload,
)


class EventSource(Enum):
    INSTRUCTIONS = "instructions"
    EVENTS = "events"

    @classmethod
    def parse(cls, value: str) -> "EventSource":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigError(
                f"Unknown event source '{value}' (expected one of: "
                f"{', '.join(s.value for s in cls)})"
            )


def _unique(addresses: Iterable[Optional[str]]) -> Tuple[str, ...]:
    seen = []
    for address in addresses:
        if address and address not in seen:
            seen.append(address)
    return tuple(seen)


class EventClassifier:
    """
    Stateless classifier.

    Usage:
        classifier = EventClassifier(EventSource.INSTRUCTIONS)
        event = classifier.classify(decoded, raw_instruction, transaction)
    """

    def __init__(self, source: EventSource = EventSource.INSTRUCTIONS):
        self.source = source

    def classify(
        self,
        decoded,
        instruction: RawInstruction,
        transaction: RawTransaction
    ) -> Optional[DomainEvent]:
        """
        Produce zero or one DomainEvent.

        Raises:
            ClassificationInconsistency: an account index is outside the
                transaction account table.
        """
        if self.source is EventSource.INSTRUCTIONS:
            if isinstance(decoded, AddLiquidityInstruction):
                return self._from_add_instruction(decoded, instruction, transaction)
            if isinstance(decoded, RemoveLiquidityInstruction):
                return self._from_remove_instruction(decoded, instruction, transaction)
        else:
            if isinstance(decoded, AddLiquidityEvent):
                return self._from_event_record(
                    EventKind.ADD_LIQUIDITY, decoded, instruction, transaction
                )
            if isinstance(decoded, RemoveLiquidityEvent):
                return self._from_event_record(
                    EventKind.REMOVE_LIQUIDITY, decoded, instruction, transaction
                )
        return None

    # =========================================================================
    # Account resolution
    # =========================================================================

    @staticmethod
    def _resolve(decoded, role: str, instruction: RawInstruction, transaction: RawTransaction) -> str:
        index = decoded.account_index(role)
        if not 0 <= index < len(transaction.account_keys):
            raise ClassificationInconsistency(
                f"{decoded.name} account '{role}' references index {index}, "
                f"transaction has {len(transaction.account_keys)} accounts",
                signature=transaction.signature,
                instruction_index=instruction.index,
            )
        return transaction.account_keys[index]

    def _resolve_liquidity_accounts(self, decoded, instruction, transaction) -> dict:
        roles = ("position", "lb_pair", "sender", "user_token_x", "user_token_y",
                 "token_x_mint", "token_y_mint")
        return {role: self._resolve(decoded, role, instruction, transaction) for role in roles}

    @staticmethod
    def _involved(transaction: RawTransaction, accounts: List[str]) -> Tuple[str, ...]:
        return _unique([transaction.fee_payer] + accounts)

    # =========================================================================
    # Builders
    # =========================================================================

    def _from_add_instruction(
        self,
        decoded: AddLiquidityInstruction,
        instruction: RawInstruction,
        transaction: RawTransaction
    ) -> DomainEvent:
        acc = self._resolve_liquidity_accounts(decoded, instruction, transaction)
        payload = AddLiquidityPayload(
            lb_pair=acc["lb_pair"],
            position=acc["position"],
            sender=acc["sender"],
            amounts=(decoded.amount_x, decoded.amount_y),
            bin_ids=tuple(d.bin_id for d in decoded.bin_liquidity_dist),
            token_x_mint=acc["token_x_mint"],
            token_y_mint=acc["token_y_mint"],
        )
        return self._event(EventKind.ADD_LIQUIDITY, payload, instruction, transaction,
                           list(acc.values()))

    def _from_remove_instruction(
        self,
        decoded: RemoveLiquidityInstruction,
        instruction: RawInstruction,
        transaction: RawTransaction
    ) -> DomainEvent:
        acc = self._resolve_liquidity_accounts(decoded, instruction, transaction)
        payload = RemoveLiquidityPayload(
            lb_pair=acc["lb_pair"],
            position=acc["position"],
            sender=acc["sender"],
            bin_removals=tuple((r.bin_id, r.bps_to_remove) for r in decoded.bin_liquidity_removal),
            token_x_mint=acc["token_x_mint"],
            token_y_mint=acc["token_y_mint"],
        )
        return self._event(EventKind.REMOVE_LIQUIDITY, payload, instruction, transaction,
                           list(acc.values()))

    def _from_event_record(self, kind: EventKind, decoded, instruction, transaction) -> DomainEvent:
        if kind is EventKind.ADD_LIQUIDITY:
            payload = AddLiquidityPayload(
                lb_pair=decoded.lb_pair,
                position=decoded.position,
                sender=decoded.sender,
                amounts=decoded.amounts,
                active_bin_id=decoded.active_bin_id,
            )
        else:
            payload = RemoveLiquidityPayload(
                lb_pair=decoded.lb_pair,
                position=decoded.position,
                sender=decoded.sender,
                amounts=decoded.amounts,
                active_bin_id=decoded.active_bin_id,
            )
        return self._event(kind, payload, instruction, transaction,
                           [decoded.sender, decoded.position, decoded.lb_pair])

    def _event(self, kind, payload, instruction, transaction, accounts) -> DomainEvent:
        return DomainEvent(
            signature=transaction.signature,
            slot=transaction.slot,
            kind=kind,
            instruction_index=instruction.index,
            involved_addresses=self._involved(transaction, accounts),
            payload=payload,
            block_time=transaction.block_time,
        )
