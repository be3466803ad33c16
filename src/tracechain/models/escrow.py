"""Payment escrow data models.

State machine:
    OPEN → PARTIALLY_RELEASED   (first milestone released)
    OPEN → RESOLVED             (every milestone released in one go)
    OPEN → DISPUTED             (payer or payee raises a dispute)
    OPEN → CANCELLED            (payer cancels before any release)
    PARTIALLY_RELEASED → RESOLVED   (last milestone released)
    PARTIALLY_RELEASED → DISPUTED
    DISPUTED → RESOLVED         (arbiter splits the unreleased remainder)

RESOLVED and CANCELLED are terminal.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from tracechain.errors import StateConflictError


class EscrowState(str, enum.Enum):
    OPEN = "open"
    PARTIALLY_RELEASED = "partially_released"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class SettlementAsset(str, enum.Enum):
    SETTLEMENT = "settlement"
    TRACE = "trace"


ESCROW_TRANSITIONS: Dict[EscrowState, frozenset] = {
    EscrowState.OPEN: frozenset({
        EscrowState.PARTIALLY_RELEASED,
        EscrowState.RESOLVED,
        EscrowState.DISPUTED,
        EscrowState.CANCELLED,
    }),
    EscrowState.PARTIALLY_RELEASED: frozenset({
        EscrowState.RESOLVED,
        EscrowState.DISPUTED,
    }),
    EscrowState.DISPUTED: frozenset({EscrowState.RESOLVED}),
    EscrowState.RESOLVED: frozenset(),
    EscrowState.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class Milestone:
    description: str
    amount: Decimal
    released: bool = False
    released_utc: Optional[datetime] = None


@dataclass(frozen=True)
class Escrow:
    """A funded escrow between payer and payee."""
    escrow_id: int
    payer: str
    payee: str
    asset: SettlementAsset
    amount: Decimal
    milestones: tuple[Milestone, ...]
    fee_bps: int
    state: EscrowState
    created_utc: datetime
    released_total: Decimal = Decimal("0")
    fees_total: Decimal = Decimal("0")
    refunded_total: Decimal = Decimal("0")
    disputed_by: Optional[str] = None
    dispute_reason: str = ""
    closed_utc: Optional[datetime] = None

    @property
    def unreleased(self) -> Decimal:
        return sum((m.amount for m in self.milestones if not m.released), Decimal("0"))

    @property
    def released_milestone_total(self) -> Decimal:
        """Gross amount of the milestones released so far."""
        return sum((m.amount for m in self.milestones if m.released), Decimal("0"))

    @property
    def settled_total(self) -> Decimal:
        """Everything paid out of the escrow so far."""
        return self.released_total + self.fees_total + self.refunded_total

    @property
    def is_terminal(self) -> bool:
        return not ESCROW_TRANSITIONS[self.state]

    def check_transition(self, new_state: EscrowState) -> None:
        """Raise StateConflictError unless new_state is reachable."""
        allowed = ESCROW_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise StateConflictError(
                f"Invalid escrow transition: {self.state.value} → {new_state.value}"
            )


@dataclass(frozen=True)
class EscrowSettlement:
    """Amounts moved by one release or resolution."""
    escrow_id: int
    to_payee: Decimal
    fee: Decimal
    refund: Decimal
