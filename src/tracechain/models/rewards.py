"""Reward-distribution data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


@dataclass(frozen=True)
class RewardCategory:
    """Base rate and availability of one rewardable action."""
    action: str
    base_rate: Decimal
    is_active: bool = True
    updated_utc: Optional[datetime] = None


@dataclass(frozen=True)
class RewardAccrual:
    """Per-user reward state.

    Daily counters are reset lazily: the next action at or after
    day_start_utc + 24h starts a new window. category_balances holds the
    unclaimed amount per action; balance is their sum.
    """
    user: str
    balance: Decimal = Decimal("0")
    category_balances: dict[str, Decimal] = field(default_factory=dict)
    total_earned: Decimal = Decimal("0")
    total_claimed: Decimal = Decimal("0")
    daily_actions: int = 0
    daily_rewards: Decimal = Decimal("0")
    day_start_utc: Optional[datetime] = None
    last_action_utc: Optional[datetime] = None
    last_claim_utc: Optional[datetime] = None
    flag_count: int = 0


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one accepted user action."""
    user: str
    action: str
    amount: Decimal
    daily_rewards: Decimal
    daily_actions: int


@dataclass(frozen=True)
class SkippedAction:
    """A batch entry rejected under the skip-on-invalid policy."""
    index: int
    user: str
    action: str
    kind: str
    reason: str


@dataclass(frozen=True)
class BatchResult:
    processed: list[ActionOutcome]
    skipped: list[SkippedAction]

    @property
    def total_rewarded(self) -> Decimal:
        return sum((o.amount for o in self.processed), Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": len(self.processed),
            "skipped": [
                {"index": s.index, "user": s.user, "kind": s.kind, "reason": s.reason}
                for s in self.skipped
            ],
            "total_rewarded": str(self.total_rewarded),
        }


@dataclass(frozen=True)
class ActionRequest:
    """One entry of a batch_process_actions call."""
    user: str
    action: str
    metadata: Optional[dict[str, Any]] = None
