"""Incentive-token data models — pools, stakes, vesting schedules."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


class Pool(str, enum.Enum):
    """Genesis allocation pools. Each pool is an ordinary balance account."""
    ECOSYSTEM = "pool:ecosystem"
    TEAM = "pool:team"
    TREASURY = "pool:treasury"


@dataclass(frozen=True)
class StakeInfo:
    """A holder's staking position.

    Yield accrues in whole days since last_claim_utc. Settled but unpaid
    yield (from a top-up or partial unstake) sits in accrued.
    """
    holder: str
    amount: Decimal
    staked_utc: datetime
    last_claim_utc: datetime
    accrued: Decimal = Decimal("0")


@dataclass(frozen=True)
class StakingInfo:
    """Read view returned by IncentiveToken.get_staking_info."""
    holder: str
    amount: Decimal
    staked_utc: Optional[datetime]
    unlock_utc: Optional[datetime]
    pending_rewards: Decimal
    is_locked: bool


@dataclass(frozen=True)
class VestingSchedule:
    """Linear time-locked release of team-pool tokens to one beneficiary."""
    beneficiary: str
    total_amount: Decimal
    released: Decimal
    start_utc: datetime
    duration_seconds: int
    revocable: bool
    revoked: bool = False
    revoked_utc: Optional[datetime] = None

    @property
    def locked(self) -> Decimal:
        """Tokens still held back for this schedule."""
        if self.revoked:
            return Decimal("0")
        return self.total_amount - self.released


@dataclass(frozen=True)
class SupplyBreakdown:
    """Where every token of the fixed supply currently sits."""
    total_supply: Decimal
    circulating: Decimal
    pools: dict[str, Decimal]
    staked: Decimal
    vesting_locked: Decimal
    staking_rewards_paid: Decimal
    rewards_distributed: Decimal
