"""Incentive token — fixed-supply balance ledger with staking and vesting.

The whole supply is created once, at genesis, and split into three pool
accounts. Nothing is minted afterwards: rewards are paid from the
ecosystem pool, staking yield from the treasury pool, and vesting
schedules lock tokens taken from the team pool.

Supply invariant (checked by audit_supply):
    sum(all balances) + total staked + total vesting-locked == total supply

Staking yield accrues in whole days:
    yield = staked × APY × days / 365, rounded down to the token quantum.
A top-up or unstake settles the full days elapsed into a claimable balance
and restarts the clock, so any partial day is forfeited.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from tracechain.access.control import AccessControl
from tracechain.config import TokenParams
from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import (
    InsufficientFundsError,
    StateConflictError,
    ValidationError,
)
from tracechain.models.access import Role
from tracechain.models.amounts import quantize_amount
from tracechain.models.token import (
    Pool,
    StakeInfo,
    StakingInfo,
    SupplyBreakdown,
    VestingSchedule,
)
from tracechain.persistence.event_log import EventKind

TOKEN_QUANTUM = Decimal("0.000000000000000001")
SECONDS_PER_DAY = 86_400
DAYS_PER_YEAR = 365

_BALANCES = "balances"
_STAKES = "stakes"
_VESTING = "vesting"
_REWARD_TOTALS = "reward_totals"
_CATEGORY_REWARDS = "category_rewards"
_TOTALS = "totals"

_POOL_ACCOUNTS = frozenset(p.value for p in Pool)


class IncentiveToken:
    """TRACE balance ledger.

    Usage:
        token = IncentiveToken(runtime, access, owner="treasury_admin")
        token.allocate("treasury_admin", Pool.TREASURY, "alice", Decimal("5000"))
        token.stake("alice", Decimal("1000"), now=now)
    """

    quantum = TOKEN_QUANTUM

    def __init__(
        self,
        runtime: LedgerRuntime,
        access: AccessControl,
        owner: str,
        params: Optional[TokenParams] = None,
        namespace: str = "token",
        now: Optional[datetime] = None,
    ) -> None:
        self._params = params or TokenParams()
        p = self._params
        pools = {
            Pool.ECOSYSTEM: p.ecosystem_allocation,
            Pool.TEAM: p.team_allocation,
            Pool.TREASURY: p.treasury_allocation,
        }
        if sum(pools.values()) != p.total_supply:
            raise ValidationError("Pool allocations must equal total supply")

        self._store = runtime.open_store(namespace)
        with runtime.atomic():
            self.guard = AccessGuard(runtime, self._store, access, owner)
            for pool, amount in pools.items():
                self._store.put(_BALANCES, pool.value, amount)
            self.guard.emit(EventKind.TOKEN_GENESIS, owner, {
                "name": p.name,
                "symbol": p.symbol,
                "total_supply": p.total_supply,
                "pools": {pool.value: amount for pool, amount in pools.items()},
            }, now)

    @property
    def symbol(self) -> str:
        return self._params.symbol

    @property
    def total_supply(self) -> Decimal:
        return self._params.total_supply

    @property
    def params(self) -> TokenParams:
        return self._params

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def balance_of(self, account: str) -> Decimal:
        return self._store.get(_BALANCES, account, Decimal("0"))

    @entry_point
    def transfer(
        self,
        caller: str,
        to: str,
        amount: Decimal,
        now: Optional[datetime] = None,
    ) -> bool:
        amount = _amount(amount)
        if caller in _POOL_ACCOUNTS:
            raise ValidationError("Pool accounts move only through allocation")
        _require_account(to, "Recipient required")
        self._move(caller, to, amount)
        self.guard.emit(EventKind.TOKENS_TRANSFERRED, caller, {
            "from": caller,
            "to": to,
            "amount": amount,
        }, now)
        return True

    @entry_point
    def allocate(
        self,
        caller: str,
        pool: Pool,
        to: str,
        amount: Decimal,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move tokens out of the team or treasury pool (owner only)."""
        self.guard.require_owner(caller)
        pool = Pool(pool)
        if pool == Pool.ECOSYSTEM:
            raise ValidationError("Ecosystem pool is paid out only as rewards")
        amount = _amount(amount)
        _require_account(to, "Recipient required")
        self._move(pool.value, to, amount, "Pool balance too low")
        self.guard.emit(EventKind.POOL_ALLOCATED, caller, {
            "pool": pool,
            "to": to,
            "amount": amount,
        }, now)
        return True

    @entry_point
    def distribute_reward(
        self,
        caller: str,
        to: str,
        amount: Decimal,
        category: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Pay a participation reward from the ecosystem pool."""
        self.guard.require_role(caller, Role.DISTRIBUTOR)
        amount = _amount(amount)
        _require_account(to, "Recipient required")
        if not category:
            raise ValidationError("Reward category required")
        self._move(Pool.ECOSYSTEM.value, to, amount, "Ecosystem pool exhausted")
        self._store.increment(_REWARD_TOTALS, to, amount)
        self._store.increment(_CATEGORY_REWARDS, (to, category), amount)
        self._store.increment(_TOTALS, "rewards_distributed", amount)
        self.guard.emit(EventKind.REWARD_DISTRIBUTED, caller, {
            "to": to,
            "amount": amount,
            "category": category,
        }, now)
        return True

    def reward_total(self, account: str) -> Decimal:
        return self._store.get(_REWARD_TOTALS, account, Decimal("0"))

    def category_reward(self, account: str, category: str) -> Decimal:
        return self._store.get(_CATEGORY_REWARDS, (account, category), Decimal("0"))

    # ------------------------------------------------------------------
    # Staking
    # ------------------------------------------------------------------

    @entry_point
    def stake(
        self,
        caller: str,
        amount: Decimal,
        now: Optional[datetime] = None,
    ) -> StakeInfo:
        if now is None:
            now = datetime.now(timezone.utc)
        amount = _amount(amount)
        if amount < self._params.min_stake:
            raise ValidationError("Amount below minimum stake")
        if self.balance_of(caller) < amount:
            raise InsufficientFundsError("Insufficient balance")

        current = self._store.get(_STAKES, caller)
        if current is None:
            info = StakeInfo(
                holder=caller,
                amount=amount,
                staked_utc=now,
                last_claim_utc=now,
            )
        else:
            info = replace(
                current,
                amount=current.amount + amount,
                staked_utc=now,
                last_claim_utc=now,
                accrued=current.accrued + self._settled_yield(current, now),
            )
        self._debit(caller, amount)
        self._store.put(_STAKES, caller, info)
        self._store.increment(_TOTALS, "staked", amount)
        self.guard.emit(EventKind.TOKENS_STAKED, caller, {
            "amount": amount,
            "total_staked": info.amount,
        }, now)
        return info

    @entry_point
    def unstake(
        self,
        caller: str,
        amount: Decimal,
        now: Optional[datetime] = None,
    ) -> StakeInfo:
        """Withdraw staked tokens after the lock period.

        Full days of yield are settled into the claimable balance; the
        partial day since the last full day is forfeited.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        amount = _amount(amount)
        info = self._store.get(_STAKES, caller)
        if info is None or info.amount < amount:
            raise InsufficientFundsError("Insufficient staked balance")
        if now < self._unlock_utc(info):
            raise StateConflictError("Staking period not completed")

        updated = replace(
            info,
            amount=info.amount - amount,
            last_claim_utc=now,
            accrued=info.accrued + self._settled_yield(info, now),
        )
        if updated.amount == 0 and updated.accrued == 0:
            self._store.delete(_STAKES, caller)
        else:
            self._store.put(_STAKES, caller, updated)
        self._store.increment(_TOTALS, "staked", -amount)
        self._credit(caller, amount)
        self.guard.emit(EventKind.TOKENS_UNSTAKED, caller, {
            "amount": amount,
            "remaining": updated.amount,
            "accrued": updated.accrued,
        }, now)
        return updated

    @entry_point
    def claim_staking_rewards(
        self,
        caller: str,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """Pay settled plus pending whole-day yield from the treasury pool."""
        if now is None:
            now = datetime.now(timezone.utc)
        info = self._store.get(_STAKES, caller)
        if info is None:
            raise StateConflictError("No active stake")
        days = _whole_days(info.last_claim_utc, now)
        reward = info.accrued + self._yield(info.amount, days)
        if reward <= 0:
            raise StateConflictError("No staking rewards to claim")

        self._move(
            Pool.TREASURY.value, caller, reward,
            "Treasury pool cannot cover staking rewards",
        )
        updated = replace(
            info,
            accrued=Decimal("0"),
            last_claim_utc=info.last_claim_utc + timedelta(days=days),
        )
        if updated.amount == 0:
            self._store.delete(_STAKES, caller)
        else:
            self._store.put(_STAKES, caller, updated)
        self._store.increment(_TOTALS, "staking_rewards_paid", reward)
        self.guard.emit(EventKind.STAKING_REWARDS_CLAIMED, caller, {
            "amount": reward,
            "days": days,
        }, now)
        return reward

    def calculate_staking_rewards(
        self,
        holder: str,
        now: Optional[datetime] = None,
    ) -> Decimal:
        if now is None:
            now = datetime.now(timezone.utc)
        info = self._store.get(_STAKES, holder)
        if info is None:
            return Decimal("0")
        return info.accrued + self._settled_yield(info, now)

    def get_staking_info(
        self,
        holder: str,
        now: Optional[datetime] = None,
    ) -> StakingInfo:
        if now is None:
            now = datetime.now(timezone.utc)
        info = self._store.get(_STAKES, holder)
        if info is None:
            return StakingInfo(
                holder=holder,
                amount=Decimal("0"),
                staked_utc=None,
                unlock_utc=None,
                pending_rewards=Decimal("0"),
                is_locked=False,
            )
        unlock = self._unlock_utc(info)
        return StakingInfo(
            holder=holder,
            amount=info.amount,
            staked_utc=info.staked_utc,
            unlock_utc=unlock,
            pending_rewards=self.calculate_staking_rewards(holder, now),
            is_locked=now < unlock,
        )

    @property
    def total_staked(self) -> Decimal:
        return self._store.get(_TOTALS, "staked", Decimal("0"))

    # ------------------------------------------------------------------
    # Vesting
    # ------------------------------------------------------------------

    @entry_point
    def create_vesting_schedule(
        self,
        caller: str,
        beneficiary: str,
        amount: Decimal,
        duration_seconds: int,
        revocable: bool = False,
        now: Optional[datetime] = None,
    ) -> VestingSchedule:
        """Lock team-pool tokens for linear release to a beneficiary."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_owner(caller)
        _require_account(beneficiary, "Beneficiary required")
        amount = _amount(amount)
        if duration_seconds <= 0:
            raise ValidationError("Vesting duration must be positive")
        if self._store.contains(_VESTING, beneficiary):
            raise StateConflictError("Vesting schedule already exists")

        self._debit(Pool.TEAM.value, amount, "Team pool balance too low")
        schedule = VestingSchedule(
            beneficiary=beneficiary,
            total_amount=amount,
            released=Decimal("0"),
            start_utc=now,
            duration_seconds=duration_seconds,
            revocable=revocable,
        )
        self._store.put(_VESTING, beneficiary, schedule)
        self._store.increment(_TOTALS, "locked", amount)
        self.guard.emit(EventKind.VESTING_CREATED, caller, {
            "beneficiary": beneficiary,
            "amount": amount,
            "duration_seconds": duration_seconds,
            "revocable": revocable,
        }, now)
        return schedule

    def get_vesting_schedule(self, beneficiary: str) -> Optional[VestingSchedule]:
        return self._store.get(_VESTING, beneficiary)

    def releasable_amount(
        self,
        beneficiary: str,
        now: Optional[datetime] = None,
    ) -> Decimal:
        if now is None:
            now = datetime.now(timezone.utc)
        schedule = self._store.get(_VESTING, beneficiary)
        if schedule is None or schedule.revoked:
            return Decimal("0")
        return self._vested(schedule, now) - schedule.released

    @entry_point
    def release_vested_tokens(
        self,
        caller: str,
        now: Optional[datetime] = None,
    ) -> Decimal:
        if now is None:
            now = datetime.now(timezone.utc)
        schedule = self._store.get(_VESTING, caller)
        if schedule is None:
            raise ValidationError("No vesting schedule")
        amount = self.releasable_amount(caller, now)
        if amount <= 0:
            raise StateConflictError("No tokens to release")

        self._store.put(_VESTING, caller, replace(schedule, released=schedule.released + amount))
        self._store.increment(_TOTALS, "locked", -amount)
        self._credit(caller, amount)
        self.guard.emit(EventKind.VESTED_TOKENS_RELEASED, caller, {
            "amount": amount,
            "released_total": schedule.released + amount,
        }, now)
        return amount

    @entry_point
    def revoke_vesting(
        self,
        caller: str,
        beneficiary: str,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """Revoke a schedule: vested part to the beneficiary, rest to the team pool.

        Returns the amount returned to the team pool.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_owner(caller)
        schedule = self._store.get(_VESTING, beneficiary)
        if schedule is None:
            raise ValidationError("No vesting schedule")
        if not schedule.revocable:
            raise StateConflictError("Vesting schedule is not revocable")
        if schedule.revoked:
            raise StateConflictError("Vesting schedule already revoked")

        vested_unreleased = self._vested(schedule, now) - schedule.released
        returned = schedule.total_amount - schedule.released - vested_unreleased
        if vested_unreleased > 0:
            self._credit(beneficiary, vested_unreleased)
        if returned > 0:
            self._credit(Pool.TEAM.value, returned)
        self._store.increment(_TOTALS, "locked", -(vested_unreleased + returned))
        self._store.put(_VESTING, beneficiary, replace(
            schedule,
            released=schedule.released + vested_unreleased,
            revoked=True,
            revoked_utc=now,
        ))
        self.guard.emit(EventKind.VESTING_REVOKED, caller, {
            "beneficiary": beneficiary,
            "vested_released": vested_unreleased,
            "returned_to_pool": returned,
        }, now)
        return returned

    @property
    def total_locked(self) -> Decimal:
        return self._store.get(_TOTALS, "locked", Decimal("0"))

    # ------------------------------------------------------------------
    # Supply accounting
    # ------------------------------------------------------------------

    def supply_breakdown(self) -> SupplyBreakdown:
        pools = {p.value: self.balance_of(p.value) for p in Pool}
        staked = self.total_staked
        locked = self.total_locked
        return SupplyBreakdown(
            total_supply=self.total_supply,
            circulating=self.total_supply - sum(pools.values()) - staked - locked,
            pools=pools,
            staked=staked,
            vesting_locked=locked,
            staking_rewards_paid=self._store.get(_TOTALS, "staking_rewards_paid", Decimal("0")),
            rewards_distributed=self._store.get(_TOTALS, "rewards_distributed", Decimal("0")),
        )

    def audit_supply(self) -> list[str]:
        """Recompute the supply invariant from raw records. Returns errors."""
        errors: list[str] = []
        balances = sum(self._store.values(_BALANCES), Decimal("0"))
        staked = sum((s.amount for s in self._store.values(_STAKES)), Decimal("0"))
        locked = sum((v.locked for v in self._store.values(_VESTING)), Decimal("0"))
        if staked != self.total_staked:
            errors.append(f"staked counter {self.total_staked} != stakes {staked}")
        if locked != self.total_locked:
            errors.append(f"locked counter {self.total_locked} != schedules {locked}")
        if balances + staked + locked != self.total_supply:
            errors.append(
                f"balances {balances} + staked {staked} + locked {locked} "
                f"!= total supply {self.total_supply}"
            )
        for account, value in self._store.items(_BALANCES):
            if value < 0:
                errors.append(f"negative balance for {account}: {value}")
        return errors

    @entry_point
    def transfer_ownership(
        self,
        caller: str,
        new_owner: str,
        now: Optional[datetime] = None,
    ) -> None:
        self.guard.transfer_ownership(caller, new_owner, now)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _move(
        self,
        source: str,
        to: str,
        amount: Decimal,
        message: str = "Insufficient balance",
    ) -> None:
        self._debit(source, amount, message)
        self._credit(to, amount)

    def _debit(self, account: str, amount: Decimal, message: str = "Insufficient balance") -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientFundsError(message)
        self._store.put(_BALANCES, account, balance - amount)

    def _credit(self, account: str, amount: Decimal) -> None:
        self._store.put(_BALANCES, account, self.balance_of(account) + amount)

    def _unlock_utc(self, info: StakeInfo) -> datetime:
        return info.staked_utc + timedelta(days=self._params.staking_lock_days)

    def _yield(self, amount: Decimal, days: int) -> Decimal:
        if days <= 0 or amount <= 0:
            return Decimal("0")
        raw = amount * self._params.staking_apy * days / DAYS_PER_YEAR
        return raw.quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)

    def _settled_yield(self, info: StakeInfo, now: datetime) -> Decimal:
        return self._yield(info.amount, _whole_days(info.last_claim_utc, now))

    @staticmethod
    def _vested(schedule: VestingSchedule, now: datetime) -> Decimal:
        elapsed = (now - schedule.start_utc).total_seconds()
        if elapsed <= 0:
            return Decimal("0")
        if elapsed >= schedule.duration_seconds:
            return schedule.total_amount
        vested = schedule.total_amount * Decimal(int(elapsed)) / schedule.duration_seconds
        return vested.quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)


def _amount(value: Decimal) -> Decimal:
    amount = quantize_amount(value, TOKEN_QUANTUM)
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount


def _require_account(account: str, message: str) -> None:
    if not account or not account.strip():
        raise ValidationError(message)


def _whole_days(start: datetime, end: datetime) -> int:
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // SECONDS_PER_DAY)
