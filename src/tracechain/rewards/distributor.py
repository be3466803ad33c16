"""Rewards distributor — turns reported user actions into TRACE accruals.

Anti-gaming rules, checked in this order for every action:
1. The action's category must exist and be active.
2. Daily counters reset lazily once 24h have passed since the window opened.
3. At least min_action_interval_seconds since the user's previous action.
4. Fewer than max_daily_actions actions in the current window.
5. reward = base_rate × multiplier / 100 + bonus, clamped to
   max_daily_rewards; the action is rejected if the window total would
   then exceed max_daily_rewards.

Rejected actions leave the user's state untouched. Batch processing is the
one place where a rejection is absorbed: the entry is skipped, recorded
with its reason, and the batch continues.

Accruals are paid out by claim_rewards, which zeroes the balance and asks
the token to distribute each category's share from the ecosystem pool.
A failed payout rolls the whole claim back.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Any, Mapping, Optional, Sequence, Union

from loguru import logger

from tracechain.access.control import AccessControl
from tracechain.config import RewardParams
from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import (
    LedgerError,
    LimitExceededError,
    StateConflictError,
    ValidationError,
)
from tracechain.models.access import Role
from tracechain.models.amounts import quantize_amount
from tracechain.models.rewards import (
    ActionOutcome,
    ActionRequest,
    BatchResult,
    RewardAccrual,
    RewardCategory,
    SkippedAction,
)
from tracechain.persistence.event_log import EventKind
from tracechain.rewards.metadata import RewardMetadata
from tracechain.rewards.price_feed import PriceFeed
from tracechain.token.incentive_token import TOKEN_QUANTUM, IncentiveToken

DAY = timedelta(hours=24)

_CATEGORIES = "categories"
_ACCRUALS = "accruals"


class RewardsDistributor:
    """Anti-gaming reward accrual and payout.

    The distributor pays out under its own account, which must hold the
    DISTRIBUTOR role on the shared AccessControl.

    Usage:
        rewards = RewardsDistributor(runtime, access, token, owner="admin")
        access.grant_role("admin", Role.DISTRIBUTOR, rewards.account)
        access.grant_role("admin", Role.PROCESSOR, "api")
        rewards.process_user_action("api", "alice", "product_registration", now=now)
        rewards.claim_rewards("alice", now=now)
    """

    def __init__(
        self,
        runtime: LedgerRuntime,
        access: AccessControl,
        token: IncentiveToken,
        owner: str,
        params: Optional[RewardParams] = None,
        price_feed: Optional[PriceFeed] = None,
        account: str = "rewards:distributor",
        namespace: str = "rewards",
        now: Optional[datetime] = None,
    ) -> None:
        self._params = params or RewardParams()
        self._token = token
        self._price_feed = price_feed
        self.account = account
        self._store = runtime.open_store(namespace)
        with runtime.atomic():
            self.guard = AccessGuard(runtime, self._store, access, owner)
            for action, rate in self._params.base_rates.items():
                self._store.put(_CATEGORIES, action, RewardCategory(
                    action=action, base_rate=rate, is_active=True, updated_utc=now,
                ))

    # ------------------------------------------------------------------
    # Accrual
    # ------------------------------------------------------------------

    @entry_point
    def process_user_action(
        self,
        caller: str,
        user: str,
        action: str,
        metadata: Union[None, RewardMetadata, Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> ActionOutcome:
        """Accrue the reward for one verified user action."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_role(caller, Role.PROCESSOR)
        return self._process_action(caller, user, action, metadata, now)

    @entry_point
    def batch_process_actions(
        self,
        caller: str,
        entries: Sequence[Union[ActionRequest, tuple]],
        now: Optional[datetime] = None,
    ) -> BatchResult:
        """Process up to max_batch_size actions, skipping invalid entries."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_role(caller, Role.PROCESSOR)
        if not entries:
            raise ValidationError("Batch is empty")
        if len(entries) > self._params.max_batch_size:
            raise LimitExceededError(
                f"Batch size {len(entries)} exceeds maximum {self._params.max_batch_size}"
            )

        processed: list[ActionOutcome] = []
        skipped: list[SkippedAction] = []
        for index, entry in enumerate(entries):
            request = None
            try:
                request = _request(entry)
                with self.guard.runtime.atomic():
                    outcome = self._process_action(
                        caller, request.user, request.action, request.metadata, now,
                    )
            except LedgerError as e:
                user = request.user if request else ""
                logger.debug("Skipped batch entry {} for {}: {}", index, user, e.reason)
                skipped.append(SkippedAction(
                    index=index,
                    user=user,
                    action=request.action if request else "",
                    kind=e.kind.value,
                    reason=e.reason,
                ))
                continue
            processed.append(outcome)

        result = BatchResult(processed=processed, skipped=skipped)
        self.guard.emit(EventKind.BATCH_PROCESSED, caller, result.to_dict(), now)
        return result

    def _process_action(
        self,
        caller: str,
        user: str,
        action: str,
        metadata: Union[None, RewardMetadata, Mapping[str, Any]],
        now: datetime,
    ) -> ActionOutcome:
        p = self._params
        if not user or not user.strip():
            raise ValidationError("User required")
        category = self._store.get(_CATEGORIES, action)
        if category is None:
            raise ValidationError(f"Unknown action: {action}")
        if not category.is_active:
            raise StateConflictError(f"Category inactive: {action}")
        meta = RewardMetadata.parse(metadata, p.max_multiplier, p.max_bonus)

        state = self._store.get(_ACCRUALS, user) or RewardAccrual(user=user)
        if state.day_start_utc is None or now >= state.day_start_utc + DAY:
            state = replace(
                state,
                daily_actions=0,
                daily_rewards=Decimal("0"),
                day_start_utc=now,
            )
        if state.last_action_utc is not None and (
            now - state.last_action_utc
        ).total_seconds() < p.min_action_interval_seconds:
            raise LimitExceededError("Action too soon after previous action")
        if state.daily_actions >= p.max_daily_actions:
            raise LimitExceededError("Daily action limit reached")

        amount = min(meta.apply(category.base_rate), p.max_daily_rewards)
        amount = amount.quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)
        if state.daily_rewards + amount > p.max_daily_rewards:
            raise LimitExceededError("Daily reward cap exceeded")

        balances = dict(state.category_balances)
        balances[action] = balances.get(action, Decimal("0")) + amount
        state = replace(
            state,
            balance=state.balance + amount,
            category_balances=balances,
            total_earned=state.total_earned + amount,
            daily_actions=state.daily_actions + 1,
            daily_rewards=state.daily_rewards + amount,
            last_action_utc=now,
        )
        self._store.put(_ACCRUALS, user, state)

        payload: dict[str, Any] = {
            "user": user,
            "amount": amount,
            "category": action,
            "multiplier": meta.multiplier,
            "bonus": meta.bonus,
        }
        if self._price_feed is not None:
            payload["price"] = self._price_feed.latest_price()
        self.guard.emit(EventKind.REWARD_ACCRUED, caller, payload, now)
        return ActionOutcome(
            user=user,
            action=action,
            amount=amount,
            daily_rewards=state.daily_rewards,
            daily_actions=state.daily_actions,
        )

    # ------------------------------------------------------------------
    # Payout
    # ------------------------------------------------------------------

    @entry_point
    def claim_rewards(
        self,
        caller: str,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """Pay the caller's whole unclaimed balance.

        The balance is zeroed before the token transfers; if any transfer
        is rejected the unit of work restores it.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        state = self._store.get(_ACCRUALS, caller)
        if state is None or state.balance <= 0:
            raise StateConflictError("No rewards to claim")

        amount = state.balance
        self._store.put(_ACCRUALS, caller, replace(
            state,
            balance=Decimal("0"),
            category_balances={},
            total_claimed=state.total_claimed + amount,
            last_claim_utc=now,
        ))
        for category, share in sorted(state.category_balances.items()):
            if share > 0:
                self._token.distribute_reward(self.account, caller, share, category, now)
        self.guard.emit(EventKind.REWARDS_CLAIMED, caller, {
            "user": caller,
            "amount": amount,
            "categories": sorted(state.category_balances),
        }, now)
        return amount

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @entry_point
    def set_reward_rate(
        self,
        caller: str,
        action: str,
        base_rate: Decimal,
        now: Optional[datetime] = None,
    ) -> RewardCategory:
        """Create a category or change its base rate (owner only)."""
        self.guard.require_owner(caller)
        if not action or not action.strip():
            raise ValidationError("Action required")
        base_rate = quantize_amount(base_rate, TOKEN_QUANTUM)
        if base_rate <= 0:
            raise ValidationError("Base rate must be positive")
        current = self._store.get(_CATEGORIES, action)
        if current is None:
            category = RewardCategory(action=action, base_rate=base_rate, updated_utc=now)
        else:
            category = replace(current, base_rate=base_rate, updated_utc=now)
        self._store.put(_CATEGORIES, action, category)
        self.guard.emit(EventKind.REWARD_RATE_SET, caller, {
            "category": action,
            "base_rate": base_rate,
            "created": current is None,
        }, now)
        return category

    @entry_point
    def toggle_category(
        self,
        caller: str,
        action: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Flip a category's active flag. Returns the new flag."""
        self.guard.require_owner(caller)
        current = self._store.get(_CATEGORIES, action)
        if current is None:
            raise ValidationError(f"Unknown action: {action}")
        category = replace(current, is_active=not current.is_active, updated_utc=now)
        self._store.put(_CATEGORIES, action, category)
        self.guard.emit(EventKind.CATEGORY_TOGGLED, caller, {
            "category": action,
            "is_active": category.is_active,
        }, now)
        return category.is_active

    @entry_point
    def flag_suspicious_activity(
        self,
        caller: str,
        user: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> RewardAccrual:
        """Reset a user's daily window and void their unclaimed balance.

        Already-claimed rewards are not touched.
        """
        self.guard.require_role(caller, Role.PROCESSOR)
        if not reason or not reason.strip():
            raise ValidationError("Reason required")
        state = self._store.get(_ACCRUALS, user)
        if state is None:
            raise ValidationError(f"No reward activity for user: {user}")
        voided = state.balance
        state = replace(
            state,
            balance=Decimal("0"),
            category_balances={},
            daily_actions=0,
            daily_rewards=Decimal("0"),
            day_start_utc=None,
            flag_count=state.flag_count + 1,
        )
        self._store.put(_ACCRUALS, user, state)
        logger.warning("Flagged {} for suspicious activity: {}", user, reason)
        self.guard.emit(EventKind.SUSPICIOUS_ACTIVITY_FLAGGED, caller, {
            "user": user,
            "reason": reason,
            "voided": voided,
        }, now)
        return state

    @entry_point
    def transfer_ownership(
        self,
        caller: str,
        new_owner: str,
        now: Optional[datetime] = None,
    ) -> None:
        self.guard.transfer_ownership(caller, new_owner, now)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_user_state(self, user: str) -> RewardAccrual:
        return self._store.get(_ACCRUALS, user) or RewardAccrual(user=user)

    def get_category(self, action: str) -> Optional[RewardCategory]:
        return self._store.get(_CATEGORIES, action)

    def categories(self) -> list[RewardCategory]:
        return sorted(self._store.values(_CATEGORIES), key=lambda c: c.action)

    def pending_rewards(self, user: str) -> Decimal:
        return self.get_user_state(user).balance


def _request(entry: Union[ActionRequest, tuple]) -> ActionRequest:
    if isinstance(entry, ActionRequest):
        request = entry
    else:
        try:
            request = ActionRequest(*entry)
        except TypeError as e:
            raise ValidationError(f"Malformed batch entry: {entry!r}") from e
    if not isinstance(request.user, str) or not isinstance(request.action, str):
        raise ValidationError("Batch entry user and action must be strings")
    return request
