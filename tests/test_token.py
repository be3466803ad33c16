"""Tests for the incentive token and settlement asset — proves supply is conserved."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from tracechain.access.control import AccessControl
from tracechain.config import TokenParams
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import (
    AuthorizationError,
    InsufficientFundsError,
    StateConflictError,
    ValidationError,
)
from tracechain.models.access import Role
from tracechain.models.token import Pool
from tracechain.token.incentive_token import IncentiveToken
from tracechain.token.settlement import StablecoinLedger


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def runtime() -> LedgerRuntime:
    return LedgerRuntime()


@pytest.fixture
def access(runtime: LedgerRuntime) -> AccessControl:
    return AccessControl(runtime, "admin", now=_now())


@pytest.fixture
def token(runtime: LedgerRuntime, access: AccessControl) -> IncentiveToken:
    return IncentiveToken(runtime, access, "admin", TokenParams(), now=_now())


def _fund(token: IncentiveToken, account: str, amount: str) -> None:
    token.allocate("admin", Pool.TREASURY, account, Decimal(amount), _now())


class TestGenesis:
    def test_pools_hold_whole_supply(self, token: IncentiveToken) -> None:
        assert token.balance_of(Pool.ECOSYSTEM.value) == Decimal("200000000")
        assert token.balance_of(Pool.TEAM.value) == Decimal("100000000")
        assert token.balance_of(Pool.TREASURY.value) == Decimal("700000000")
        assert token.audit_supply() == []

    def test_mismatched_pools_rejected(self, runtime: LedgerRuntime, access: AccessControl) -> None:
        params = TokenParams(treasury_allocation=Decimal("1"))
        with pytest.raises(ValidationError):
            IncentiveToken(runtime, access, "admin", params, namespace="bad_token")


class TestTransfers:
    def test_allocate_and_transfer(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "500")
        token.transfer("alice", "bob", Decimal("200"), _now())
        assert token.balance_of("alice") == Decimal("300")
        assert token.balance_of("bob") == Decimal("200")

    def test_overdraft_rejected_without_change(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "50")
        with pytest.raises(InsufficientFundsError):
            token.transfer("alice", "bob", Decimal("51"), _now())
        assert token.balance_of("alice") == Decimal("50")
        assert token.balance_of("bob") == Decimal("0")

    def test_non_positive_amount_rejected(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "50")
        with pytest.raises(ValidationError):
            token.transfer("alice", "bob", Decimal("0"), _now())

    def test_unrepresentable_amounts_rejected(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "50")
        for amount in ("ten", Decimal("NaN"), Decimal("Infinity"), Decimal("1e10")):
            with pytest.raises(ValidationError):
                token.transfer("alice", "bob", amount, _now())
        assert token.balance_of("alice") == Decimal("50")

    def test_pool_cannot_transfer_directly(self, token: IncentiveToken) -> None:
        with pytest.raises(ValidationError):
            token.transfer(Pool.TREASURY.value, "mallory", Decimal("1"), _now())

    def test_only_owner_allocates(self, token: IncentiveToken) -> None:
        with pytest.raises(AuthorizationError):
            token.allocate("mallory", Pool.TREASURY, "mallory", Decimal("1"), _now())

    def test_ecosystem_pool_not_allocatable(self, token: IncentiveToken) -> None:
        with pytest.raises(ValidationError):
            token.allocate("admin", Pool.ECOSYSTEM, "alice", Decimal("1"), _now())

    def test_distribute_reward_requires_role(
        self, token: IncentiveToken, access: AccessControl,
    ) -> None:
        with pytest.raises(AuthorizationError):
            token.distribute_reward("bot", "alice", Decimal("10"), "onboarding", _now())
        access.grant_role("admin", Role.DISTRIBUTOR, "bot", _now())
        token.distribute_reward("bot", "alice", Decimal("10"), "onboarding", _now())
        assert token.balance_of("alice") == Decimal("10")
        assert token.reward_total("alice") == Decimal("10")
        assert token.category_reward("alice", "onboarding") == Decimal("10")
        assert token.supply_breakdown().rewards_distributed == Decimal("10")


class TestStaking:
    def test_stake_below_minimum_rejected(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "5000")
        with pytest.raises(ValidationError, match="minimum stake"):
            token.stake("alice", Decimal("999"), _now())

    def test_stake_more_than_balance_rejected(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "500")
        with pytest.raises(InsufficientFundsError):
            token.stake("alice", Decimal("1000"), _now())

    def test_unstake_before_lock_rejected(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "1000")
        token.stake("alice", Decimal("1000"), _now())
        with pytest.raises(StateConflictError, match="Staking period"):
            token.unstake("alice", Decimal("1000"), _now() + timedelta(days=6))
        assert token.total_staked == Decimal("1000")

    def test_yield_accrues_in_whole_days(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "1000")
        token.stake("alice", Decimal("1000"), _now())
        later = _now() + timedelta(days=73, hours=23)
        # 1000 × 5% × 73 / 365
        assert token.calculate_staking_rewards("alice", later) == Decimal("10")

    def test_claim_pays_from_treasury(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "1000")
        token.stake("alice", Decimal("1000"), _now())
        treasury_before = token.balance_of(Pool.TREASURY.value)
        paid = token.claim_staking_rewards("alice", _now() + timedelta(days=73))
        assert paid == Decimal("10")
        assert token.balance_of("alice") == Decimal("10")
        assert token.balance_of(Pool.TREASURY.value) == treasury_before - Decimal("10")
        assert token.audit_supply() == []

    def test_claim_with_nothing_accrued_rejected(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "1000")
        token.stake("alice", Decimal("1000"), _now())
        with pytest.raises(StateConflictError):
            token.claim_staking_rewards("alice", _now() + timedelta(hours=5))

    def test_unstake_settles_yield_into_claimable(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "1000")
        token.stake("alice", Decimal("1000"), _now())
        token.unstake("alice", Decimal("1000"), _now() + timedelta(days=73))
        assert token.balance_of("alice") == Decimal("1000")
        assert token.total_staked == Decimal("0")
        assert token.claim_staking_rewards("alice", _now() + timedelta(days=80)) == Decimal("10")
        assert token.audit_supply() == []

    def test_staking_info_lock_window(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "2000")
        token.stake("alice", Decimal("2000"), _now())
        info = token.get_staking_info("alice", _now() + timedelta(days=1))
        assert info.is_locked
        assert info.unlock_utc == _now() + timedelta(days=7)
        assert not token.get_staking_info("bob", _now()).is_locked


class TestVesting:
    def test_linear_release(self, token: IncentiveToken) -> None:
        token.create_vesting_schedule("admin", "dev", Decimal("1000"), 100 * 86_400, now=_now())
        assert token.total_locked == Decimal("1000")
        halfway = _now() + timedelta(days=50)
        assert token.releasable_amount("dev", halfway) == Decimal("500")
        assert token.release_vested_tokens("dev", halfway) == Decimal("500")
        assert token.balance_of("dev") == Decimal("500")
        with pytest.raises(StateConflictError):
            token.release_vested_tokens("dev", halfway)
        assert token.audit_supply() == []

    def test_one_schedule_per_beneficiary(self, token: IncentiveToken) -> None:
        token.create_vesting_schedule("admin", "dev", Decimal("10"), 86_400, now=_now())
        with pytest.raises(StateConflictError):
            token.create_vesting_schedule("admin", "dev", Decimal("10"), 86_400, now=_now())

    def test_release_without_schedule(self, token: IncentiveToken) -> None:
        with pytest.raises(ValidationError):
            token.release_vested_tokens("nobody", _now())

    def test_revoke_returns_unvested_to_team_pool(self, token: IncentiveToken) -> None:
        team_before = token.balance_of(Pool.TEAM.value)
        token.create_vesting_schedule(
            "admin", "dev", Decimal("1000"), 100 * 86_400, revocable=True, now=_now(),
        )
        returned = token.revoke_vesting("admin", "dev", _now() + timedelta(days=25))
        assert returned == Decimal("750")
        assert token.balance_of("dev") == Decimal("250")
        assert token.balance_of(Pool.TEAM.value) == team_before - Decimal("250")
        assert token.total_locked == Decimal("0")
        assert token.audit_supply() == []

    def test_irrevocable_schedule(self, token: IncentiveToken) -> None:
        token.create_vesting_schedule("admin", "dev", Decimal("10"), 86_400, now=_now())
        with pytest.raises(StateConflictError):
            token.revoke_vesting("admin", "dev", _now())


class TestSupplyAccounting:
    def test_breakdown_sums_to_supply(self, token: IncentiveToken) -> None:
        _fund(token, "alice", "5000")
        token.stake("alice", Decimal("2000"), _now())
        token.create_vesting_schedule("admin", "dev", Decimal("300"), 86_400, now=_now())
        b = token.supply_breakdown()
        assert b.staked == Decimal("2000")
        assert b.vesting_locked == Decimal("300")
        assert b.circulating == Decimal("3000")
        assert sum(b.pools.values()) + b.staked + b.vesting_locked + b.circulating == b.total_supply


class TestSettlement:
    def test_mint_requires_admin(self, runtime: LedgerRuntime, access: AccessControl) -> None:
        usd = StablecoinLedger(runtime, access, "admin")
        with pytest.raises(AuthorizationError):
            usd.mint("mallory", "mallory", Decimal("10"), _now())
        usd.mint("admin", "alice", Decimal("10.1234567"), _now())
        assert usd.balance_of("alice") == Decimal("10.123456")
        assert usd.total_issued == Decimal("10.123456")

    def test_transfer_overdraft(self, runtime: LedgerRuntime, access: AccessControl) -> None:
        usd = StablecoinLedger(runtime, access, "admin")
        usd.mint("admin", "alice", Decimal("5"), _now())
        with pytest.raises(InsufficientFundsError):
            usd.transfer("alice", "bob", Decimal("6"), _now())
        usd.transfer("alice", "bob", Decimal("5"), _now())
        assert usd.balance_of("bob") == Decimal("5")
