"""Tests for payment escrow — proves funds are conserved through every path."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from tracechain.access.control import AccessControl
from tracechain.config import PaymentParams
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import (
    AuthorizationError,
    InsufficientFundsError,
    LimitExceededError,
    StateConflictError,
    ValidationError,
)
from tracechain.models.access import Role
from tracechain.models.escrow import EscrowState, Milestone, SettlementAsset
from tracechain.models.token import Pool
from tracechain.payments.escrow import PaymentEscrow
from tracechain.token.incentive_token import IncentiveToken
from tracechain.token.settlement import StablecoinLedger

TREASURY = "platform:treasury"


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _three(amount: str = "100") -> list:
    return [("Deposit", Decimal(amount)), ("Shipped", Decimal(amount)), ("Delivered", Decimal(amount))]


@pytest.fixture
def runtime() -> LedgerRuntime:
    return LedgerRuntime()


@pytest.fixture
def access(runtime: LedgerRuntime) -> AccessControl:
    access = AccessControl(runtime, "admin", now=_now())
    access.grant_role("admin", Role.ARBITER, "judge", _now())
    return access


@pytest.fixture
def usd(runtime: LedgerRuntime, access: AccessControl) -> StablecoinLedger:
    ledger = StablecoinLedger(runtime, access, "admin")
    ledger.mint("admin", "buyer", Decimal("300"), _now())
    return ledger


@pytest.fixture
def token(runtime: LedgerRuntime, access: AccessControl) -> IncentiveToken:
    return IncentiveToken(runtime, access, "admin", now=_now())


@pytest.fixture
def payments(
    runtime: LedgerRuntime,
    access: AccessControl,
    usd: StablecoinLedger,
    token: IncentiveToken,
) -> PaymentEscrow:
    return PaymentEscrow(runtime, access, "admin", settlement=usd, token=token)


class TestCreation:
    def test_escrow_holds_funds(self, payments: PaymentEscrow, usd: StablecoinLedger) -> None:
        escrow = payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        assert escrow.escrow_id == 1
        assert escrow.state == EscrowState.OPEN
        assert escrow.fee_bps == 250
        assert usd.balance_of("buyer") == Decimal("0")
        assert usd.balance_of(payments.account) == Decimal("300")
        assert [e.escrow_id for e in payments.escrows_for("supplier")] == [1]

    def test_milestones_must_sum_to_amount(self, payments: PaymentEscrow) -> None:
        with pytest.raises(ValidationError, match="sum"):
            payments.create_escrow("buyer", "supplier", Decimal("300"), _three("99"), now=_now())

    def test_underfunded_payer(self, payments: PaymentEscrow, usd: StablecoinLedger) -> None:
        with pytest.raises(InsufficientFundsError):
            payments.create_escrow(
                "buyer", "supplier", Decimal("600"), _three("200"), now=_now(),
            )
        assert usd.balance_of("buyer") == Decimal("300")
        assert payments.escrow_count == 0

    def test_too_many_milestones(
        self, runtime: LedgerRuntime, access: AccessControl, usd: StablecoinLedger,
    ) -> None:
        payments = PaymentEscrow(
            runtime, access, "admin", settlement=usd,
            params=PaymentParams(max_milestones=2), namespace="small_payments",
        )
        with pytest.raises(LimitExceededError):
            payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())

    def test_payee_must_differ(self, payments: PaymentEscrow) -> None:
        with pytest.raises(ValidationError):
            payments.create_escrow("buyer", "buyer", Decimal("100"), [("All", Decimal("100"))],
                                   now=_now())

    def test_milestone_objects_accepted(self, payments: PaymentEscrow) -> None:
        escrow = payments.create_escrow(
            "buyer", "supplier", Decimal("100"), [Milestone("All", Decimal("100"))], now=_now(),
        )
        assert escrow.milestones[0].description == "All"

    def test_unknown_asset(self, payments: PaymentEscrow) -> None:
        with pytest.raises(ValidationError, match="Unknown asset"):
            payments.create_escrow(
                "buyer", "supplier", Decimal("100"), [("All", Decimal("100"))],
                asset="gold", now=_now(),
            )


    def test_unrepresentable_amount_rejected(self, payments: PaymentEscrow) -> None:
        with pytest.raises(ValidationError, match="too large"):
            payments.create_escrow(
                "buyer", "supplier", Decimal("1e10"), [("All", Decimal("1e10"))],
                asset=SettlementAsset.TRACE, now=_now(),
            )
        with pytest.raises(ValidationError, match="number"):
            payments.create_escrow(
                "buyer", "supplier", "lots", [("All", Decimal("100"))], now=_now(),
            )

class TestRelease:
    def test_release_pays_payee_and_treasury(
        self, payments: PaymentEscrow, usd: StablecoinLedger,
    ) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        settlement = payments.release_milestone("buyer", 1, 0, _now())
        assert settlement.to_payee == Decimal("97.5")
        assert settlement.fee == Decimal("2.5")
        assert usd.balance_of("supplier") == Decimal("97.5")
        assert usd.balance_of(TREASURY) == Decimal("2.5")
        escrow = payments.get_escrow(1)
        assert escrow.state == EscrowState.PARTIALLY_RELEASED
        assert escrow.released_total == Decimal("97.5")
        assert escrow.released_milestone_total == Decimal("100")

    def test_double_release_rejected(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        payments.release_milestone("buyer", 1, 0, _now())
        with pytest.raises(StateConflictError, match="already released"):
            payments.release_milestone("buyer", 1, 0, _now())

    def test_payee_cannot_release(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        with pytest.raises(AuthorizationError):
            payments.release_milestone("supplier", 1, 0, _now())

    def test_arbiter_can_release(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        payments.release_milestone("judge", 1, 2, _now())
        assert payments.get_escrow(1).milestones[2].released

    def test_releasing_all_resolves(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        for index in range(3):
            payments.release_milestone("buyer", 1, index, _now())
        escrow = payments.get_escrow(1)
        assert escrow.state == EscrowState.RESOLVED
        assert escrow.closed_utc == _now()
        summary = payments.settlement_summary(1)
        assert summary["released"] == Decimal("292.5")
        assert summary["fees"] == Decimal("7.5")
        assert summary["conserved"]

    def test_index_out_of_range(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        with pytest.raises(ValidationError):
            payments.release_milestone("buyer", 1, 3, _now())


class TestDisputes:
    def test_disputed_milestone_scenario(
        self, payments: PaymentEscrow, usd: StablecoinLedger,
    ) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        payments.release_milestone("buyer", 1, 0, _now())
        payments.raise_dispute("supplier", 1, "late delivery", _now())
        with pytest.raises(StateConflictError):
            payments.release_milestone("buyer", 1, 1, _now())

        settlement = payments.resolve_dispute("judge", 1, 50, _now())
        assert settlement.refund == Decimal("100")
        assert settlement.to_payee == Decimal("97.5")
        assert settlement.fee == Decimal("2.5")
        assert usd.balance_of("buyer") == Decimal("100")
        assert usd.balance_of("supplier") == Decimal("195")
        assert usd.balance_of(TREASURY) == Decimal("5")
        assert usd.balance_of(payments.account) == Decimal("0")
        summary = payments.settlement_summary(1)
        assert summary["state"] == "resolved"
        assert summary["unreleased"] == Decimal("0")
        assert summary["conserved"]

    def test_only_parties_dispute(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        with pytest.raises(AuthorizationError):
            payments.raise_dispute("mallory", 1, "", _now())

    def test_only_arbiter_resolves(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        payments.raise_dispute("buyer", 1, "", _now())
        with pytest.raises(AuthorizationError):
            payments.resolve_dispute("buyer", 1, 100, _now())

    def test_resolve_requires_dispute(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        with pytest.raises(StateConflictError):
            payments.resolve_dispute("judge", 1, 50, _now())

    def test_payer_share_bounds(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        payments.raise_dispute("buyer", 1, "", _now())
        with pytest.raises(ValidationError):
            payments.resolve_dispute("judge", 1, 101, _now())
        with pytest.raises(ValidationError):
            payments.resolve_dispute("judge", 1, True, _now())

    def test_full_refund(self, payments: PaymentEscrow, usd: StablecoinLedger) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        payments.raise_dispute("buyer", 1, "never shipped", _now())
        settlement = payments.resolve_dispute("judge", 1, 100, _now())
        assert settlement.refund == Decimal("300")
        assert settlement.fee == Decimal("0")
        assert usd.balance_of("buyer") == Decimal("300")
        assert usd.balance_of(TREASURY) == Decimal("0")


class TestCancellation:
    def test_cancel_refunds_in_full(self, payments: PaymentEscrow, usd: StablecoinLedger) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        settlement = payments.cancel_escrow("buyer", 1, _now())
        assert settlement.refund == Decimal("300")
        assert usd.balance_of("buyer") == Decimal("300")
        assert payments.get_escrow(1).state == EscrowState.CANCELLED
        assert payments.settlement_summary(1)["conserved"]

    def test_cannot_cancel_after_release(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        payments.release_milestone("buyer", 1, 0, _now())
        with pytest.raises(StateConflictError):
            payments.cancel_escrow("buyer", 1, _now())

    def test_only_payer_cancels(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        with pytest.raises(AuthorizationError):
            payments.cancel_escrow("supplier", 1, _now())

    def test_terminal_escrow_cannot_be_disputed(self, payments: PaymentEscrow) -> None:
        payments.create_escrow("buyer", "supplier", Decimal("300"), _three(), now=_now())
        payments.cancel_escrow("buyer", 1, _now())
        with pytest.raises(StateConflictError):
            payments.raise_dispute("supplier", 1, "", _now())


class TestTraceEscrow:
    def test_escrow_in_incentive_token(
        self, payments: PaymentEscrow, token: IncentiveToken,
    ) -> None:
        token.allocate("admin", Pool.TREASURY, "buyer", Decimal("1000"), _now())
        payments.create_escrow(
            "buyer", "supplier", Decimal("1000"), [("All", Decimal("1000"))],
            asset=SettlementAsset.TRACE, now=_now(),
        )
        payments.release_milestone("buyer", 1, 0, _now())
        assert token.balance_of("supplier") == Decimal("975")
        assert token.balance_of(TREASURY) == Decimal("25")
        assert token.audit_supply() == []
