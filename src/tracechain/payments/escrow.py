"""Payment escrow — milestone payments and dispute resolution.

The payer funds the full escrow amount up front; milestone amounts must sum
to it exactly. Funds sit in the escrow's own account on the chosen asset
ledger until they are released, refunded, or split by an arbiter.

Settlement on every payout to the payee:
    fee       = amount × platform_fee_bps / 10000 (rounded down) → treasury
    to_payee  = amount - fee
Refunds to the payer carry no fee.

Dispute resolution splits the unreleased remainder:
    refund    = remainder × payer_share / 100 (rounded down) → payer
    payee gets remainder - refund, less the platform fee

Conservation: released_total + fees_total + refunded_total never exceeds
the funded amount, and equals it once the escrow is terminal.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Protocol, Sequence, Union

from tracechain.access.control import AccessControl
from tracechain.config import PaymentParams
from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import (
    AuthorizationError,
    InsufficientFundsError,
    LimitExceededError,
    StateConflictError,
    ValidationError,
)
from tracechain.models.access import Role
from tracechain.models.amounts import quantize_amount
from tracechain.models.escrow import (
    Escrow,
    EscrowSettlement,
    EscrowState,
    Milestone,
    SettlementAsset,
)
from tracechain.persistence.event_log import EventKind

_ESCROWS = "escrows"
_BY_ACCOUNT = "by_account"
_ESCROW_SEQ = "escrow"


class AssetVault(Protocol):
    """Balance ledger an escrow can hold funds on."""

    quantum: Decimal

    def balance_of(self, account: str) -> Decimal:
        ...

    def transfer(
        self, caller: str, to: str, amount: Decimal, now: Optional[datetime] = None,
    ) -> bool:
        ...


MilestoneLike = Union[Milestone, tuple]


class PaymentEscrow:
    """Escrow state machine over the settlement asset and TRACE.

    Usage:
        payments = PaymentEscrow(runtime, access, "admin", settlement=usd, token=token)
        escrow = payments.create_escrow(
            "buyer", "supplier", Decimal("300"),
            [("Deposit", Decimal("100")), ("Shipped", Decimal("100")),
             ("Delivered", Decimal("100"))],
        )
        payments.release_milestone("buyer", escrow.escrow_id, 0)
    """

    def __init__(
        self,
        runtime: LedgerRuntime,
        access: AccessControl,
        owner: str,
        settlement: AssetVault,
        token: Optional[AssetVault] = None,
        params: Optional[PaymentParams] = None,
        account: str = "escrow:payments",
        namespace: str = "payments",
    ) -> None:
        self._params = params or PaymentParams()
        self._vaults: dict[SettlementAsset, AssetVault] = {SettlementAsset.SETTLEMENT: settlement}
        if token is not None:
            self._vaults[SettlementAsset.TRACE] = token
        self.account = account
        self._store = runtime.open_store(namespace)
        with runtime.atomic():
            self.guard = AccessGuard(runtime, self._store, access, owner)

    @property
    def treasury(self) -> str:
        return self._params.treasury_account

    @property
    def fee_bps(self) -> int:
        return self._params.platform_fee_bps

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @entry_point
    def create_escrow(
        self,
        caller: str,
        payee: str,
        amount: Decimal,
        milestones: Sequence[MilestoneLike],
        asset: Union[SettlementAsset, str] = SettlementAsset.SETTLEMENT,
        now: Optional[datetime] = None,
    ) -> Escrow:
        """Open an escrow funded in full by the caller."""
        if now is None:
            now = datetime.now(timezone.utc)
        if not payee or not payee.strip():
            raise ValidationError("Payee required")
        if payee == caller:
            raise ValidationError("Payee must differ from payer")
        asset = _asset(asset)
        vault = self._vault(asset)
        amount = _quantize(amount, vault.quantum)
        if amount <= 0:
            raise ValidationError("Escrow amount must be positive")
        if not milestones:
            raise ValidationError("At least one milestone required")
        if len(milestones) > self._params.max_milestones:
            raise LimitExceededError(
                f"Too many milestones: {len(milestones)} > {self._params.max_milestones}"
            )
        schedule = tuple(self._milestone(m, vault.quantum) for m in milestones)
        if sum(m.amount for m in schedule) != amount:
            raise ValidationError("Milestone amounts must sum to escrow amount")
        if vault.balance_of(caller) < amount:
            raise InsufficientFundsError("Escrow must be fully funded")

        vault.transfer(caller, self.account, amount, now)
        escrow = Escrow(
            escrow_id=self._store.next_id(_ESCROW_SEQ),
            payer=caller,
            payee=payee,
            asset=asset,
            amount=amount,
            milestones=schedule,
            fee_bps=self._params.platform_fee_bps,
            state=EscrowState.OPEN,
            created_utc=now,
        )
        self._store.put(_ESCROWS, escrow.escrow_id, escrow)
        self._index(caller, escrow.escrow_id)
        self._index(payee, escrow.escrow_id)
        self.guard.emit(EventKind.ESCROW_CREATED, caller, {
            "escrow_id": escrow.escrow_id,
            "payer": caller,
            "payee": payee,
            "asset": asset,
            "amount": amount,
            "milestones": [m.amount for m in schedule],
        }, now)
        return escrow

    @entry_point
    def release_milestone(
        self,
        caller: str,
        escrow_id: int,
        index: int,
        now: Optional[datetime] = None,
    ) -> EscrowSettlement:
        """Pay one milestone to the payee, less the platform fee."""
        if now is None:
            now = datetime.now(timezone.utc)
        escrow = self.get_escrow(escrow_id)
        if caller != escrow.payer and not self.guard.has_role(caller, Role.ARBITER):
            raise AuthorizationError("Only payer or arbiter can release")
        if escrow.state not in (EscrowState.OPEN, EscrowState.PARTIALLY_RELEASED):
            raise StateConflictError(f"Escrow is {escrow.state.value}")
        if not (0 <= index < len(escrow.milestones)):
            raise ValidationError("Milestone index out of range")
        milestone = escrow.milestones[index]
        if milestone.released:
            raise StateConflictError("Milestone already released")

        vault = self._vault(escrow.asset)
        fee, to_payee = self._split_fee(milestone.amount, escrow.fee_bps, vault.quantum)
        schedule = list(escrow.milestones)
        schedule[index] = replace(milestone, released=True, released_utc=now)
        all_released = all(m.released for m in schedule)
        new_state = EscrowState.RESOLVED if all_released else EscrowState.PARTIALLY_RELEASED
        if new_state != escrow.state:
            escrow.check_transition(new_state)

        self._payout(vault, escrow.payee, to_payee, fee, now)
        updated = replace(
            escrow,
            milestones=tuple(schedule),
            state=new_state,
            released_total=escrow.released_total + to_payee,
            fees_total=escrow.fees_total + fee,
            closed_utc=now if all_released else None,
        )
        self._store.put(_ESCROWS, escrow_id, updated)
        self.guard.emit(EventKind.ESCROW_RELEASED, caller, {
            "escrow_id": escrow_id,
            "milestone_index": index,
            "amount": to_payee,
            "fee": fee,
            "state": new_state,
        }, now)
        return EscrowSettlement(escrow_id, to_payee=to_payee, fee=fee, refund=Decimal("0"))

    @entry_point
    def raise_dispute(
        self,
        caller: str,
        escrow_id: int,
        reason: str = "",
        now: Optional[datetime] = None,
    ) -> Escrow:
        """Freeze releases until an arbiter resolves the escrow."""
        if now is None:
            now = datetime.now(timezone.utc)
        escrow = self.get_escrow(escrow_id)
        if caller not in (escrow.payer, escrow.payee):
            raise AuthorizationError("Only payer or payee can dispute")
        escrow.check_transition(EscrowState.DISPUTED)
        updated = replace(
            escrow,
            state=EscrowState.DISPUTED,
            disputed_by=caller,
            dispute_reason=reason,
        )
        self._store.put(_ESCROWS, escrow_id, updated)
        self.guard.emit(EventKind.ESCROW_DISPUTED, caller, {
            "escrow_id": escrow_id,
            "reason": reason,
        }, now)
        return updated

    @entry_point
    def resolve_dispute(
        self,
        caller: str,
        escrow_id: int,
        payer_share: int,
        now: Optional[datetime] = None,
    ) -> EscrowSettlement:
        """Split the unreleased remainder: payer_share percent back to the payer."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_role(caller, Role.ARBITER)
        escrow = self.get_escrow(escrow_id)
        if escrow.state != EscrowState.DISPUTED:
            raise StateConflictError("Escrow is not disputed")
        if isinstance(payer_share, bool) or not isinstance(payer_share, int):
            raise ValidationError("Payer share must be an integer percentage")
        if not (0 <= payer_share <= 100):
            raise ValidationError("Payer share must be between 0 and 100")

        vault = self._vault(escrow.asset)
        remainder = escrow.unreleased
        refund = _quantize(remainder * payer_share / 100, vault.quantum)
        fee, to_payee = self._split_fee(remainder - refund, escrow.fee_bps, vault.quantum)

        if refund > 0:
            vault.transfer(self.account, escrow.payer, refund, now)
        self._payout(vault, escrow.payee, to_payee, fee, now)
        updated = replace(
            escrow,
            state=EscrowState.RESOLVED,
            released_total=escrow.released_total + to_payee,
            fees_total=escrow.fees_total + fee,
            refunded_total=escrow.refunded_total + refund,
            closed_utc=now,
        )
        self._store.put(_ESCROWS, escrow_id, updated)
        self.guard.emit(EventKind.ESCROW_RESOLVED, caller, {
            "escrow_id": escrow_id,
            "payer_share": payer_share,
            "refund": refund,
            "to_payee": to_payee,
            "fee": fee,
        }, now)
        return EscrowSettlement(escrow_id, to_payee=to_payee, fee=fee, refund=refund)

    @entry_point
    def cancel_escrow(
        self,
        caller: str,
        escrow_id: int,
        now: Optional[datetime] = None,
    ) -> EscrowSettlement:
        """Refund the payer in full. Only possible before any release."""
        if now is None:
            now = datetime.now(timezone.utc)
        escrow = self.get_escrow(escrow_id)
        if caller != escrow.payer:
            raise AuthorizationError("Only payer can cancel")
        if escrow.state != EscrowState.OPEN:
            raise StateConflictError("Only open escrows can be cancelled")
        escrow.check_transition(EscrowState.CANCELLED)

        vault = self._vault(escrow.asset)
        vault.transfer(self.account, escrow.payer, escrow.amount, now)
        updated = replace(
            escrow,
            state=EscrowState.CANCELLED,
            refunded_total=escrow.amount,
            closed_utc=now,
        )
        self._store.put(_ESCROWS, escrow_id, updated)
        self.guard.emit(EventKind.ESCROW_CANCELLED, caller, {
            "escrow_id": escrow_id,
            "refund": escrow.amount,
        }, now)
        return EscrowSettlement(escrow_id, to_payee=Decimal("0"), fee=Decimal("0"), refund=escrow.amount)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_escrow(self, escrow_id: int) -> Escrow:
        return self._store.require(_ESCROWS, escrow_id, "Escrow not found")

    def escrows_for(self, account: str) -> list[Escrow]:
        return [self._store.get(_ESCROWS, e) for e in self._store.get(_BY_ACCOUNT, account, ())]

    @property
    def escrow_count(self) -> int:
        return self._store.current_id(_ESCROW_SEQ)

    def settlement_summary(self, escrow_id: int) -> dict[str, Any]:
        escrow = self.get_escrow(escrow_id)
        return {
            "escrow_id": escrow.escrow_id,
            "state": escrow.state.value,
            "funded": escrow.amount,
            "released": escrow.released_total,
            "fees": escrow.fees_total,
            "refunded": escrow.refunded_total,
            "unreleased": escrow.unreleased if not escrow.is_terminal else Decimal("0"),
            "conserved": escrow.settled_total <= escrow.amount
            and (not escrow.is_terminal or escrow.settled_total == escrow.amount),
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _vault(self, asset: SettlementAsset) -> AssetVault:
        vault = self._vaults.get(asset)
        if vault is None:
            raise ValidationError(f"Asset not supported: {asset.value}")
        return vault

    def _split_fee(
        self,
        amount: Decimal,
        fee_bps: int,
        quantum: Decimal,
    ) -> tuple[Decimal, Decimal]:
        fee = _quantize(amount * fee_bps / 10_000, quantum)
        return fee, amount - fee

    def _payout(
        self,
        vault: AssetVault,
        payee: str,
        to_payee: Decimal,
        fee: Decimal,
        now: datetime,
    ) -> None:
        if to_payee > 0:
            vault.transfer(self.account, payee, to_payee, now)
        if fee > 0:
            vault.transfer(self.account, self._params.treasury_account, fee, now)

    @staticmethod
    def _milestone(entry: MilestoneLike, quantum: Decimal) -> Milestone:
        if isinstance(entry, Milestone):
            description, amount = entry.description, entry.amount
        else:
            description, amount = entry
        if not description or not description.strip():
            raise ValidationError("Milestone description required")
        amount = _quantize(amount, quantum)
        if amount <= 0:
            raise ValidationError("Milestone amount must be positive")
        return Milestone(description=description, amount=amount)

    def _index(self, account: str, escrow_id: int) -> None:
        held = self._store.get(_BY_ACCOUNT, account, ())
        self._store.put(_BY_ACCOUNT, account, held + (escrow_id,))


def _asset(value: Union[SettlementAsset, str]) -> SettlementAsset:
    try:
        return SettlementAsset(value)
    except ValueError as e:
        raise ValidationError(f"Unknown asset: {value}") from e


def _quantize(value: Decimal, quantum: Decimal) -> Decimal:
    return quantize_amount(value, quantum)
