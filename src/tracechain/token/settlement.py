"""Stable settlement asset — the unit escrow payments and deployment fees use.

Issuance models the fiat bridge: an admin mints against deposits held
off-ledger. There is no burn; withdrawals to fiat are out of scope.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from tracechain.access.control import AccessControl
from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import InsufficientFundsError, ValidationError
from tracechain.models.access import Role
from tracechain.models.amounts import quantize_amount
from tracechain.persistence.event_log import EventKind

SETTLEMENT_QUANTUM = Decimal("0.000001")

_BALANCES = "balances"
_TOTALS = "totals"


class StablecoinLedger:
    """Minimal balance ledger for the settlement asset.

    Usage:
        usd = StablecoinLedger(runtime, access, owner="admin")
        usd.mint("admin", "alice", Decimal("500"))
        usd.transfer("alice", "bob", Decimal("20"))
    """

    quantum = SETTLEMENT_QUANTUM

    def __init__(
        self,
        runtime: LedgerRuntime,
        access: AccessControl,
        owner: str,
        symbol: str = "USDS",
        namespace: str = "settlement",
    ) -> None:
        self.symbol = symbol
        self._store = runtime.open_store(namespace)
        with runtime.atomic():
            self.guard = AccessGuard(runtime, self._store, access, owner)

    def balance_of(self, account: str) -> Decimal:
        return self._store.get(_BALANCES, account, Decimal("0"))

    @property
    def total_issued(self) -> Decimal:
        return self._store.get(_TOTALS, "issued", Decimal("0"))

    @entry_point
    def mint(
        self,
        caller: str,
        to: str,
        amount: Decimal,
        now: Optional[datetime] = None,
    ) -> bool:
        self.guard.require_role(caller, Role.ADMIN)
        amount = settlement_amount(amount)
        if not to:
            raise ValidationError("Recipient required")
        self._store.put(_BALANCES, to, self.balance_of(to) + amount)
        self._store.increment(_TOTALS, "issued", amount)
        self.guard.emit(EventKind.SETTLEMENT_MINTED, caller, {
            "to": to,
            "amount": amount,
        }, now)
        return True

    @entry_point
    def transfer(
        self,
        caller: str,
        to: str,
        amount: Decimal,
        now: Optional[datetime] = None,
    ) -> bool:
        amount = settlement_amount(amount)
        if not to:
            raise ValidationError("Recipient required")
        balance = self.balance_of(caller)
        if balance < amount:
            raise InsufficientFundsError("Insufficient balance")
        self._store.put(_BALANCES, caller, balance - amount)
        self._store.put(_BALANCES, to, self.balance_of(to) + amount)
        self.guard.emit(EventKind.SETTLEMENT_TRANSFERRED, caller, {
            "from": caller,
            "to": to,
            "amount": amount,
        }, now)
        return True


def settlement_amount(value: Decimal) -> Decimal:
    amount = quantize_amount(value, SETTLEMENT_QUANTUM)
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount
