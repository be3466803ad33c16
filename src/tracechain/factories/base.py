"""Tenant factory — deploys isolated component instances per organization.

A deployment allocates a fresh store namespace on the shared runtime and
builds a component inside it, owned by the deploying caller. The factory
keeps a directory of tenant key → instance; tenant keys are unique for the
factory's whole lifetime, so a deactivated tenant is brought back with
reactivate rather than redeployed.

Deployment fee: the caller pays `payment` in the settlement asset. It must
cover the fee; the full payment is collected and any excess is refunded
in the same unit of work.

Deployed instances report their rule/check counts back through
update_rule_count / update_check_count, callable only by the instance's own
account, which keeps get_factory_stats O(1).
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from loguru import logger

from tracechain.access.control import AccessControl
from tracechain.config import FactoryParams
from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import (
    AuthorizationError,
    InsufficientFundsError,
    StateConflictError,
    ValidationError,
)
from tracechain.models.access import Role
from tracechain.models.amounts import quantize_amount
from tracechain.models.tenancy import ComponentKind, FactoryStats, TenantInstance
from tracechain.persistence.event_log import EventKind
from tracechain.token.settlement import SETTLEMENT_QUANTUM, StablecoinLedger, settlement_amount

_INSTANCES = "instances"
_COMPONENTS = "components"
_BY_OWNER = "by_owner"
_STATS = "stats"
_META = "meta"
_INSTANCE_SEQ = "instance"


class TenantFactory:
    """Directory and fee collector shared by the three component factories.

    Subclasses supply the component kind and a deploy_* method that calls
    _deploy with a builder for their component.
    """

    kind: ComponentKind

    def __init__(
        self,
        runtime: LedgerRuntime,
        access: AccessControl,
        owner: str,
        settlement: StablecoinLedger,
        params: Optional[FactoryParams] = None,
        namespace: Optional[str] = None,
    ) -> None:
        params = params or FactoryParams()
        self._runtime = runtime
        self._access = access
        self._settlement = settlement
        self._store = runtime.open_store(namespace or f"factory:{self.kind.value}")
        self.account = f"{self._store.namespace}:fees"
        with runtime.atomic():
            self.guard = AccessGuard(runtime, self._store, access, owner)
            self._store.put(_META, "deployment_fee", settlement_amount_or_zero(params.deployment_fee))

    @property
    def deployment_fee(self) -> Decimal:
        return self._store.get(_META, "deployment_fee")

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    def _deploy(
        self,
        caller: str,
        tenant_key: str,
        payment: Decimal,
        organization: str,
        metadata: str,
        now: Optional[datetime],
        build: Callable[[str, str], Any],
        attach: Optional[Callable[[Any, TenantInstance], None]] = None,
    ) -> TenantInstance:
        """Collect the fee, allocate a namespace, build and record the instance.

        Must run inside an entry point.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if not tenant_key or not tenant_key.strip():
            raise ValidationError("Tenant key required")
        fee = self.deployment_fee
        payment = settlement_amount_or_zero(payment)
        if payment < fee:
            raise InsufficientFundsError(
                f"Insufficient deployment fee: {payment} < {fee}"
            )
        existing = self.get_instance_by_key(tenant_key)
        if existing is not None:
            if existing.is_active:
                raise StateConflictError(f"Tenant key already deployed: {tenant_key}")
            raise StateConflictError(
                f"Tenant key belongs to a deactivated instance; reactivate it: {tenant_key}"
            )
        if self._settlement.balance_of(caller) < payment:
            raise InsufficientFundsError("Insufficient balance for deployment payment")

        if payment > 0:
            self._settlement.transfer(caller, self.account, payment, now)
        excess = payment - fee
        if excess > 0:
            self._settlement.transfer(self.account, caller, excess, now)

        instance_id = self._store.next_id(_INSTANCE_SEQ)
        namespace = f"{self._store.namespace}/{instance_id}"
        component = build(namespace, caller)
        component.guard.set_availability(lambda: self.is_active(instance_id))

        instance = TenantInstance(
            instance_id=instance_id,
            kind=self.kind,
            tenant_key=tenant_key,
            namespace=namespace,
            account=f"instance:{namespace}",
            owner=caller,
            organization=organization or caller,
            metadata=metadata,
            fee_paid=fee,
            created_utc=now,
        )
        self._store.insert(_INSTANCES, instance)
        self._store.put(_COMPONENTS, instance_id, component)
        held = self._store.get(_BY_OWNER, caller, ())
        self._store.put(_BY_OWNER, caller, held + (instance_id,))
        self._store.increment(_STATS, "total_instances")
        self._store.increment(_STATS, "active_instances")
        self._store.increment(_STATS, "fees_collected", fee)
        if attach is not None:
            attach(component, instance)

        logger.info(
            "Deployed {} instance {} for tenant {} (owner {})",
            self.kind.value, instance_id, tenant_key, caller,
        )
        self.guard.emit(EventKind.INSTANCE_DEPLOYED, caller, {
            "instance_id": instance_id,
            "kind": self.kind,
            "tenant_key": tenant_key,
            "namespace": namespace,
            "owner": caller,
            "fee": fee,
            "refund": max(excess, Decimal("0")),
        }, now)
        return instance

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    @entry_point
    def deactivate(
        self,
        caller: str,
        instance_id: int,
        now: Optional[datetime] = None,
    ) -> TenantInstance:
        """Take an instance offline. Its data stays readable."""
        if now is None:
            now = datetime.now(timezone.utc)
        instance = self.get_instance(instance_id)
        self._require_instance_admin(caller, instance)
        if not instance.is_active:
            raise StateConflictError("Instance already deactivated")
        updated = replace(instance, is_active=False, deactivated_utc=now)
        self._store.put(_INSTANCES, instance_id, updated)
        self._store.increment(_STATS, "active_instances", -1)
        self.guard.emit(EventKind.INSTANCE_DEACTIVATED, caller, {
            "instance_id": instance_id,
            "tenant_key": instance.tenant_key,
        }, now)
        return updated

    @entry_point
    def reactivate(
        self,
        caller: str,
        instance_id: int,
        now: Optional[datetime] = None,
    ) -> TenantInstance:
        if now is None:
            now = datetime.now(timezone.utc)
        instance = self.get_instance(instance_id)
        self._require_instance_admin(caller, instance)
        if instance.is_active:
            raise StateConflictError("Instance already active")
        updated = replace(instance, is_active=True, deactivated_utc=None)
        self._store.put(_INSTANCES, instance_id, updated)
        self._store.increment(_STATS, "active_instances")
        self.guard.emit(EventKind.INSTANCE_REACTIVATED, caller, {
            "instance_id": instance_id,
            "tenant_key": instance.tenant_key,
        }, now)
        return updated

    # ------------------------------------------------------------------
    # Instance callbacks
    # ------------------------------------------------------------------

    @entry_point
    def update_rule_count(
        self,
        caller: str,
        instance_id: int,
        count: int,
        now: Optional[datetime] = None,
    ) -> None:
        self._update_count(caller, instance_id, "rule_count", "total_rules", count, now)

    @entry_point
    def update_check_count(
        self,
        caller: str,
        instance_id: int,
        count: int,
        now: Optional[datetime] = None,
    ) -> None:
        self._update_count(caller, instance_id, "check_count", "total_checks", count, now)

    def _update_count(
        self,
        caller: str,
        instance_id: int,
        field_name: str,
        stat: str,
        count: int,
        now: Optional[datetime],
    ) -> None:
        instance = self.get_instance(instance_id)
        if caller != instance.account:
            raise AuthorizationError("Only the deployed instance may report its counts")
        if count < 0:
            raise ValidationError("Count must be >= 0")
        delta = count - getattr(instance, field_name)
        self._store.put(_INSTANCES, instance_id, replace(instance, **{field_name: count}))
        self._store.increment(_STATS, stat, delta)
        self.guard.emit(EventKind.INSTANCE_STATS_UPDATED, caller, {
            "instance_id": instance_id,
            field_name: count,
        }, now)

    # ------------------------------------------------------------------
    # Fees
    # ------------------------------------------------------------------

    @entry_point
    def set_deployment_fee(
        self,
        caller: str,
        fee: Decimal,
        now: Optional[datetime] = None,
    ) -> Decimal:
        self.guard.require_owner_or_role(caller, Role.FACTORY)
        fee = settlement_amount_or_zero(fee)
        previous = self.deployment_fee
        self._store.put(_META, "deployment_fee", fee)
        self.guard.emit(EventKind.DEPLOYMENT_FEE_UPDATED, caller, {
            "previous": previous,
            "fee": fee,
        }, now)
        return fee

    @entry_point
    def withdraw_fees(
        self,
        caller: str,
        to: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """Send every collected fee to `to` (default: the owner)."""
        self.guard.require_owner(caller)
        amount = self._settlement.balance_of(self.account)
        if amount <= 0:
            raise StateConflictError("No fees to withdraw")
        recipient = to or caller
        self._settlement.transfer(self.account, recipient, amount, now)
        self.guard.emit(EventKind.FACTORY_FEES_WITHDRAWN, caller, {
            "to": recipient,
            "amount": amount,
        }, now)
        return amount

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

    def get_instance(self, instance_id: int) -> TenantInstance:
        return self._store.require(_INSTANCES, instance_id, "Instance not found")

    def get_instance_by_key(self, tenant_key: str) -> Optional[TenantInstance]:
        instance_id = self._store.lookup_unique("tenant_key", tenant_key)
        if instance_id is None:
            return None
        return self._store.get(_INSTANCES, instance_id)

    def instances_of(self, owner: str) -> list[TenantInstance]:
        return [self._store.get(_INSTANCES, i) for i in self._store.get(_BY_OWNER, owner, ())]

    def component(self, instance_id: int) -> Any:
        self.get_instance(instance_id)
        return self._store.get(_COMPONENTS, instance_id)

    def is_active(self, instance_id: int) -> bool:
        instance = self._store.get(_INSTANCES, instance_id)
        return instance is not None and instance.is_active

    def get_factory_stats(self) -> FactoryStats:
        return FactoryStats(
            total_instances=self._store.get(_STATS, "total_instances", 0),
            active_instances=self._store.get(_STATS, "active_instances", 0),
            total_rules=self._store.get(_STATS, "total_rules", 0),
            total_checks=self._store.get(_STATS, "total_checks", 0),
            fees_collected=self._store.get(_STATS, "fees_collected", Decimal("0")),
            deployment_fee=self.deployment_fee,
        )

    def _require_instance_admin(self, caller: str, instance: TenantInstance) -> None:
        component = self._store.get(_COMPONENTS, instance.instance_id)
        if caller == component.guard.owner or self.guard.is_owner(caller):
            return
        if self.guard.has_role(caller, Role.FACTORY):
            return
        raise AuthorizationError("Only the instance owner or factory owner can change availability")


def settlement_amount_or_zero(value: Decimal) -> Decimal:
    amount = quantize_amount(value, SETTLEMENT_QUANTUM)
    if amount.is_signed():
        raise ValidationError("Amount must be >= 0")
    if amount == 0:
        return Decimal("0")
    return settlement_amount(amount)
