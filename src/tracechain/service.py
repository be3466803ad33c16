"""TraceChain service — unified facade over the ledger-state engine.

This is the interface the API layer calls. It wires every component onto
one LedgerRuntime and one AccessControl:
- Access control (roles, pause switch)
- Incentive token and settlement asset
- Rewards distributor
- Product and certificate registries
- Compliance engine
- Payment escrow
- Tenant factories for registries and compliance engines

Every operation returns a ServiceResult. Rejections raised by the
components are converted here and logged; components themselves never
catch their own errors. The event log is the audit trail: a rejected call
leaves nothing in it.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence

from loguru import logger

from tracechain.access.control import AccessControl
from tracechain.compliance.engine import ComplianceEngine
from tracechain.config import LedgerConfig
from tracechain.engine.runtime import LedgerRuntime, to_jsonable
from tracechain.errors import ErrorKind, LedgerError, ValidationError
from tracechain.factories.base import TenantFactory
from tracechain.factories.certificate_factory import CertificateRegistryFactory
from tracechain.factories.compliance_factory import ComplianceFactory
from tracechain.factories.product_factory import ProductRegistryFactory
from tracechain.models.access import Role
from tracechain.models.certificate import CertificateType
from tracechain.models.compliance import ComplianceEvidence
from tracechain.models.escrow import SettlementAsset
from tracechain.models.product import CheckpointInput, ProductInput
from tracechain.models.rewards import ActionRequest
from tracechain.models.tenancy import ComponentKind
from tracechain.payments.escrow import MilestoneLike, PaymentEscrow
from tracechain.persistence.event_log import EventLog
from tracechain.registry.certificates import CertificateRegistry
from tracechain.registry.products import ProductRegistry
from tracechain.rewards.distributor import RewardsDistributor
from tracechain.rewards.price_feed import PriceFeed
from tracechain.token.incentive_token import IncentiveToken
from tracechain.token.settlement import StablecoinLedger


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None


class TraceChainService:
    """Unified traceability engine facade.

    Usage:
        service = TraceChainService(LedgerConfig.default(), admin="admin")
        result = service.register_product("acme", "Vaccine", "pharmaceutical", "B-1", ...)
        if result.success:
            product_id = result.data["product_id"]
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        admin: str = "admin",
        event_log: Optional[EventLog] = None,
        price_feed: Optional[PriceFeed] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self._config = config or LedgerConfig.default()
        if event_log is None:
            event_log = EventLog(self._config.event_log_path)
        self._admin = admin
        self.runtime = LedgerRuntime(event_log)

        c = self._config
        self.access = AccessControl(self.runtime, admin, now=now)
        self.token = IncentiveToken(self.runtime, self.access, admin, c.token, now=now)
        self.settlement = StablecoinLedger(self.runtime, self.access, admin)
        self.rewards = RewardsDistributor(
            self.runtime, self.access, self.token, admin,
            params=c.rewards, price_feed=price_feed, now=now,
        )
        self.products = ProductRegistry(self.runtime, self.access, admin, c.registry)
        self.certificates = CertificateRegistry(self.runtime, self.access, admin, self.products)
        self.compliance = ComplianceEngine(
            self.runtime, self.access, admin, self.products, self.certificates, c.compliance,
        )
        self.payments = PaymentEscrow(
            self.runtime, self.access, admin, self.settlement, self.token, c.payments,
        )
        self.product_factory = ProductRegistryFactory(
            self.runtime, self.access, admin, self.settlement, c.factories,
            registry_params=c.registry,
        )
        self.certificate_factory = CertificateRegistryFactory(
            self.runtime, self.access, admin, self.settlement, c.factories,
        )
        self.compliance_factory = ComplianceFactory(
            self.runtime, self.access, admin, self.settlement, c.factories,
            compliance_params=c.compliance,
        )
        self.access.grant_role(admin, Role.DISTRIBUTOR, self.rewards.account, now=now)
        logger.info(
            "TraceChain engine ready ({} namespaces, {} events)",
            len(self.runtime.namespaces()), self.runtime.event_log.count,
        )

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @property
    def event_log(self) -> EventLog:
        return self.runtime.event_log

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    def grant_role(self, caller: str, role: Role, account: str) -> ServiceResult:
        return self._run("grant_role", lambda: self.access.grant_role(caller, role, account),
                         lambda granted: {"granted": granted})

    def revoke_role(self, caller: str, role: Role, account: str) -> ServiceResult:
        return self._run("revoke_role", lambda: self.access.revoke_role(caller, role, account),
                         lambda revoked: {"revoked": revoked})

    def pause(self, caller: str) -> ServiceResult:
        return self._run("pause", lambda: self.access.pause(caller))

    def unpause(self, caller: str) -> ServiceResult:
        return self._run("unpause", lambda: self.access.unpause(caller))

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def register_product(
        self,
        caller: str,
        name: str,
        product_type: str,
        batch_number: str,
        manufacture_utc: datetime,
        expiry_utc: datetime,
        raw_materials: Sequence[str],
        metadata_uri: str = "",
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run("register_product", lambda: self.products.register_product(
            caller, name, product_type, batch_number, manufacture_utc, expiry_utc,
            raw_materials, metadata_uri, now=now,
        ))

    def batch_register_products(
        self, caller: str, products: Sequence[ProductInput], now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run(
            "batch_register_products",
            lambda: self.products.batch_register_products(caller, products, now=now),
            lambda registered: {"product_ids": [p.product_id for p in registered]},
        )

    def add_checkpoint(
        self,
        caller: str,
        product_id: int,
        status: str,
        location: str,
        data: str = "",
        environment: Optional[dict[str, str]] = None,
        timestamp_utc: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run("add_checkpoint", lambda: self.products.add_checkpoint(
            caller, product_id, status, location, data, environment, timestamp_utc, now=now,
        ))

    def batch_add_checkpoints(
        self, caller: str, checkpoints: Sequence[CheckpointInput], now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run(
            "batch_add_checkpoints",
            lambda: self.products.batch_add_checkpoints(caller, checkpoints, now=now),
            lambda added: {"indexes": [c.index for c in added]},
        )

    def update_product(self, caller: str, product_id: int, **changes: Any) -> ServiceResult:
        return self._run("update_product",
                         lambda: self.products.update_product(caller, product_id, **changes))

    def delete_product(self, caller: str, product_id: int) -> ServiceResult:
        return self._run("delete_product", lambda: self.products.delete_product(caller, product_id))

    def reactivate_product(self, caller: str, product_id: int) -> ServiceResult:
        return self._run("reactivate_product",
                         lambda: self.products.reactivate_product(caller, product_id))

    def add_stakeholder(self, caller: str, product_id: int, stakeholder: str) -> ServiceResult:
        return self._run("add_stakeholder",
                         lambda: self.products.add_stakeholder(caller, product_id, stakeholder))

    def remove_stakeholder(self, caller: str, product_id: int, stakeholder: str) -> ServiceResult:
        return self._run("remove_stakeholder",
                         lambda: self.products.remove_stakeholder(caller, product_id, stakeholder))

    def get_product(self, product_id: int) -> ServiceResult:
        return self._run("get_product", lambda: self.products.get_product(product_id))

    def get_product_by_batch_number(self, batch_number: str) -> ServiceResult:
        product = self.products.get_product_by_batch_number(batch_number)
        if product is None:
            return ServiceResult(
                success=False,
                errors=[f"No product with batch number {batch_number}"],
                error_kind=ErrorKind.VALIDATION,
            )
        return ServiceResult(success=True, data=_describe(product))

    def get_checkpoints(self, product_id: int) -> ServiceResult:
        return self._run(
            "get_checkpoints",
            lambda: self.products.get_checkpoints(product_id),
            lambda checkpoints: {"checkpoints": [_describe(c) for c in checkpoints]},
        )

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    def mint_certificate(
        self,
        caller: str,
        to: str,
        product_id: int,
        certificate_type: CertificateType,
        expiry_utc: datetime,
        issuer: str,
        verification_code: str,
        standards: Sequence[str] = (),
        metadata_uri: str = "",
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run("mint_certificate", lambda: self.certificates.mint_certificate(
            caller, to, product_id, certificate_type, expiry_utc, issuer,
            verification_code, standards, metadata_uri, now=now,
        ))

    def verify_certificate(self, certificate_id: int, now: Optional[datetime] = None) -> ServiceResult:
        return self._run("verify_certificate",
                         lambda: self.certificates.verify_certificate(certificate_id, now))

    def verify_by_code(self, verification_code: str, now: Optional[datetime] = None) -> ServiceResult:
        return self._run("verify_by_code",
                         lambda: self.certificates.verify_by_code(verification_code, now))

    def invalidate_certificate(self, caller: str, certificate_id: int, reason: str = "") -> ServiceResult:
        return self._run("invalidate_certificate",
                         lambda: self.certificates.invalidate_certificate(caller, certificate_id, reason))

    def get_certificate(self, certificate_id: int) -> ServiceResult:
        return self._run("get_certificate", lambda: self.certificates.get_certificate(certificate_id))

    # ------------------------------------------------------------------
    # Compliance
    # ------------------------------------------------------------------

    def add_compliance_rule(
        self,
        caller: str,
        code: str,
        title: str,
        applicable_type: str,
        description: str,
        standard: str,
        weight: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run("add_compliance_rule", lambda: self.compliance.add_compliance_rule(
            caller, code, title, applicable_type, description, standard, weight, now=now,
        ))

    def check_compliance(
        self,
        caller: str,
        product_id: int,
        rule_id: int,
        evidence: Optional[ComplianceEvidence] = None,
        evidence_ref: str = "",
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run("check_compliance", lambda: self.compliance.check_compliance(
            caller, product_id, rule_id, evidence, evidence_ref, now=now,
        ))

    def get_compliance_stats(self) -> ServiceResult:
        stats = self.compliance.get_compliance_stats()
        data = _describe(stats)
        data["pass_rate"] = stats.pass_rate
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def mint_settlement(self, caller: str, to: str, amount: Decimal) -> ServiceResult:
        return self._run("mint_settlement", lambda: self.settlement.mint(caller, to, amount))

    def create_escrow(
        self,
        caller: str,
        payee: str,
        amount: Decimal,
        milestones: Sequence[MilestoneLike],
        asset: SettlementAsset = SettlementAsset.SETTLEMENT,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run("create_escrow", lambda: self.payments.create_escrow(
            caller, payee, amount, milestones, asset, now=now,
        ))

    def release_milestone(self, caller: str, escrow_id: int, index: int) -> ServiceResult:
        return self._run("release_milestone",
                         lambda: self.payments.release_milestone(caller, escrow_id, index))

    def raise_dispute(self, caller: str, escrow_id: int, reason: str = "") -> ServiceResult:
        return self._run("raise_dispute",
                         lambda: self.payments.raise_dispute(caller, escrow_id, reason))

    def resolve_dispute(self, caller: str, escrow_id: int, payer_share: int) -> ServiceResult:
        return self._run("resolve_dispute",
                         lambda: self.payments.resolve_dispute(caller, escrow_id, payer_share))

    def cancel_escrow(self, caller: str, escrow_id: int) -> ServiceResult:
        return self._run("cancel_escrow", lambda: self.payments.cancel_escrow(caller, escrow_id))

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------

    def process_user_action(
        self,
        caller: str,
        user: str,
        action: str,
        metadata: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run("process_user_action", lambda: self.rewards.process_user_action(
            caller, user, action, metadata, now=now,
        ))

    def batch_process_actions(
        self, caller: str, entries: Sequence[ActionRequest], now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run(
            "batch_process_actions",
            lambda: self.rewards.batch_process_actions(caller, entries, now=now),
            lambda result: result.to_dict(),
        )

    def claim_rewards(self, caller: str, now: Optional[datetime] = None) -> ServiceResult:
        return self._run("claim_rewards", lambda: self.rewards.claim_rewards(caller, now=now),
                         lambda amount: {"amount": str(amount)})

    def set_reward_rate(self, caller: str, action: str, base_rate: Decimal) -> ServiceResult:
        return self._run("set_reward_rate",
                         lambda: self.rewards.set_reward_rate(caller, action, base_rate))

    def toggle_category(self, caller: str, action: str) -> ServiceResult:
        return self._run("toggle_category", lambda: self.rewards.toggle_category(caller, action),
                         lambda active: {"is_active": active})

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def deploy_product_registry(
        self, caller: str, tenant_key: str, payment: Decimal, organization: str = "",
    ) -> ServiceResult:
        return self._run("deploy_product_registry", lambda: (
            self.product_factory.deploy_product_registry(caller, tenant_key, payment, organization)
        ))

    def deploy_certificate_registry(
        self,
        caller: str,
        tenant_key: str,
        products: ProductRegistry,
        payment: Decimal,
        organization: str = "",
    ) -> ServiceResult:
        return self._run("deploy_certificate_registry", lambda: (
            self.certificate_factory.deploy_certificate_registry(
                caller, tenant_key, products, payment, organization,
            )
        ))

    def deploy_compliance_contract(
        self,
        caller: str,
        industry: str,
        products: ProductRegistry,
        payment: Decimal,
        certificates: Optional[CertificateRegistry] = None,
        organization: str = "",
    ) -> ServiceResult:
        return self._run("deploy_compliance_contract", lambda: (
            self.compliance_factory.deploy_compliance_contract(
                caller, industry, products, payment, certificates, organization,
            )
        ))

    def deactivate_instance(
        self, caller: str, kind: ComponentKind, instance_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run("deactivate_instance", lambda: (
            self._factory(kind).deactivate(caller, instance_id, now=now)
        ))

    def reactivate_instance(
        self, caller: str, kind: ComponentKind, instance_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._run("reactivate_instance", lambda: (
            self._factory(kind).reactivate(caller, instance_id, now=now)
        ))

    def _factory(self, kind: ComponentKind) -> TenantFactory:
        try:
            kind = ComponentKind(kind)
        except ValueError as e:
            raise ValidationError(f"Unknown component kind: {kind}") from e
        return {
            ComponentKind.PRODUCT_REGISTRY: self.product_factory,
            ComponentKind.CERTIFICATE_REGISTRY: self.certificate_factory,
            ComponentKind.COMPLIANCE_ENGINE: self.compliance_factory,
        }[kind]

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        supply = self.token.supply_breakdown()
        return {
            "paused": self.access.paused(),
            "products": self.products.product_count,
            "certificates": self.certificates.total_supply,
            "escrows": self.payments.escrow_count,
            "compliance": _describe(self.compliance.get_compliance_stats()),
            "token": _describe(supply),
            "supply_audit": self.token.audit_supply(),
            "events": self.event_log.count,
            "events_by_kind": self.event_log.count_by_kind(),
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        call: Callable[[], Any],
        describe: Optional[Callable[[Any], dict[str, Any]]] = None,
    ) -> ServiceResult:
        try:
            result = call()
        except LedgerError as e:
            logger.warning("{} rejected ({}): {}", operation, e.kind.value, e.reason)
            return ServiceResult(success=False, errors=[e.reason], error_kind=e.kind)
        return ServiceResult(success=True, data=(describe or _describe)(result))


def _describe(result: Any) -> dict[str, Any]:
    if result is None or isinstance(result, bool):
        return {}
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        return to_jsonable(dataclasses.asdict(result))
    return {"value": to_jsonable(result)}
