"""Compliance factory — one compliance engine per industry.

The tenant key is the industry, so each industry has at most one engine.
Deployed engines report their rule and check counts back here.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from tracechain.compliance.engine import ComplianceEngine
from tracechain.config import ComplianceParams
from tracechain.engine.guard import entry_point
from tracechain.factories.base import TenantFactory
from tracechain.models.tenancy import ComponentKind, TenantInstance
from tracechain.registry.certificates import CertificateRegistry
from tracechain.registry.products import ProductRegistry


class ComplianceFactory(TenantFactory):
    kind = ComponentKind.COMPLIANCE_ENGINE

    def __init__(self, *args, compliance_params: Optional[ComplianceParams] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._compliance_params = compliance_params

    @entry_point
    def deploy_compliance_contract(
        self,
        caller: str,
        industry: str,
        products: ProductRegistry,
        payment: Decimal,
        certificates: Optional[CertificateRegistry] = None,
        organization: str = "",
        metadata: str = "",
        now: Optional[datetime] = None,
    ) -> TenantInstance:
        def build(namespace: str, owner: str) -> ComplianceEngine:
            return ComplianceEngine(
                self._runtime, self._access, owner, products, certificates,
                params=self._compliance_params, industry=industry, namespace=namespace,
            )

        def attach(engine: ComplianceEngine, instance: TenantInstance) -> None:
            engine.attach_reporter(self, instance.instance_id, instance.account)

        return self._deploy(
            caller, industry, payment, organization, metadata, now, build, attach,
        )

    def get_instance_by_industry(self, industry: str) -> Optional[TenantInstance]:
        return self.get_instance_by_key(industry)

    def deactivate_compliance_contract(
        self, caller: str, instance_id: int, now: Optional[datetime] = None,
    ) -> TenantInstance:
        return self.deactivate(caller, instance_id, now)

    def reactivate_compliance_contract(
        self, caller: str, instance_id: int, now: Optional[datetime] = None,
    ) -> TenantInstance:
        return self.reactivate(caller, instance_id, now)
