"""Certificate registry factory — certificate issuers bound to a tenant's product registry."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from tracechain.engine.guard import entry_point
from tracechain.factories.base import TenantFactory
from tracechain.models.tenancy import ComponentKind, TenantInstance
from tracechain.registry.certificates import CertificateRegistry
from tracechain.registry.products import ProductRegistry


class CertificateRegistryFactory(TenantFactory):
    kind = ComponentKind.CERTIFICATE_REGISTRY

    @entry_point
    def deploy_certificate_registry(
        self,
        caller: str,
        tenant_key: str,
        products: ProductRegistry,
        payment: Decimal,
        organization: str = "",
        metadata: str = "",
        now: Optional[datetime] = None,
    ) -> TenantInstance:
        """Deploy a CertificateRegistry that mints against `products`."""

        def build(namespace: str, owner: str) -> CertificateRegistry:
            return CertificateRegistry(
                self._runtime, self._access, owner, products, namespace=namespace,
            )

        return self._deploy(caller, tenant_key, payment, organization, metadata, now, build)

    def deactivate_certificate_registry(
        self, caller: str, instance_id: int, now: Optional[datetime] = None,
    ) -> TenantInstance:
        return self.deactivate(caller, instance_id, now)

    def reactivate_certificate_registry(
        self, caller: str, instance_id: int, now: Optional[datetime] = None,
    ) -> TenantInstance:
        return self.reactivate(caller, instance_id, now)
