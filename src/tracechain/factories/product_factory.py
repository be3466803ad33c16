"""Product registry factory — one isolated ProductRegistry per organization."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from tracechain.config import RegistryParams
from tracechain.engine.guard import entry_point
from tracechain.factories.base import TenantFactory
from tracechain.models.tenancy import ComponentKind, TenantInstance
from tracechain.registry.products import ProductRegistry


class ProductRegistryFactory(TenantFactory):
    """Usage:
        factory = ProductRegistryFactory(runtime, access, "platform", settlement)
        instance = factory.deploy_product_registry("acme", "acme-corp", Decimal("0.1"))
        registry = factory.component(instance.instance_id)
    """

    kind = ComponentKind.PRODUCT_REGISTRY

    def __init__(self, *args, registry_params: Optional[RegistryParams] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._registry_params = registry_params

    @entry_point
    def deploy_product_registry(
        self,
        caller: str,
        tenant_key: str,
        payment: Decimal,
        organization: str = "",
        metadata: str = "",
        now: Optional[datetime] = None,
    ) -> TenantInstance:
        def build(namespace: str, owner: str) -> ProductRegistry:
            return ProductRegistry(
                self._runtime, self._access, owner,
                params=self._registry_params, namespace=namespace,
            )

        return self._deploy(caller, tenant_key, payment, organization, metadata, now, build)

    def deactivate_product_registry(
        self, caller: str, instance_id: int, now: Optional[datetime] = None,
    ) -> TenantInstance:
        return self.deactivate(caller, instance_id, now)

    def reactivate_product_registry(
        self, caller: str, instance_id: int, now: Optional[datetime] = None,
    ) -> TenantInstance:
        return self.reactivate(caller, instance_id, now)
