"""Factory tenant records."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Hashable, Optional


class ComponentKind(str, enum.Enum):
    PRODUCT_REGISTRY = "product_registry"
    CERTIFICATE_REGISTRY = "certificate_registry"
    COMPLIANCE_ENGINE = "compliance_engine"


@dataclass(frozen=True)
class TenantInstance:
    """A deployed, isolated component instance owned by one organization.

    account is the instance's own identity: it is the only caller allowed
    to report rule/check counts back to the factory.
    """
    instance_id: int
    kind: ComponentKind
    tenant_key: str
    namespace: str
    account: str
    owner: str
    organization: str
    metadata: str
    fee_paid: Decimal
    created_utc: datetime
    is_active: bool = True
    rule_count: int = 0
    check_count: int = 0
    deactivated_utc: Optional[datetime] = None

    @property
    def record_id(self) -> Hashable:
        return self.instance_id

    def unique_keys(self) -> dict[str, Hashable]:
        return {"tenant_key": self.tenant_key}


@dataclass(frozen=True)
class FactoryStats:
    total_instances: int
    active_instances: int
    total_rules: int
    total_checks: int
    fees_collected: Decimal
    deployment_fee: Decimal
