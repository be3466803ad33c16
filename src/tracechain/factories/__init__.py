"""Multi-tenant factories for registries and compliance engines."""

from tracechain.factories.base import TenantFactory
from tracechain.factories.certificate_factory import CertificateRegistryFactory
from tracechain.factories.compliance_factory import ComplianceFactory
from tracechain.factories.product_factory import ProductRegistryFactory

__all__ = [
    "CertificateRegistryFactory",
    "ComplianceFactory",
    "ProductRegistryFactory",
    "TenantFactory",
]
