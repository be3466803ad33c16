"""Product provenance and certificate registries."""

from tracechain.registry.certificates import CertificateRegistry
from tracechain.registry.products import ProductRegistry

__all__ = ["CertificateRegistry", "ProductRegistry"]
