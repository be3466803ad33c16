"""Certificate data models."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Hashable, Optional


class CertificateType(str, enum.Enum):
    AUTHENTICITY = "authenticity"
    COMPLIANCE = "compliance"
    QUALITY = "quality"


@dataclass(frozen=True)
class Certificate:
    """An ownable certificate bound to one product slot.

    Expiry is evaluated at read time; is_valid only ever goes from True to
    False through invalidation.
    """
    certificate_id: int
    product_id: int
    certificate_type: CertificateType
    holder: str
    issuer: str
    standards: tuple[str, ...]
    metadata_uri: str
    verification_code: str
    issued_utc: datetime
    expiry_utc: datetime
    minted_by: str
    is_valid: bool = True
    invalidated_utc: Optional[datetime] = None
    invalidation_reason: str = ""

    @property
    def record_id(self) -> Hashable:
        return self.certificate_id

    def unique_keys(self) -> dict[str, Hashable]:
        return {"verification_code": self.verification_code}

    def is_expired(self, now: datetime) -> bool:
        return self.expiry_utc <= now


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verify_certificate / verify_by_code."""
    valid: bool
    reason: str
    certificate_id: Optional[int] = None
