"""Compliance rule and check data models.

Rules are immutable once any check has been evaluated against them; from
then on a change is made by replacement (a new rule that supersedes the
old one) rather than amendment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Hashable, Optional

ANY_PRODUCT_TYPE = "*"


@dataclass(frozen=True)
class ComplianceRule:
    rule_id: int
    code: str
    title: str
    applicable_type: str
    description: str
    standard: str
    weight: int
    created_by: str
    created_utc: datetime
    is_active: bool = True
    check_count: int = 0
    supersedes: Optional[int] = None
    superseded_by: Optional[int] = None

    @property
    def record_id(self) -> Hashable:
        return self.rule_id

    def unique_keys(self) -> dict[str, Hashable]:
        return {"rule_code": self.code}

    def applies_to(self, product_type: str) -> bool:
        return self.applicable_type in (ANY_PRODUCT_TYPE, product_type)


@dataclass(frozen=True)
class ComplianceEvidence:
    """Evidence submitted with a compliance check.

    inspection_passed is tri-state: None means no inspection was performed,
    False means an inspection was performed and failed.
    """
    documents: tuple[str, ...] = ()
    certificate_ids: tuple[int, ...] = ()
    inspection_passed: Optional[bool] = None
    notes: str = ""


@dataclass(frozen=True)
class ScoreBreakdown:
    """Output of the pure scoring function."""
    documentation_points: int
    certificate_points: int
    inspection_points: int
    raw_score: int
    confidence: int
    passed: bool


@dataclass(frozen=True)
class ComplianceCheck:
    check_id: int
    product_id: int
    rule_id: int
    checked_by: str
    checked_utc: datetime
    confidence: int
    passed: bool
    evidence_ref: str
    valid_certificates: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ComplianceStats:
    total_rules: int
    active_rules: int
    total_checks: int
    passed_checks: int
    failed_checks: int

    @property
    def pass_rate(self) -> float:
        if self.total_checks == 0:
            return 0.0
        return self.passed_checks / self.total_checks
