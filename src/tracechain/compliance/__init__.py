"""Compliance rules, evidence scoring and recorded checks."""

from tracechain.compliance.engine import ComplianceEngine
from tracechain.compliance.scoring import score_evidence

__all__ = ["ComplianceEngine", "score_evidence"]
