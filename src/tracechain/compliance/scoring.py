"""Compliance confidence scoring — deterministic and side-effect free.

Raw evidence score (0-100):
    documentation   10 points per document, up to 40
    certificates    10 points per valid certificate, up to 30
    inspection      30 points if an inspection was performed and passed

The rule weight (1-100) scales how harshly missing evidence counts:
    confidence = raw - (100 - raw) × weight / 100, clamped to [0, 100]

A check passes when confidence reaches the threshold and no inspection
failed. A failed inspection fails the check regardless of score.
"""

from __future__ import annotations

from tracechain.errors import ValidationError
from tracechain.models.compliance import ComplianceEvidence, ScoreBreakdown

DOCUMENT_POINTS = 10
MAX_DOCUMENT_POINTS = 40
CERTIFICATE_POINTS = 10
MAX_CERTIFICATE_POINTS = 30
INSPECTION_POINTS = 30

MIN_WEIGHT = 1
MAX_WEIGHT = 100


def validate_weight(weight: int) -> None:
    if isinstance(weight, bool) or not isinstance(weight, int):
        raise ValidationError("Rule weight must be an integer")
    if not (MIN_WEIGHT <= weight <= MAX_WEIGHT):
        raise ValidationError(f"Rule weight must be between {MIN_WEIGHT} and {MAX_WEIGHT}")


def score_evidence(
    evidence: ComplianceEvidence,
    valid_certificates: int,
    weight: int,
    threshold: int,
) -> ScoreBreakdown:
    """Score evidence against a rule weight.

    valid_certificates is the number of evidence certificates the caller
    has already verified as valid for the product.
    """
    validate_weight(weight)
    if valid_certificates < 0:
        raise ValidationError("Certificate count must be >= 0")

    documents = sum(1 for d in evidence.documents if d and d.strip())
    documentation_points = min(documents * DOCUMENT_POINTS, MAX_DOCUMENT_POINTS)
    certificate_points = min(valid_certificates * CERTIFICATE_POINTS, MAX_CERTIFICATE_POINTS)
    inspection_points = INSPECTION_POINTS if evidence.inspection_passed is True else 0
    raw = documentation_points + certificate_points + inspection_points

    penalty = (100 - raw) * weight // 100
    confidence = max(0, min(100, raw - penalty))
    passed = confidence >= threshold and evidence.inspection_passed is not False
    return ScoreBreakdown(
        documentation_points=documentation_points,
        certificate_points=certificate_points,
        inspection_points=inspection_points,
        raw_score=raw,
        confidence=confidence,
        passed=passed,
    )
