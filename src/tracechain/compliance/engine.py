"""Compliance engine — per-industry rules and recorded compliance checks.

Rules are keyed by a unique code. Once a check has been evaluated against a
rule the rule is frozen: amend_rule is refused and the only way to change
it is replace_rule, which deactivates the old rule and links the two.

Checks are append-only. Aggregate statistics are maintained as counters
on every write so reading them is O(1).

When deployed through a factory, the engine reports its rule and check
counts back to the factory under its own instance account.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Protocol

from tracechain.access.control import AccessControl
from tracechain.compliance.scoring import score_evidence, validate_weight
from tracechain.config import ComplianceParams
from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import StateConflictError, ValidationError
from tracechain.models.access import Role
from tracechain.models.compliance import (
    ANY_PRODUCT_TYPE,
    ComplianceCheck,
    ComplianceEvidence,
    ComplianceRule,
    ComplianceStats,
)
from tracechain.persistence.event_log import EventKind
from tracechain.registry.certificates import CertificateRegistry
from tracechain.registry.products import ProductRegistry

_RULES = "rules"
_CHECKS = "checks"
_PRODUCT_CHECKS = "product_checks"
_LATEST = "latest_check"
_STATS = "stats"
_META = "meta"
_RULE_SEQ = "rule"
_CHECK_SEQ = "check"


class StatsReporter(Protocol):
    """Factory callback channel for aggregate counters."""

    def update_rule_count(
        self, caller: str, instance_id: int, count: int, now: Optional[datetime] = None,
    ) -> None:
        ...

    def update_check_count(
        self, caller: str, instance_id: int, count: int, now: Optional[datetime] = None,
    ) -> None:
        ...


class ComplianceEngine:
    """Rule store and check recorder for one industry.

    Usage:
        engine = ComplianceEngine(runtime, access, "org_admin", products, certificates)
        rule = engine.add_compliance_rule(
            "org_admin", "GMP-1", "Cold chain", "pharmaceutical",
            "Stored at 2-8C", "WHO-GDP", weight=50,
        )
        check = engine.check_compliance("org_admin", 1, rule.rule_id, evidence)
    """

    def __init__(
        self,
        runtime: LedgerRuntime,
        access: Optional[AccessControl],
        owner: str,
        products: ProductRegistry,
        certificates: Optional[CertificateRegistry] = None,
        params: Optional[ComplianceParams] = None,
        industry: str = ANY_PRODUCT_TYPE,
        namespace: str = "compliance",
    ) -> None:
        self._params = params or ComplianceParams()
        self._products = products
        self._certificates = certificates
        self._reporter: Optional[StatsReporter] = None
        self._instance_id: Optional[int] = None
        self.account: Optional[str] = None
        self._store = runtime.open_store(namespace)
        with runtime.atomic():
            self.guard = AccessGuard(runtime, self._store, access, owner)
            self._store.put(_META, "industry", industry)

    @property
    def industry(self) -> str:
        return self._store.get(_META, "industry")

    def attach_reporter(self, reporter: StatsReporter, instance_id: int, account: str) -> None:
        """Wire the factory callback. Called once by the deploying factory."""
        self._reporter = reporter
        self._instance_id = instance_id
        self.account = account

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @entry_point
    def add_compliance_rule(
        self,
        caller: str,
        code: str,
        title: str,
        applicable_type: str,
        description: str,
        standard: str,
        weight: int,
        now: Optional[datetime] = None,
    ) -> ComplianceRule:
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_owner(caller)
        rule = self._create_rule(
            caller, code, title, applicable_type, description, standard, weight, now,
        )
        self.guard.emit(EventKind.COMPLIANCE_RULE_ADDED, caller, {
            "rule_id": rule.rule_id,
            "code": rule.code,
            "applicable_type": rule.applicable_type,
            "weight": rule.weight,
        }, now)
        self._report_rules(now)
        return rule

    @entry_point
    def amend_rule(
        self,
        caller: str,
        rule_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        standard: Optional[str] = None,
        weight: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceRule:
        """Edit a rule that has not yet been evaluated."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_owner(caller)
        rule = self.get_rule(rule_id)
        if not rule.is_active:
            raise StateConflictError("Rule is inactive")
        if rule.check_count > 0:
            raise StateConflictError("Rule has been evaluated; replace it instead")

        changes: dict = {}
        if title is not None:
            if not title.strip():
                raise ValidationError("Rule title required")
            changes["title"] = title
        if description is not None:
            changes["description"] = description
        if standard is not None:
            changes["standard"] = standard
        if weight is not None:
            validate_weight(weight)
            changes["weight"] = weight
        if not changes:
            raise ValidationError("No changes supplied")

        amended = replace(rule, **changes)
        self._store.put(_RULES, rule_id, amended)
        self.guard.emit(EventKind.COMPLIANCE_RULE_AMENDED, caller, {
            "rule_id": rule_id,
            "fields": sorted(changes),
        }, now)
        return amended

    @entry_point
    def replace_rule(
        self,
        caller: str,
        rule_id: int,
        code: str,
        title: str,
        description: str,
        standard: str,
        weight: int,
        applicable_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceRule:
        """Supersede a rule with a new one under a new code."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_owner(caller)
        old = self.get_rule(rule_id)
        if not old.is_active:
            raise StateConflictError("Rule is inactive")

        new = self._create_rule(
            caller, code, title,
            applicable_type if applicable_type is not None else old.applicable_type,
            description, standard, weight, now,
            supersedes=old.rule_id,
        )
        self._store.put(_RULES, rule_id, replace(
            old, is_active=False, superseded_by=new.rule_id,
        ))
        self._store.increment(_STATS, "active_rules", -1)
        self.guard.emit(EventKind.COMPLIANCE_RULE_REPLACED, caller, {
            "old_rule_id": old.rule_id,
            "new_rule_id": new.rule_id,
            "code": new.code,
        }, now)
        self._report_rules(now)
        return new

    @entry_point
    def deactivate_rule(
        self,
        caller: str,
        rule_id: int,
        now: Optional[datetime] = None,
    ) -> ComplianceRule:
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_owner(caller)
        rule = self.get_rule(rule_id)
        if not rule.is_active:
            raise StateConflictError("Rule is inactive")
        updated = replace(rule, is_active=False)
        self._store.put(_RULES, rule_id, updated)
        self._store.increment(_STATS, "active_rules", -1)
        self.guard.emit(EventKind.COMPLIANCE_RULE_DEACTIVATED, caller, {"rule_id": rule_id}, now)
        return updated

    def _create_rule(
        self,
        caller: str,
        code: str,
        title: str,
        applicable_type: str,
        description: str,
        standard: str,
        weight: int,
        now: datetime,
        supersedes: Optional[int] = None,
    ) -> ComplianceRule:
        if not code or not code.strip():
            raise ValidationError("Rule code required")
        if not title or not title.strip():
            raise ValidationError("Rule title required")
        if not applicable_type or not applicable_type.strip():
            raise ValidationError("Applicable product type required")
        validate_weight(weight)
        if self._store.lookup_unique("rule_code", code) is not None:
            raise StateConflictError("Rule code already exists")

        rule = ComplianceRule(
            rule_id=self._store.next_id(_RULE_SEQ),
            code=code,
            title=title,
            applicable_type=applicable_type,
            description=description,
            standard=standard,
            weight=weight,
            created_by=caller,
            created_utc=now,
            supersedes=supersedes,
        )
        self._store.insert(_RULES, rule)
        self._store.increment(_STATS, "total_rules")
        self._store.increment(_STATS, "active_rules")
        return rule

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    @entry_point
    def check_compliance(
        self,
        caller: str,
        product_id: int,
        rule_id: int,
        evidence: Optional[ComplianceEvidence] = None,
        evidence_ref: str = "",
        now: Optional[datetime] = None,
    ) -> ComplianceCheck:
        """Score evidence for a product against a rule and record the result."""
        if now is None:
            now = datetime.now(timezone.utc)
        self.guard.require_owner_or_role(caller, Role.COMPLIANCE_OFFICER)
        product = self._products.get_product(product_id)
        rule = self.get_rule(rule_id)
        if not rule.is_active:
            raise StateConflictError("Rule is inactive")
        if not rule.applies_to(product.product_type):
            raise ValidationError(
                f"Rule {rule.code} does not apply to product type {product.product_type}"
            )
        if evidence is None:
            evidence = ComplianceEvidence()

        valid = tuple(sorted(
            cid for cid in set(evidence.certificate_ids)
            if self._certificates is not None
            and self._certificates.is_valid_for_product(cid, product_id, now)
        ))
        score = score_evidence(evidence, len(valid), rule.weight, self._params.pass_threshold)

        check = ComplianceCheck(
            check_id=self._store.next_id(_CHECK_SEQ),
            product_id=product_id,
            rule_id=rule_id,
            checked_by=caller,
            checked_utc=now,
            confidence=score.confidence,
            passed=score.passed,
            evidence_ref=evidence_ref,
            valid_certificates=valid,
        )
        self._store.put(_CHECKS, check.check_id, check)
        held = self._store.get(_PRODUCT_CHECKS, product_id, ())
        self._store.put(_PRODUCT_CHECKS, product_id, held + (check.check_id,))
        self._store.put(_LATEST, (product_id, rule_id), check.check_id)
        self._store.put(_RULES, rule_id, replace(rule, check_count=rule.check_count + 1))
        self._store.increment(_STATS, "total_checks")
        self._store.increment(_STATS, "passed_checks" if score.passed else "failed_checks")
        self.guard.emit(EventKind.COMPLIANCE_CHECKED, caller, {
            "check_id": check.check_id,
            "product_id": product_id,
            "rule_id": rule_id,
            "confidence": score.confidence,
            "passed": score.passed,
        }, now)
        if self._reporter is not None:
            self._reporter.update_check_count(
                self.account, self._instance_id, self._store.get(_STATS, "total_checks"), now,
            )
        return check

    @entry_point
    def transfer_ownership(
        self,
        caller: str,
        new_owner: str,
        now: Optional[datetime] = None,
    ) -> None:
        self.guard.transfer_ownership(caller, new_owner, now)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_rule(self, rule_id: int) -> ComplianceRule:
        return self._store.require(_RULES, rule_id, "Rule not found")

    def get_rule_by_code(self, code: str) -> Optional[ComplianceRule]:
        rule_id = self._store.lookup_unique("rule_code", code)
        if rule_id is None:
            return None
        return self._store.get(_RULES, rule_id)

    def rules(self, active_only: bool = False) -> list[ComplianceRule]:
        rules = sorted(self._store.values(_RULES), key=lambda r: r.rule_id)
        if active_only:
            return [r for r in rules if r.is_active]
        return rules

    def get_checks_for_product(self, product_id: int) -> list[ComplianceCheck]:
        return [self._store.get(_CHECKS, c) for c in self._store.get(_PRODUCT_CHECKS, product_id, ())]

    def get_latest_check(self, product_id: int, rule_id: int) -> Optional[ComplianceCheck]:
        check_id = self._store.get(_LATEST, (product_id, rule_id))
        if check_id is None:
            return None
        return self._store.get(_CHECKS, check_id)

    def is_product_compliant(self, product_id: int) -> bool:
        """True when every active applicable rule's latest check passed."""
        product = self._products.get_product(product_id)
        applicable = [r for r in self.rules(active_only=True) if r.applies_to(product.product_type)]
        if not applicable:
            return False
        for rule in applicable:
            latest = self.get_latest_check(product_id, rule.rule_id)
            if latest is None or not latest.passed:
                return False
        return True

    def get_compliance_stats(self) -> ComplianceStats:
        return ComplianceStats(
            total_rules=self._store.get(_STATS, "total_rules", 0),
            active_rules=self._store.get(_STATS, "active_rules", 0),
            total_checks=self._store.get(_STATS, "total_checks", 0),
            passed_checks=self._store.get(_STATS, "passed_checks", 0),
            failed_checks=self._store.get(_STATS, "failed_checks", 0),
        )

    def _report_rules(self, now: datetime) -> None:
        if self._reporter is not None:
            self._reporter.update_rule_count(
                self.account, self._instance_id, self._store.get(_STATS, "total_rules"), now,
            )
