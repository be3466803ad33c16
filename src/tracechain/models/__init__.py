"""Core data models for the TraceChain ledger engine."""

from tracechain.models.access import Role
from tracechain.models.certificate import Certificate, CertificateType, VerificationResult
from tracechain.models.compliance import (
    ComplianceCheck,
    ComplianceEvidence,
    ComplianceRule,
    ComplianceStats,
    ScoreBreakdown,
)
from tracechain.models.escrow import (
    Escrow,
    EscrowSettlement,
    EscrowState,
    Milestone,
    SettlementAsset,
)
from tracechain.models.product import Checkpoint, CheckpointInput, Product, ProductInput
from tracechain.models.records import UniqueRecord
from tracechain.models.rewards import (
    ActionOutcome,
    ActionRequest,
    BatchResult,
    RewardAccrual,
    RewardCategory,
    SkippedAction,
)
from tracechain.models.tenancy import ComponentKind, FactoryStats, TenantInstance
from tracechain.models.token import Pool, StakeInfo, StakingInfo, SupplyBreakdown, VestingSchedule

__all__ = [
    "ActionOutcome",
    "ActionRequest",
    "BatchResult",
    "Certificate",
    "CertificateType",
    "Checkpoint",
    "CheckpointInput",
    "ComplianceCheck",
    "ComplianceEvidence",
    "ComplianceRule",
    "ComplianceStats",
    "ComponentKind",
    "Escrow",
    "EscrowSettlement",
    "EscrowState",
    "FactoryStats",
    "Milestone",
    "Pool",
    "Product",
    "ProductInput",
    "RewardAccrual",
    "RewardCategory",
    "Role",
    "ScoreBreakdown",
    "SettlementAsset",
    "SkippedAction",
    "StakeInfo",
    "StakingInfo",
    "SupplyBreakdown",
    "TenantInstance",
    "UniqueRecord",
    "VerificationResult",
    "VestingSchedule",
]
