"""Error taxonomy for the ledger-state engine.

Every rejected call raises exactly one of the subclasses below. The kind
is machine-readable; the reason is the human-readable message. Callers
outside the core (the service facade, the CLI) translate these into
ServiceResult values — nothing inside the core retries or suppresses
them, except the skip-on-invalid policy of reward batch processing.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    """Machine-readable rejection classes."""
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    STATE_CONFLICT = "state_conflict"
    LIMIT_EXCEEDED = "limit_exceeded"
    INSUFFICIENT_FUNDS = "insufficient_funds"


class LedgerError(ValueError):
    """Base class for every rejection raised by a ledger component."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "reason": self.reason}


class ValidationError(LedgerError):
    """Malformed, missing, or out-of-range input; unknown parent record."""
    kind = ErrorKind.VALIDATION


class AuthorizationError(LedgerError):
    """Caller lacks the required role or ownership."""
    kind = ErrorKind.AUTHORIZATION


class StateConflictError(LedgerError):
    """Duplicate unique key or wrong state for the requested transition."""
    kind = ErrorKind.STATE_CONFLICT


class LimitExceededError(LedgerError):
    """Rate, interval, cap or batch-size rule would be violated."""
    kind = ErrorKind.LIMIT_EXCEEDED


class InsufficientFundsError(LedgerError):
    """Balance, stake, or payment is too small for the operation."""
    kind = ErrorKind.INSUFFICIENT_FUNDS
