"""Execution runtime: unit of work, namespaces, and access guards."""

from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime

__all__ = ["AccessGuard", "LedgerRuntime", "entry_point"]
