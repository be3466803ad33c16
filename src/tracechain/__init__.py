"""TraceChain — supply-chain traceability ledger engine."""

__version__ = "0.1.0"
