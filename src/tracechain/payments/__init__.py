"""Milestone escrow payments between supply-chain participants."""

from tracechain.payments.escrow import PaymentEscrow

__all__ = ["PaymentEscrow"]
