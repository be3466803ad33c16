"""Incentive token and the stable settlement asset."""

from tracechain.token.incentive_token import IncentiveToken
from tracechain.token.settlement import StablecoinLedger

__all__ = ["IncentiveToken", "StablecoinLedger"]
