"""Price signal consumed by the rewards distributor.

The feed is an external collaborator. Its value is read synchronously at
call time and recorded on the accrual event for information only; it never
changes the reward amount.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable

from tracechain.errors import ValidationError


@runtime_checkable
class PriceFeed(Protocol):
    def latest_price(self) -> Decimal:
        ...


class StaticPriceFeed:
    """A fixed price, for tests and for deployments without an oracle."""

    def __init__(self, price: Decimal) -> None:
        if price < 0:
            raise ValidationError("Price must be non-negative")
        self._price = Decimal(price)

    def latest_price(self) -> Decimal:
        return self._price

    def update(self, price: Decimal) -> None:
        if price < 0:
            raise ValidationError("Price must be non-negative")
        self._price = Decimal(price)
