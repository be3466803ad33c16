"""Amount normalization shared by the token, settlement and escrow ledgers."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

from tracechain.errors import ValidationError


def quantize_amount(value: Any, quantum: Decimal) -> Decimal:
    """Round an amount down to the asset quantum.

    Raises ValidationError for a non-numeric or non-finite value, and for
    one too large to represent at the asset's precision.
    """
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError(f"Amount must be a number: {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"Amount must be a finite number: {value}")
    try:
        return amount.quantize(quantum, rounding=ROUND_DOWN)
    except InvalidOperation as e:
        raise ValidationError(f"Amount is too large: {value}") from e
