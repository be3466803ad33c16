"""Reward metadata — the typed multiplier/bonus payload attached to an action.

Payload format (version 1):
    {"version": 1, "multiplier": 150, "bonus": "5"}

multiplier is a percentage applied to the category base rate; bonus is a
flat TRACE amount added after the multiplier. An absent payload means
100% / 0. Unknown versions and unknown fields are rejected rather than
ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Union

from tracechain.errors import ValidationError

METADATA_VERSION = 1
DEFAULT_MULTIPLIER = 100
_FIELDS = frozenset({"version", "multiplier", "bonus"})


@dataclass(frozen=True)
class RewardMetadata:
    version: int = METADATA_VERSION
    multiplier: int = DEFAULT_MULTIPLIER
    bonus: Decimal = Decimal("0")

    @classmethod
    def parse(
        cls,
        payload: Union[None, RewardMetadata, Mapping[str, Any]],
        max_multiplier: int = 500,
        max_bonus: Decimal = Decimal("100"),
    ) -> RewardMetadata:
        """Validate a payload and return the typed metadata.

        Raises ValidationError for an unsupported version, unknown fields,
        or a multiplier/bonus outside [1, max_multiplier] / [0, max_bonus].
        """
        if payload is None:
            return cls()
        if isinstance(payload, RewardMetadata):
            meta = payload
        else:
            if not isinstance(payload, Mapping):
                raise ValidationError("Metadata must be a mapping")
            unknown = set(payload) - _FIELDS
            if unknown:
                raise ValidationError(f"Unknown metadata fields: {sorted(unknown)}")
            if "version" not in payload:
                raise ValidationError("Metadata version required")
            multiplier = payload.get("multiplier", DEFAULT_MULTIPLIER)
            if isinstance(multiplier, bool) or not isinstance(multiplier, int):
                raise ValidationError("Metadata multiplier must be an integer percentage")
            try:
                bonus = Decimal(str(payload.get("bonus", "0")))
            except InvalidOperation as e:
                raise ValidationError("Metadata bonus must be a number") from e
            meta = cls(version=payload["version"], multiplier=multiplier, bonus=bonus)

        if meta.version != METADATA_VERSION:
            raise ValidationError(f"Unsupported metadata version: {meta.version}")
        if not (1 <= meta.multiplier <= max_multiplier):
            raise ValidationError(f"Multiplier must be between 1 and {max_multiplier}")
        if not meta.bonus.is_finite():
            raise ValidationError("Metadata bonus must be a finite number")
        if not (Decimal("0") <= meta.bonus <= max_bonus):
            raise ValidationError(f"Bonus must be between 0 and {max_bonus}")
        return meta

    def apply(self, base_rate: Decimal) -> Decimal:
        return base_rate * self.multiplier / 100 + self.bonus

    def to_dict(self) -> dict[str, Any]:
        return {"version": self.version, "multiplier": self.multiplier, "bonus": str(self.bonus)}

