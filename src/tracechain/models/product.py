"""Product provenance data models.

A Product is never physically deleted; is_active is a soft flag that
deactivation clears and reactivation restores. Checkpoints are stored
separately, keyed by (product_id, index), and are append-only apart from
amendments by their original actor or the registry owner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Hashable, Optional


@dataclass(frozen=True)
class Product:
    """A registered product batch."""
    product_id: int
    name: str
    product_type: str
    batch_number: str
    manufacture_utc: datetime
    expiry_utc: datetime
    raw_materials: tuple[str, ...]
    manufacturer: str
    metadata_uri: str
    created_utc: datetime
    updated_utc: datetime
    stakeholders: tuple[str, ...] = ()
    checkpoint_count: int = 0
    is_active: bool = True

    @property
    def record_id(self) -> Hashable:
        return self.product_id

    def unique_keys(self) -> dict[str, Hashable]:
        return {"batch_number": self.batch_number}


@dataclass(frozen=True)
class ProductInput:
    """Fields supplied to register_product and batch_register_products."""
    name: str
    product_type: str
    batch_number: str
    manufacture_utc: datetime
    expiry_utc: datetime
    raw_materials: tuple[str, ...]
    metadata_uri: str = ""


@dataclass(frozen=True)
class Checkpoint:
    """One entry in a product's trace history."""
    product_id: int
    index: int
    status: str
    location: str
    actor: str
    timestamp_utc: datetime
    recorded_utc: datetime
    data: str = ""
    environment: dict[str, str] = field(default_factory=dict)
    out_of_order: bool = False
    amended_utc: Optional[datetime] = None


@dataclass(frozen=True)
class CheckpointInput:
    """Fields supplied to add_checkpoint and batch_add_checkpoints."""
    product_id: int
    status: str
    location: str
    data: str = ""
    environment: dict[str, str] = field(default_factory=dict)
    timestamp_utc: Optional[datetime] = None
