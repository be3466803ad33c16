"""Product registry — product lifecycle, checkpoint trail, stakeholder set.

Products are keyed by a monotonic id and carry a globally unique batch
number. They are never removed: delete_product clears the active flag and
reactivate_product restores it, and a soft-deleted product stays fully
readable.

Checkpoints form an append-only list per product. Their timestamps are
supplied by the caller and are not required to increase; a checkpoint
dated before the product's latest one is accepted but marked out_of_order
so product owners can review it.

Batch operations are all-or-nothing: one invalid entry aborts the batch.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Sequence

from tracechain.access.control import AccessControl
from tracechain.config import RegistryParams
from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import (
    AuthorizationError,
    LimitExceededError,
    StateConflictError,
    ValidationError,
)
from tracechain.models.product import Checkpoint, CheckpointInput, Product, ProductInput
from tracechain.persistence.event_log import EventKind

_PRODUCTS = "products"
_CHECKPOINTS = "checkpoints"
_BY_STAKEHOLDER = "stakeholder_products"
_PRODUCT_SEQ = "product"


class ProductRegistry:
    """Provenance record store for one organization.

    Usage:
        registry = ProductRegistry(runtime, access, owner="org_admin")
        product = registry.register_product(
            "acme", "Vaccine", "pharmaceutical", "B-1",
            manufacture_utc=made, expiry_utc=expires, raw_materials=("antigen",),
        )
        registry.add_checkpoint("acme", product.product_id, "shipped", "Warehouse A")
    """

    def __init__(
        self,
        runtime: LedgerRuntime,
        access: Optional[AccessControl],
        owner: str,
        params: Optional[RegistryParams] = None,
        namespace: str = "products",
    ) -> None:
        self._params = params or RegistryParams()
        self._store = runtime.open_store(namespace)
        with runtime.atomic():
            self.guard = AccessGuard(runtime, self._store, access, owner)

    @property
    def owner(self) -> str:
        return self.guard.owner

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    @entry_point
    def register_product(
        self,
        caller: str,
        name: str,
        product_type: str,
        batch_number: str,
        manufacture_utc: datetime,
        expiry_utc: datetime,
        raw_materials: Sequence[str],
        metadata_uri: str = "",
        now: Optional[datetime] = None,
    ) -> Product:
        """Register a product with the caller as manufacturer."""
        if now is None:
            now = datetime.now(timezone.utc)
        return self._register(caller, ProductInput(
            name=name,
            product_type=product_type,
            batch_number=batch_number,
            manufacture_utc=manufacture_utc,
            expiry_utc=expiry_utc,
            raw_materials=tuple(raw_materials),
            metadata_uri=metadata_uri,
        ), now)

    @entry_point
    def batch_register_products(
        self,
        caller: str,
        products: Sequence[ProductInput],
        now: Optional[datetime] = None,
    ) -> list[Product]:
        """Register several products; any invalid entry aborts the batch."""
        if now is None:
            now = datetime.now(timezone.utc)
        self._check_batch_size(len(products))
        return [self._register(caller, entry, now) for entry in products]

    def _register(self, caller: str, entry: ProductInput, now: datetime) -> Product:
        if not entry.name or not entry.name.strip():
            raise ValidationError("Product name required")
        if not entry.product_type or not entry.product_type.strip():
            raise ValidationError("Product type required")
        if not entry.batch_number or not entry.batch_number.strip():
            raise ValidationError("Batch number required")
        if not isinstance(entry.manufacture_utc, datetime):
            raise ValidationError("Invalid manufacture date")
        if not isinstance(entry.expiry_utc, datetime) or entry.expiry_utc <= entry.manufacture_utc:
            raise ValidationError("Expiry must be after manufacture")
        raw_materials = tuple(m for m in entry.raw_materials if m and m.strip())
        if not raw_materials:
            raise ValidationError("Raw materials required")
        if self._store.lookup_unique("batch_number", entry.batch_number) is not None:
            raise StateConflictError("Batch number already exists")

        product = Product(
            product_id=self._store.next_id(_PRODUCT_SEQ),
            name=entry.name,
            product_type=entry.product_type,
            batch_number=entry.batch_number,
            manufacture_utc=entry.manufacture_utc,
            expiry_utc=entry.expiry_utc,
            raw_materials=raw_materials,
            manufacturer=caller,
            metadata_uri=entry.metadata_uri,
            created_utc=now,
            updated_utc=now,
            stakeholders=(caller,),
        )
        self._store.insert(_PRODUCTS, product)
        self._index_stakeholder(caller, product.product_id)
        self.guard.emit(EventKind.PRODUCT_REGISTERED, caller, {
            "product_id": product.product_id,
            "name": product.name,
            "manufacturer": caller,
            "batch_number": product.batch_number,
        }, now)
        return product

    @entry_point
    def update_product(
        self,
        caller: str,
        product_id: int,
        name: Optional[str] = None,
        product_type: Optional[str] = None,
        expiry_utc: Optional[datetime] = None,
        raw_materials: Optional[Sequence[str]] = None,
        metadata_uri: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Product:
        """Change descriptive fields. Batch number and manufacturer are fixed."""
        if now is None:
            now = datetime.now(timezone.utc)
        product = self.get_product(product_id)
        self._require_manufacturer_or_owner(caller, product)

        changes: dict = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Product name required")
            changes["name"] = name
        if product_type is not None:
            if not product_type.strip():
                raise ValidationError("Product type required")
            changes["product_type"] = product_type
        if expiry_utc is not None:
            if expiry_utc <= product.manufacture_utc:
                raise ValidationError("Expiry must be after manufacture")
            changes["expiry_utc"] = expiry_utc
        if raw_materials is not None:
            materials = tuple(m for m in raw_materials if m and m.strip())
            if not materials:
                raise ValidationError("Raw materials required")
            changes["raw_materials"] = materials
        if metadata_uri is not None:
            changes["metadata_uri"] = metadata_uri
        if not changes:
            raise ValidationError("No changes supplied")

        updated = replace(product, updated_utc=now, **changes)
        self._store.put(_PRODUCTS, product_id, updated)
        self.guard.emit(EventKind.PRODUCT_UPDATED, caller, {
            "product_id": product_id,
            "fields": sorted(changes),
        }, now)
        return updated

    @entry_point
    def delete_product(
        self,
        caller: str,
        product_id: int,
        now: Optional[datetime] = None,
    ) -> Product:
        """Soft-delete: clear the active flag. The record stays readable."""
        if now is None:
            now = datetime.now(timezone.utc)
        product = self.get_product(product_id)
        self._require_manufacturer_or_owner(caller, product)
        if not product.is_active:
            raise StateConflictError("Product already inactive")
        updated = replace(product, is_active=False, updated_utc=now)
        self._store.put(_PRODUCTS, product_id, updated)
        self.guard.emit(EventKind.PRODUCT_DEACTIVATED, caller, {"product_id": product_id}, now)
        return updated

    @entry_point
    def reactivate_product(
        self,
        caller: str,
        product_id: int,
        now: Optional[datetime] = None,
    ) -> Product:
        if now is None:
            now = datetime.now(timezone.utc)
        product = self.get_product(product_id)
        self._require_manufacturer_or_owner(caller, product)
        if product.is_active:
            raise StateConflictError("Product already active")
        updated = replace(product, is_active=True, updated_utc=now)
        self._store.put(_PRODUCTS, product_id, updated)
        self.guard.emit(EventKind.PRODUCT_REACTIVATED, caller, {"product_id": product_id}, now)
        return updated

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    @entry_point
    def add_checkpoint(
        self,
        caller: str,
        product_id: int,
        status: str,
        location: str,
        data: str = "",
        environment: Optional[dict[str, str]] = None,
        timestamp_utc: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Checkpoint:
        """Append a checkpoint (stakeholders and the registry owner only)."""
        if now is None:
            now = datetime.now(timezone.utc)
        return self._add_checkpoint(caller, CheckpointInput(
            product_id=product_id,
            status=status,
            location=location,
            data=data,
            environment=dict(environment or {}),
            timestamp_utc=timestamp_utc,
        ), now)

    @entry_point
    def batch_add_checkpoints(
        self,
        caller: str,
        checkpoints: Sequence[CheckpointInput],
        now: Optional[datetime] = None,
    ) -> list[Checkpoint]:
        """Append several checkpoints; any invalid entry aborts the batch."""
        if now is None:
            now = datetime.now(timezone.utc)
        self._check_batch_size(len(checkpoints))
        return [self._add_checkpoint(caller, entry, now) for entry in checkpoints]

    def _add_checkpoint(self, caller: str, entry: CheckpointInput, now: datetime) -> Checkpoint:
        product = self._store.require(_PRODUCTS, entry.product_id, "Product not found")
        if not product.is_active:
            raise StateConflictError("Product is inactive")
        if caller not in product.stakeholders and not self.guard.is_owner(caller):
            raise AuthorizationError("Not authorized stakeholder")
        if not entry.status or not entry.status.strip():
            raise ValidationError("Status required")
        if not entry.location or not entry.location.strip():
            raise ValidationError("Location required")

        timestamp = entry.timestamp_utc or now
        latest = self.get_latest_checkpoint(entry.product_id)
        out_of_order = latest is not None and timestamp < latest.timestamp_utc
        checkpoint = Checkpoint(
            product_id=entry.product_id,
            index=product.checkpoint_count,
            status=entry.status,
            location=entry.location,
            actor=caller,
            timestamp_utc=timestamp,
            recorded_utc=now,
            data=entry.data,
            environment=dict(entry.environment),
            out_of_order=out_of_order,
        )
        self._store.put(_CHECKPOINTS, (entry.product_id, checkpoint.index), checkpoint)
        self._store.put(_PRODUCTS, entry.product_id, replace(
            product,
            checkpoint_count=product.checkpoint_count + 1,
            updated_utc=now,
        ))
        self.guard.emit(EventKind.CHECKPOINT_ADDED, caller, {
            "product_id": entry.product_id,
            "index": checkpoint.index,
            "actor": caller,
            "status": checkpoint.status,
            "timestamp_utc": timestamp,
            "out_of_order": out_of_order,
        }, now)
        return checkpoint

    @entry_point
    def update_checkpoint(
        self,
        caller: str,
        product_id: int,
        index: int,
        status: Optional[str] = None,
        location: Optional[str] = None,
        data: Optional[str] = None,
        environment: Optional[dict[str, str]] = None,
        now: Optional[datetime] = None,
    ) -> Checkpoint:
        """Amend a checkpoint (its original actor or the registry owner only)."""
        if now is None:
            now = datetime.now(timezone.utc)
        self._store.require(_PRODUCTS, product_id, "Product not found")
        checkpoint = self._store.require(_CHECKPOINTS, (product_id, index), "Checkpoint not found")
        if caller != checkpoint.actor and not self.guard.is_owner(caller):
            raise AuthorizationError("Not checkpoint author or owner")
        if status is not None and not status.strip():
            raise ValidationError("Status required")
        if location is not None and not location.strip():
            raise ValidationError("Location required")

        amended = replace(
            checkpoint,
            status=status if status is not None else checkpoint.status,
            location=location if location is not None else checkpoint.location,
            data=data if data is not None else checkpoint.data,
            environment=dict(environment) if environment is not None else checkpoint.environment,
            amended_utc=now,
        )
        self._store.put(_CHECKPOINTS, (product_id, index), amended)
        self.guard.emit(EventKind.CHECKPOINT_UPDATED, caller, {
            "product_id": product_id,
            "index": index,
            "status": amended.status,
        }, now)
        return amended

    # ------------------------------------------------------------------
    # Stakeholders
    # ------------------------------------------------------------------

    @entry_point
    def add_stakeholder(
        self,
        caller: str,
        product_id: int,
        stakeholder: str,
        now: Optional[datetime] = None,
    ) -> Product:
        if now is None:
            now = datetime.now(timezone.utc)
        product = self.get_product(product_id)
        if caller not in product.stakeholders and not self.guard.is_owner(caller):
            raise AuthorizationError("Not authorized")
        if not stakeholder or not stakeholder.strip():
            raise ValidationError("Invalid stakeholder address")
        if stakeholder == caller:
            raise ValidationError("Cannot add yourself")
        if stakeholder in product.stakeholders:
            raise StateConflictError("Stakeholder already exists")

        updated = replace(
            product,
            stakeholders=product.stakeholders + (stakeholder,),
            updated_utc=now,
        )
        self._store.put(_PRODUCTS, product_id, updated)
        self._index_stakeholder(stakeholder, product_id)
        self.guard.emit(EventKind.STAKEHOLDER_ADDED, caller, {
            "product_id": product_id,
            "stakeholder": stakeholder,
        }, now)
        return updated

    @entry_point
    def remove_stakeholder(
        self,
        caller: str,
        product_id: int,
        stakeholder: str,
        now: Optional[datetime] = None,
    ) -> Product:
        if now is None:
            now = datetime.now(timezone.utc)
        product = self.get_product(product_id)
        self._require_manufacturer_or_owner(caller, product)
        if stakeholder == product.manufacturer:
            raise StateConflictError("Cannot remove manufacturer")
        if stakeholder not in product.stakeholders:
            raise ValidationError("Stakeholder not found")

        updated = replace(
            product,
            stakeholders=tuple(s for s in product.stakeholders if s != stakeholder),
            updated_utc=now,
        )
        self._store.put(_PRODUCTS, product_id, updated)
        held = self._store.get(_BY_STAKEHOLDER, stakeholder, ())
        self._store.put(_BY_STAKEHOLDER, stakeholder, tuple(p for p in held if p != product_id))
        self.guard.emit(EventKind.STAKEHOLDER_REMOVED, caller, {
            "product_id": product_id,
            "stakeholder": stakeholder,
        }, now)
        return updated

    @entry_point
    def transfer_ownership(
        self,
        caller: str,
        new_owner: str,
        now: Optional[datetime] = None,
    ) -> None:
        self.guard.transfer_ownership(caller, new_owner, now)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_product(self, product_id: int) -> Product:
        return self._store.require(_PRODUCTS, product_id, "Product not found")

    def get_product_by_batch_number(self, batch_number: str) -> Optional[Product]:
        product_id = self._store.lookup_unique("batch_number", batch_number)
        if product_id is None:
            return None
        return self._store.get(_PRODUCTS, product_id)

    def product_exists(self, product_id: int) -> bool:
        return self._store.contains(_PRODUCTS, product_id)

    def get_checkpoints(self, product_id: int) -> list[Checkpoint]:
        product = self.get_product(product_id)
        return [
            self._store.get(_CHECKPOINTS, (product_id, i))
            for i in range(product.checkpoint_count)
        ]

    def get_latest_checkpoint(self, product_id: int) -> Optional[Checkpoint]:
        product = self.get_product(product_id)
        if product.checkpoint_count == 0:
            return None
        return self._store.get(_CHECKPOINTS, (product_id, product.checkpoint_count - 1))

    def get_stakeholder_products(self, account: str) -> list[int]:
        return list(self._store.get(_BY_STAKEHOLDER, account, ()))

    def is_stakeholder(self, product_id: int, account: str) -> bool:
        product = self._store.get(_PRODUCTS, product_id)
        return product is not None and account in product.stakeholders

    @property
    def product_count(self) -> int:
        return self._store.current_id(_PRODUCT_SEQ)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_manufacturer_or_owner(self, caller: str, product: Product) -> None:
        if caller != product.manufacturer and not self.guard.is_owner(caller):
            raise AuthorizationError("Not authorized")

    def _check_batch_size(self, size: int) -> None:
        if size == 0:
            raise ValidationError("Batch is empty")
        if size > self._params.max_batch_size:
            raise LimitExceededError(
                f"Batch size {size} exceeds maximum {self._params.max_batch_size}"
            )

    def _index_stakeholder(self, account: str, product_id: int) -> None:
        held = self._store.get(_BY_STAKEHOLDER, account, ())
        if product_id not in held:
            self._store.put(_BY_STAKEHOLDER, account, held + (product_id,))
