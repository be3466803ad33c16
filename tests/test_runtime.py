"""Tests for the ledger runtime — proves calls are all-or-nothing."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from tracechain.engine.runtime import LedgerRuntime, to_jsonable
from tracechain.errors import StateConflictError, ValidationError
from tracechain.models.product import Product
from tracechain.persistence.event_log import EventKind


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _product(product_id: int, batch: str) -> Product:
    return Product(
        product_id=product_id,
        name="Widget",
        product_type="electronics",
        batch_number=batch,
        manufacture_utc=_now(),
        expiry_utc=_now().replace(year=2027),
        raw_materials=("copper",),
        manufacturer="acme",
        metadata_uri="",
        created_utc=_now(),
        updated_utc=_now(),
        stakeholders=("acme",),
    )


class TestUnitOfWork:
    def test_commit_appends_buffered_events(self) -> None:
        runtime = LedgerRuntime()
        store = runtime.open_store("ns")
        with runtime.atomic():
            store.put("t", "k", 1)
            runtime.emit(EventKind.ROLE_GRANTED, "alice", {"role": "admin"}, _now())
            assert runtime.event_log.count == 0
        assert store.get("t", "k") == 1
        assert runtime.event_log.count == 1
        assert runtime.event_log.last_event.event_id == "evt_00000001"

    def test_failure_restores_state_and_drops_events(self) -> None:
        runtime = LedgerRuntime()
        store = runtime.open_store("ns")
        with runtime.atomic():
            store.put("t", "k", 1)
        with pytest.raises(ValidationError):
            with runtime.atomic():
                store.put("t", "k", 2)
                store.put("t", "new", 3)
                runtime.emit(EventKind.ROLE_GRANTED, "alice", {}, _now())
                raise ValidationError("boom")
        assert store.get("t", "k") == 1
        assert not store.contains("t", "new")
        assert runtime.event_log.count == 0
        assert not runtime.in_transaction

    def test_savepoint_unwinds_only_inner_block(self) -> None:
        runtime = LedgerRuntime()
        store = runtime.open_store("ns")
        with runtime.atomic():
            store.put("t", "outer", 1)
            runtime.emit(EventKind.ROLE_GRANTED, "a", {}, _now())
            with pytest.raises(StateConflictError):
                with runtime.atomic():
                    store.put("t", "inner", 2)
                    runtime.emit(EventKind.ROLE_REVOKED, "a", {}, _now())
                    raise StateConflictError("inner failed")
        assert store.get("t", "outer") == 1
        assert not store.contains("t", "inner")
        assert [e.event_kind for e in runtime.event_log.events()] == [EventKind.ROLE_GRANTED]

    def test_write_outside_unit_rejected(self) -> None:
        runtime = LedgerRuntime()
        store = runtime.open_store("ns")
        with pytest.raises(RuntimeError, match="outside a unit of work"):
            store.put("t", "k", 1)

    def test_emit_outside_unit_rejected(self) -> None:
        runtime = LedgerRuntime()
        with pytest.raises(RuntimeError):
            runtime.emit(EventKind.ROLE_GRANTED, "a", {}, _now())

    def test_event_ids_sequential_across_units(self) -> None:
        runtime = LedgerRuntime()
        for _ in range(3):
            with runtime.atomic():
                runtime.emit(EventKind.SYSTEM_PAUSED, "admin", {}, _now())
        ids = [e.event_id for e in runtime.event_log.events()]
        assert ids == ["evt_00000001", "evt_00000002", "evt_00000003"]


class TestNamespaces:
    def test_duplicate_namespace_rejected(self) -> None:
        runtime = LedgerRuntime()
        runtime.open_store("products")
        with pytest.raises(StateConflictError):
            runtime.open_store("products")

    def test_empty_namespace_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LedgerRuntime().open_store("  ")

    def test_allocation_rolls_back(self) -> None:
        runtime = LedgerRuntime()
        with pytest.raises(ValidationError):
            with runtime.atomic():
                runtime.open_store("tenant/1")
                raise ValidationError("deploy failed")
        assert "tenant/1" not in runtime.namespaces()
        runtime.open_store("tenant/1")

    def test_unknown_store_lookup(self) -> None:
        with pytest.raises(ValidationError):
            LedgerRuntime().store("missing")


class TestRecordStore:
    def test_sequences_start_at_one(self) -> None:
        runtime = LedgerRuntime()
        store = runtime.open_store("ns")
        with runtime.atomic():
            assert store.next_id("product") == 1
            assert store.next_id("product") == 2
        assert store.current_id("product") == 2

    def test_insert_claims_unique_keys(self) -> None:
        runtime = LedgerRuntime()
        store = runtime.open_store("ns")
        with runtime.atomic():
            store.insert("products", _product(1, "B-1"))
        assert store.lookup_unique("batch_number", "B-1") == 1
        with pytest.raises(StateConflictError):
            with runtime.atomic():
                store.insert("products", _product(2, "B-1"))
        assert store.count("products") == 1

    def test_require_missing_raises_validation(self) -> None:
        runtime = LedgerRuntime()
        store = runtime.open_store("ns")
        with pytest.raises(ValidationError, match="Product not found"):
            store.require("products", 9, "Product not found")

    def test_delete_is_journaled(self) -> None:
        runtime = LedgerRuntime()
        store = runtime.open_store("ns")
        with runtime.atomic():
            store.put("t", "k", "v")
        with pytest.raises(ValidationError):
            with runtime.atomic():
                store.delete("t", "k")
                raise ValidationError("undo")
        assert store.get("t", "k") == "v"


class TestJsonable:
    def test_converts_ledger_values(self) -> None:
        out = to_jsonable({
            "amount": Decimal("1.50"),
            "at": _now(),
            "kind": EventKind.ESCROW_CREATED,
            "items": (1, 2),
            "tags": frozenset({"b", "a"}),
        })
        assert out == {
            "amount": "1.50",
            "at": "2026-02-16T12:00:00Z",
            "kind": "escrow_created",
            "items": [1, 2],
            "tags": ["a", "b"],
        }
