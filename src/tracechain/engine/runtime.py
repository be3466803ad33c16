"""Ledger runtime — namespace directory, unit of work, and event commit.

The surrounding execution environment serializes top-level calls; this
runtime makes each one all-or-nothing:

- runtime.atomic() opens a unit of work (top level) or a savepoint
  (nested). Store writes inside it are journaled; events are buffered.
- On an exception the journal is replayed backwards to the savepoint and
  the buffered events past it are dropped, then the exception propagates.
- When the top-level unit exits cleanly, the buffered events receive
  sequential ids and are appended to the event log.

Namespaces are the multi-tenant primitive: deploying a tenant instance
allocates a fresh namespace, never a new process. Allocation inside a unit
of work is journaled like any other write.
"""

from __future__ import annotations

import enum
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from functools import partial
from pathlib import Path
from typing import Any, Callable, Hashable, Iterator, Optional

from loguru import logger

from tracechain.errors import LedgerError, StateConflictError, ValidationError
from tracechain.persistence.event_log import EventKind, EventLog, EventRecord
from tracechain.persistence.store import RecordStore


@dataclass(frozen=True)
class PendingEvent:
    kind: EventKind
    actor_id: str
    payload: dict[str, Any]
    timestamp: datetime


@dataclass
class UnitOfWork:
    """Journal and event buffer for one top-level call."""
    undo: list[Callable[[], None]] = field(default_factory=list)
    events: list[PendingEvent] = field(default_factory=list)


class LedgerRuntime:
    """Execution environment shared by every component of one engine.

    Usage:
        runtime = LedgerRuntime()
        store = runtime.open_store("products")
        with runtime.atomic():
            store.put("product", 1, product)
            runtime.emit(EventKind.PRODUCT_REGISTERED, "alice", {...})
    """

    def __init__(self, event_log: Optional[EventLog] = None) -> None:
        self._event_log = event_log if event_log is not None else EventLog()
        self._stores: dict[str, RecordStore] = {}
        self._unit: Optional[UnitOfWork] = None
        # Continue numbering from a persisted log to avoid ID collision on restart
        self._event_counter = self._event_log.count

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def in_transaction(self) -> bool:
        return self._unit is not None

    # ------------------------------------------------------------------
    # Namespace directory
    # ------------------------------------------------------------------

    def open_store(self, namespace: str) -> RecordStore:
        """Allocate a new isolated namespace.

        Raises StateConflictError if the namespace is already allocated.
        """
        if not namespace or not namespace.strip():
            raise ValidationError("Namespace must not be empty")
        if namespace in self._stores:
            raise StateConflictError(f"Namespace already allocated: {namespace}")
        store = RecordStore(self, namespace)
        self._stores[namespace] = store
        if self._unit is not None:
            self._unit.undo.append(partial(self._stores.pop, namespace, None))
        return store

    def store(self, namespace: str) -> RecordStore:
        store = self._stores.get(namespace)
        if store is None:
            raise ValidationError(f"Unknown namespace: {namespace}")
        return store

    def namespaces(self) -> list[str]:
        return sorted(self._stores)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[UnitOfWork]:
        """Run a block all-or-nothing (savepoint when nested)."""
        top_level = self._unit is None
        if top_level:
            self._unit = UnitOfWork()
        unit = self._unit
        undo_mark = len(unit.undo)
        event_mark = len(unit.events)
        try:
            yield unit
        except BaseException as exc:
            for restore in reversed(unit.undo[undo_mark:]):
                restore()
            del unit.undo[undo_mark:]
            del unit.events[event_mark:]
            if top_level:
                self._unit = None
                kind = exc.kind.value if isinstance(exc, LedgerError) else type(exc).__name__
                logger.info("Rolled back unit of work ({}): {}", kind, exc)
            raise
        else:
            if top_level:
                self._unit = None
                self._commit(unit)

    def journal(
        self,
        store: RecordStore,
        table: str,
        key: Hashable,
        previous: Any,
    ) -> None:
        """Record the value a store write is about to replace."""
        if self._unit is None:
            raise RuntimeError(
                f"Write to {store.namespace}.{table} outside a unit of work; "
                "ledger state changes only through entry points"
            )
        self._unit.undo.append(partial(store._restore, table, key, previous))

    def emit(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> None:
        """Buffer an event for the current unit of work."""
        if self._unit is None:
            raise RuntimeError("Events can only be emitted inside a unit of work")
        if now is None:
            now = datetime.now(timezone.utc)
        self._unit.events.append(PendingEvent(
            kind=kind,
            actor_id=actor_id,
            payload=to_jsonable(payload),
            timestamp=now,
        ))

    def _commit(self, unit: UnitOfWork) -> None:
        for pending in unit.events:
            self._event_counter += 1
            record = EventRecord.create(
                event_id=f"evt_{self._event_counter:08d}",
                event_kind=pending.kind,
                actor_id=pending.actor_id,
                payload=pending.payload,
                timestamp_utc=pending.timestamp,
            )
            self._event_log.append(record)
        if unit.events:
            logger.debug(
                "Committed {} writes, {} events (last: {})",
                len(unit.undo), len(unit.events), unit.events[-1].kind.value,
            )


def to_jsonable(value: Any) -> Any:
    """Convert record values into canonical-JSON-safe structures."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(to_jsonable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
