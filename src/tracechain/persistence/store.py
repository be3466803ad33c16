"""Record store — one isolated key-value namespace per component instance.

Each component owns exactly one store and mutates it only from its own
entry points. Every write is journaled with the value it replaced so the
runtime can unwind a failed unit of work to a savepoint. Writes outside an
open unit of work are refused: there is no way to change ledger state
except through an entry point.

Tables are plain dicts keyed by entity id. Values should be immutable
records (frozen dataclasses, tuples, Decimals); updates replace the whole
value so the journal captures them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Hashable, Iterator, Optional

from tracechain.errors import StateConflictError, ValidationError
from tracechain.models.records import UniqueRecord

if TYPE_CHECKING:
    from tracechain.engine.runtime import LedgerRuntime


_MISSING = object()
_SEQUENCE_TABLE = "_seq"
_UNIQUE_PREFIX = "_unique:"


class RecordStore:
    """Journaled key-value namespace.

    Usage:
        store = runtime.open_store("products")
        with runtime.atomic():
            pid = store.next_id("product")
            store.insert("product", product)
        product = store.get("product", pid)
    """

    def __init__(self, runtime: LedgerRuntime, namespace: str) -> None:
        self._runtime = runtime
        self._namespace = namespace
        self._tables: dict[str, dict[Hashable, Any]] = {}

    @property
    def namespace(self) -> str:
        return self._namespace

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, table: str, key: Hashable, default: Any = None) -> Any:
        return self._tables.get(table, {}).get(key, default)

    def require(self, table: str, key: Hashable, message: str) -> Any:
        """Return the value or raise ValidationError(message) if absent."""
        value = self._tables.get(table, {}).get(key, _MISSING)
        if value is _MISSING:
            raise ValidationError(message)
        return value

    def contains(self, table: str, key: Hashable) -> bool:
        return key in self._tables.get(table, {})

    def count(self, table: str) -> int:
        return len(self._tables.get(table, {}))

    def keys(self, table: str) -> list[Hashable]:
        return list(self._tables.get(table, {}).keys())

    def values(self, table: str) -> list[Any]:
        return list(self._tables.get(table, {}).values())

    def items(self, table: str) -> Iterator[tuple[Hashable, Any]]:
        return iter(list(self._tables.get(table, {}).items()))

    def lookup_unique(self, index: str, value: Hashable) -> Optional[Hashable]:
        """Return the record id holding a unique key, or None."""
        return self.get(_UNIQUE_PREFIX + index, value)

    # ------------------------------------------------------------------
    # Writes (journaled)
    # ------------------------------------------------------------------

    def put(self, table: str, key: Hashable, value: Any) -> None:
        rows = self._tables.setdefault(table, {})
        previous = rows.get(key, _MISSING)
        self._runtime.journal(self, table, key, previous)
        rows[key] = value

    def delete(self, table: str, key: Hashable) -> None:
        rows = self._tables.get(table, {})
        if key not in rows:
            return
        self._runtime.journal(self, table, key, rows[key])
        del rows[key]

    def increment(self, table: str, key: Hashable, delta: Any = 1) -> Any:
        value = self.get(table, key, 0) + delta
        self.put(table, key, value)
        return value

    def next_id(self, sequence: str) -> int:
        """Allocate the next value of a monotonic sequence, starting at 1."""
        return self.increment(_SEQUENCE_TABLE, sequence)

    def current_id(self, sequence: str) -> int:
        return self.get(_SEQUENCE_TABLE, sequence, 0)

    def claim_unique(self, index: str, value: Hashable, record_id: Hashable) -> None:
        """Bind a unique key to a record id. Rebinding to the same id is a no-op."""
        holder = self.lookup_unique(index, value)
        if holder is not None and holder != record_id:
            raise StateConflictError(f"{index} already exists: {value}")
        if holder is None:
            self.put(_UNIQUE_PREFIX + index, value, record_id)

    def insert(self, table: str, record: UniqueRecord) -> None:
        """Write a record after claiming all of its unique keys.

        Every key is checked before any is claimed, so a conflict leaves
        the store untouched even without a rollback.
        """
        keys = record.unique_keys()
        for index, value in keys.items():
            holder = self.lookup_unique(index, value)
            if holder is not None and holder != record.record_id:
                raise StateConflictError(f"{index} already exists: {value}")
        for index, value in keys.items():
            self.claim_unique(index, value, record.record_id)
        self.put(table, record.record_id, record)

    # ------------------------------------------------------------------
    # Journal replay (runtime only)
    # ------------------------------------------------------------------

    def _restore(self, table: str, key: Hashable, previous: Any) -> None:
        rows = self._tables.setdefault(table, {})
        if previous is _MISSING:
            rows.pop(key, None)
        else:
            rows[key] = previous
