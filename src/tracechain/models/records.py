"""Shared record capability — the unique-key contract every indexed entity meets."""

from __future__ import annotations

from typing import Hashable, Protocol, runtime_checkable


@runtime_checkable
class UniqueRecord(Protocol):
    """An entity stored under a primary id with globally unique secondary keys.

    RecordStore.insert claims every key returned by unique_keys() before
    writing the record, and rejects the write if any key is already held
    by a different record.
    """

    @property
    def record_id(self) -> Hashable:
        ...

    def unique_keys(self) -> dict[str, Hashable]:
        ...
