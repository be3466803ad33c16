"""Access guard — ownership, role, pause and re-entry checks for one component.

Each component instance holds exactly one AccessGuard and delegates every
authorization decision to it. Mutating methods are wrapped with
@entry_point, which applies the checks in a fixed order before the method
body runs inside runtime.atomic():

    1. pause switch (skipped for pausable=False entry points)
    2. availability (a deactivated tenant instance rejects writes)
    3. re-entry flag (a nested call back into the same component)

Reads are plain methods and never pass through the guard.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional, TypeVar

from tracechain.errors import AuthorizationError, StateConflictError, ValidationError
from tracechain.models.access import Role
from tracechain.persistence.event_log import EventKind
from tracechain.persistence.store import RecordStore

if TYPE_CHECKING:
    from tracechain.access.control import AccessControl
    from tracechain.engine.runtime import LedgerRuntime

F = TypeVar("F", bound=Callable[..., Any])

_META = "meta"


class AccessGuard:
    """Composed capability: ownable, pausable, non-reentrant.

    The owner is persisted in the component's own store so ownership
    transfers roll back with the rest of a failed call.
    """

    def __init__(
        self,
        runtime: LedgerRuntime,
        store: RecordStore,
        access: Optional[AccessControl],
        owner: str,
        availability: Optional[Callable[[], bool]] = None,
    ) -> None:
        if not owner:
            raise ValidationError("Owner account required")
        self._runtime = runtime
        self._store = store
        self._access = access
        self._availability = availability
        self._entered: Optional[str] = None
        if self._store.get(_META, "owner") is None:
            self._store.put(_META, "owner", owner)

    @property
    def runtime(self) -> LedgerRuntime:
        return self._runtime

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def access(self) -> Optional[AccessControl]:
        return self._access

    @property
    def owner(self) -> str:
        return self._store.get(_META, "owner")

    def bind_access(self, access: AccessControl) -> None:
        self._access = access

    def set_availability(self, predicate: Optional[Callable[[], bool]]) -> None:
        self._availability = predicate

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def is_owner(self, caller: str) -> bool:
        return caller == self.owner

    def has_role(self, caller: str, role: Role) -> bool:
        return self._access is not None and self._access.has_role(role, caller)

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise AuthorizationError("Caller is not the owner")

    def require_role(self, caller: str, role: Role) -> None:
        if not self.has_role(caller, role):
            raise AuthorizationError(f"Caller lacks role: {role.value}")

    def require_owner_or_role(self, caller: str, role: Role) -> None:
        if not (self.is_owner(caller) or self.has_role(caller, role)):
            raise AuthorizationError(f"Caller is not the owner and lacks role: {role.value}")

    def require_not_paused(self) -> None:
        if self._access is not None and self._access.paused():
            raise StateConflictError("System is paused")

    def require_available(self) -> None:
        if self._availability is not None and not self._availability():
            raise StateConflictError("Instance is deactivated")

    @contextmanager
    def enter(self, name: str) -> Iterator[None]:
        if self._entered is not None:
            raise StateConflictError(
                f"Reentrant call to {name} rejected while {self._entered} is in progress"
            )
        self._entered = name
        try:
            yield
        finally:
            self._entered = None

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def transfer_ownership(
        self,
        caller: str,
        new_owner: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Hand the component to a new owner. Must run inside a unit of work."""
        self.require_owner(caller)
        if not new_owner or not new_owner.strip():
            raise ValidationError("New owner required")
        previous = self.owner
        self._store.put(_META, "owner", new_owner)
        self.emit(EventKind.OWNERSHIP_TRANSFERRED, caller, {
            "previous_owner": previous,
            "new_owner": new_owner,
        }, now)

    def emit(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> None:
        """Emit an event tagged with this component's namespace."""
        self._runtime.emit(kind, actor_id, {"component": self._store.namespace, **payload}, now)


def entry_point(method: Optional[F] = None, *, pausable: bool = True) -> Any:
    """Mark a component method as a mutating entry point.

    The component must expose its AccessGuard as ``self.guard``.
    """

    def decorate(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            guard: AccessGuard = self.guard
            if pausable:
                guard.require_not_paused()
            guard.require_available()
            with guard.enter(fn.__name__):
                with guard.runtime.atomic():
                    return fn(self, *args, **kwargs)

        return wrapper  # type: ignore[return-value]

    if method is not None:
        return decorate(method)
    return decorate
