"""Access control — role registry and the global emergency switch.

Every other component holds a reference to one AccessControl and consults
it through its AccessGuard: role checks for privileged entry points and
the pause flag for every mutating one. Reads stay available while paused.

Role management and pause/unpause are themselves exempt from the pause
switch, otherwise a paused system could never be unpaused.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from tracechain.engine.guard import AccessGuard, entry_point
from tracechain.engine.runtime import LedgerRuntime
from tracechain.errors import StateConflictError, ValidationError
from tracechain.models.access import Role
from tracechain.persistence.event_log import EventKind

_MEMBERS = "members"
_ROLE_COUNTS = "role_counts"
_META = "meta"


class AccessControl:
    """Role registry with an admin-controlled pause switch.

    Usage:
        access = AccessControl(runtime, admin="admin")
        access.grant_role("admin", Role.ARBITER, "arbiter_1")
        access.has_role(Role.ARBITER, "arbiter_1")  # True
        access.pause("admin")
    """

    def __init__(
        self,
        runtime: LedgerRuntime,
        admin: str,
        namespace: str = "access",
        now: Optional[datetime] = None,
    ) -> None:
        self._runtime = runtime
        self._store = runtime.open_store(namespace)
        with runtime.atomic():
            self.guard = AccessGuard(runtime, self._store, self, admin)
            self._add_member(Role.ADMIN, admin, admin, now)

    # ------------------------------------------------------------------
    # Role management
    # ------------------------------------------------------------------

    @entry_point(pausable=False)
    def grant_role(
        self,
        caller: str,
        role: Union[Role, str],
        account: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Grant a role. Returns False if the account already holds it."""
        role = _role(role)
        self.guard.require_role(caller, Role.ADMIN)
        if not account or not account.strip():
            raise ValidationError("Account required")
        if self.has_role(role, account):
            return False
        self._add_member(role, account, caller, now)
        return True

    @entry_point(pausable=False)
    def revoke_role(
        self,
        caller: str,
        role: Union[Role, str],
        account: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Revoke a role. Returns False if the account does not hold it."""
        role = _role(role)
        self.guard.require_role(caller, Role.ADMIN)
        if not self.has_role(role, account):
            return False
        self._remove_member(role, account, caller, now)
        return True

    @entry_point(pausable=False)
    def renounce_role(
        self,
        caller: str,
        role: Union[Role, str],
        now: Optional[datetime] = None,
    ) -> bool:
        """Give up one of the caller's own roles."""
        role = _role(role)
        if not self.has_role(role, caller):
            return False
        self._remove_member(role, caller, caller, now)
        return True

    def has_role(self, role: Union[Role, str], account: str) -> bool:
        return self._store.contains(_MEMBERS, (_role(role), account))

    def members(self, role: Union[Role, str]) -> list[str]:
        role = _role(role)
        return sorted(account for r, account in self._store.keys(_MEMBERS) if r == role)

    def member_count(self, role: Union[Role, str]) -> int:
        return self._store.get(_ROLE_COUNTS, _role(role), 0)

    # ------------------------------------------------------------------
    # Emergency switch
    # ------------------------------------------------------------------

    @entry_point(pausable=False)
    def pause(self, caller: str, now: Optional[datetime] = None) -> None:
        """Block every pausable entry point system-wide."""
        self.guard.require_role(caller, Role.ADMIN)
        if self.paused():
            raise StateConflictError("System already paused")
        self._store.put(_META, "paused", True)
        self.guard.emit(EventKind.SYSTEM_PAUSED, caller, {}, now)

    @entry_point(pausable=False)
    def unpause(self, caller: str, now: Optional[datetime] = None) -> None:
        self.guard.require_role(caller, Role.ADMIN)
        if not self.paused():
            raise StateConflictError("System is not paused")
        self._store.put(_META, "paused", False)
        self.guard.emit(EventKind.SYSTEM_UNPAUSED, caller, {}, now)

    def paused(self) -> bool:
        return bool(self._store.get(_META, "paused", False))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _add_member(
        self,
        role: Role,
        account: str,
        caller: str,
        now: Optional[datetime],
    ) -> None:
        self._store.put(_MEMBERS, (role, account), True)
        self._store.increment(_ROLE_COUNTS, role)
        self.guard.emit(EventKind.ROLE_GRANTED, caller, {
            "role": role,
            "account": account,
        }, now)

    def _remove_member(
        self,
        role: Role,
        account: str,
        caller: str,
        now: Optional[datetime],
    ) -> None:
        if role == Role.ADMIN and self.member_count(Role.ADMIN) <= 1:
            raise StateConflictError("Cannot remove the last admin")
        self._store.delete(_MEMBERS, (role, account))
        self._store.increment(_ROLE_COUNTS, role, -1)
        self.guard.emit(EventKind.ROLE_REVOKED, caller, {
            "role": role,
            "account": account,
        }, now)


def _role(value: Union[Role, str]) -> Role:
    try:
        return Role(value)
    except ValueError as e:
        raise ValidationError(f"Unknown role: {value}") from e
