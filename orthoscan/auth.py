"""
Access Control & Session State.

Role to permission mapping for the acting user, plus an injectable
``SessionManager`` that holds that user for a single-user process.
Authentication itself (credentials, tokens) happens outside this package.

Usage::

    from orthoscan.auth import SessionManager, has_permission
    from orthoscan.models.enums import Permission

    session = SessionManager()
    session.set_current_user(user)
    if has_permission(session.get_current_user(), Permission.LAB_WRITE):
        ...
"""

from __future__ import annotations

import threading
from typing import Optional

from orthoscan.models.enums import Permission, UserRole
from orthoscan.models.user import User

CurrentUser = User

_ALL_PERMISSIONS: frozenset[Permission] = frozenset(Permission)

_CLIENT_PERMISSIONS: frozenset[Permission] = frozenset({
    Permission.DASHBOARD_READ,
    Permission.PATIENTS_READ,
    Permission.PATIENTS_WRITE,
    Permission.SCANS_READ,
    Permission.CASES_READ,
    Permission.DOCS_READ,
})

ROLE_PERMISSIONS: dict[UserRole, frozenset[Permission]] = {
    UserRole.MASTER_ADMIN: _ALL_PERMISSIONS,
    # Dentist admins may delete users and patients, nothing else.
    UserRole.DENTIST_ADMIN: frozenset(
        perm
        for perm in _ALL_PERMISSIONS
        if not perm.value.endswith(".delete")
        or perm in (Permission.USERS_DELETE, Permission.PATIENTS_DELETE)
    ),
    UserRole.DENTIST_CLIENT: _CLIENT_PERMISSIONS,
    UserRole.CLINIC_CLIENT: _CLIENT_PERMISSIONS,
    UserRole.LAB_TECH: frozenset({
        Permission.LAB_READ,
        Permission.CASES_READ,
        Permission.SCANS_READ,
    }),
    UserRole.RECEPTIONIST: frozenset({
        Permission.DASHBOARD_READ,
        Permission.PATIENTS_READ,
        Permission.PATIENTS_WRITE,
        Permission.SCANS_READ,
        Permission.SCANS_WRITE,
        Permission.CASES_READ,
        Permission.LAB_READ,
    }),
}


def permissions_for(role: UserRole) -> frozenset[Permission]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def has_permission(user: User, permission: Permission) -> bool:
    """``True`` when *user* is active and their role grants *permission*."""
    if not user.is_active:
        return False
    return permission in permissions_for(user.role)


class SessionManager:
    """Injectable holder for the current acting user.

    Pass a single ``SessionManager`` through the composition root so every
    component shares the same session.
    """

    def __init__(self) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._current_user: Optional[User] = None

    def set_current_user(self, user: User) -> None:
        with self._lock:
            self._current_user = user

    def get_current_user(self) -> User:
        """Return the acting user.

        Raises:
            RuntimeError: If no user has been set.
        """
        with self._lock:
            if self._current_user is None:
                raise RuntimeError(
                    "No user is currently authenticated. Login required."
                )
            return self._current_user

    def clear(self) -> None:
        with self._lock:
            self._current_user = None

    @property
    def is_authenticated(self) -> bool:
        with self._lock:
            return self._current_user is not None
