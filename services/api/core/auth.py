# services/api/core/auth.py
"""
Login against the Users sheet and the role -> capability table.
"""
from __future__ import annotations

import hashlib
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from models.user import Role, User


class Capability(str, Enum):
    RECORD_SHIFTS = "record_shifts"
    EDIT_OWN_HISTORY = "edit_own_history"
    EDIT_HISTORY = "edit_history"
    VIEW_ANALYTICS = "view_analytics"
    MANAGE_REFERENCES = "manage_references"
    EDIT_SETTINGS = "edit_settings"


ROLE_CAPABILITIES = {
    Role.OWNER: frozenset({
        Capability.VIEW_ANALYTICS,
        Capability.MANAGE_REFERENCES,
        Capability.EDIT_SETTINGS,
    }),
    Role.EMPLOYEE: frozenset({
        Capability.RECORD_SHIFTS,
        Capability.EDIT_OWN_HISTORY,
    }),
    Role.ADMIN: frozenset({
        Capability.RECORD_SHIFTS,
        Capability.EDIT_OWN_HISTORY,
        Capability.EDIT_HISTORY,
        Capability.EDIT_SETTINGS,
    }),
}


def capabilities_for(role: Role) -> FrozenSet[Capability]:
    return ROLE_CAPABILITIES.get(role, frozenset())


def can_edit_entry(user: User, executor: Optional[str]) -> bool:
    """Full history editors can touch any row; others only their own."""
    caps = capabilities_for(user.role)
    if Capability.EDIT_HISTORY in caps:
        return True
    return Capability.EDIT_OWN_HISTORY in caps and (executor or "") == user.name


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def authenticate(users: Iterable[User], login: str, password: str) -> Optional[User]:
    """
    Case-insensitive login match. The sheet may hold either the
    cleartext password or its sha256 hex digest; both are accepted.
    """
    login = (login or "").strip().lower()
    password = (password or "").strip()
    if not login or not password:
        return None

    user = next((u for u in users if u.login.strip().lower() == login), None)
    if user is None:
        return None

    stored = user.password.strip()
    if stored == password or stored.lower() == hash_password(password):
        return user
    return None


def local_login(login: str, password: str, role: Role, expected_password: str = "") -> Optional[User]:
    """
    Session user when there is no Users sheet to check against.
    Any login is accepted; the password only matters if one is configured.
    """
    login = (login or "").strip()
    if not login:
        return None
    user = User(id=f"local:{login.lower()}", login=login, name=login, role=role, password=expected_password)
    if expected_password:
        return authenticate([user], login, password)
    return user
