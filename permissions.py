#!/usr/bin/env python3
"""permissions.py

Role guards for privileged message actions.

The allowed roles per action are deployment policy, read from settings:
  - pin_roles          (default: teacher, admin, mentor)
  - soft_delete_roles  (default: admin)

The actor's role is always re-read from the store at the moment of the
action. The role captured on a Socket.IO connection at authentication time is
display-only and may be stale on a long-lived connection.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Set

from errors import ForbiddenError
from models import User

ACTION_PIN = "message:pin"
ACTION_SOFT_DELETE = "message:soft_delete"

DEFAULT_ACTION_ROLES: Dict[str, tuple] = {
    ACTION_PIN: ("teacher", "admin", "mentor"),
    ACTION_SOFT_DELETE: ("admin",),
}

_SETTING_KEYS = {
    ACTION_PIN: "pin_roles",
    ACTION_SOFT_DELETE: "soft_delete_roles",
}


def _normalize_roles(val: Iterable[str] | str | None) -> Set[str]:
    if val is None:
        return set()
    if isinstance(val, str):
        val = val.split(",")
    return {str(r).strip().lower() for r in val if str(r).strip()}


class RolePolicy:
    def __init__(self, store, settings: dict):
        self.store = store
        self.action_roles: Dict[str, Set[str]] = {}
        for action, default in DEFAULT_ACTION_ROLES.items():
            configured = settings.get(_SETTING_KEYS[action])
            roles = _normalize_roles(configured) if configured is not None else set(default)
            self.action_roles[action] = roles

    def allows(self, role: str | None, action: str) -> bool:
        return bool(role) and str(role).lower() in self.action_roles.get(action, set())

    def require(self, user_id: str | None, action: str) -> User:
        """Return the actor's current user record or raise ForbiddenError."""
        user = self.store.find_user(user_id) if user_id else None
        if user is None or not self.allows(user.role, action):
            logging.warning(
                "Permission denied: user=%s role=%s action=%s",
                user_id,
                user.role if user else None,
                action,
            )
            raise ForbiddenError(f"{action} requires one of {sorted(self.action_roles.get(action, ()))}")
        return user
