"""memory_store.py

In-process implementation of the store contract (see database.PostgresStore).

Used for local development (``store_backend: memory``) and by the test suite.
Every read returns a copy so callers can never mutate stored state without
going through save_message(), same as with a real database.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Dict, List, Optional

from constants import ROOM_CHANNEL
from errors import ValidationError
from models import Message, Notification, User, new_id, utcnow


class MemoryStore:
    backend = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._messages: Dict[str, Message] = {}
        self._notifications: Dict[str, Notification] = {}
        self.audit_log: List[tuple] = []

    def init_schema(self) -> None:
        return None

    # ── users ───────────────────────────────────────────────────────────

    def create_user(self, name: str, email: str, password_hash: str = "", role: str = "student") -> User:
        email = (email or "").strip().lower()
        with self._lock:
            if any(u.email == email for u in self._users.values()):
                raise ValidationError("User with this email already exists")
            user = User(id=new_id(), name=name, email=email, role=role, password_hash=password_hash)
            self._users[user.id] = user
            return replace(user)

    def find_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(str(user_id))
            return replace(user) if user else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        email = (email or "").strip().lower()
        with self._lock:
            for user in self._users.values():
                if user.email == email:
                    return replace(user)
        return None

    def set_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(str(user_id))
            if not user:
                return None
            user.role = role
            return replace(user)

    def update_password_hash(self, user_id: str, password_hash: str) -> bool:
        with self._lock:
            user = self._users.get(str(user_id))
            if not user:
                return False
            user.password_hash = password_hash
            return True

    def fanout_user_ids(self, excluding: str | None) -> List[str]:
        with self._lock:
            return [uid for uid in self._users if uid != excluding]

    # ── messages ────────────────────────────────────────────────────────

    def find_message(self, message_id: str) -> Optional[Message]:
        with self._lock:
            msg = self._messages.get(str(message_id))
            return msg.copy() if msg else None

    def save_message(self, msg: Message) -> Message:
        with self._lock:
            self._messages[msg.id] = msg.copy()
            return msg.copy()

    def list_messages(self, limit: int | None = None) -> List[Message]:
        with self._lock:
            rows = sorted(
                (m for m in self._messages.values() if m.room_id == ROOM_CHANNEL),
                key=lambda m: m.created_at,
            )
            if limit:
                rows = rows[-int(limit):]
            return [m.copy() for m in rows]

    # ── notifications ───────────────────────────────────────────────────

    def create_notification(self, data: dict) -> Notification:
        note = Notification(
            id=new_id(),
            user_id=str(data["user_id"]),
            type=data["type"],
            title=data["title"],
            message=data["message"],
            room_id=data.get("room_id") or ROOM_CHANNEL,
            message_id=data.get("message_id"),
        )
        with self._lock:
            if note.user_id not in self._users:
                raise ValidationError(f"User {note.user_id} not found")
            self._notifications[note.id] = note
            return replace(note)

    def list_notifications(self, user_id: str, limit: int = 50) -> List[Notification]:
        with self._lock:
            rows = [n for n in self._notifications.values() if n.user_id == str(user_id)]
        rows.sort(key=lambda n: n.created_at, reverse=True)
        return [replace(n) for n in rows[: max(1, int(limit))]]

    def count_unread(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for n in self._notifications.values() if n.user_id == str(user_id) and not n.is_read)

    def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        with self._lock:
            note = self._notifications.get(str(notification_id))
            if not note or note.user_id != str(user_id):
                return None
            note.is_read = True
            return replace(note)

    def mark_all_notifications_read(self, user_id: str) -> int:
        changed = 0
        with self._lock:
            for note in self._notifications.values():
                if note.user_id == str(user_id) and not note.is_read:
                    note.is_read = True
                    changed += 1
        return changed

    # ── audit ───────────────────────────────────────────────────────────

    def record_audit(self, actor: str, action: str, target: str | None = None, details: str | None = None) -> None:
        with self._lock:
            self.audit_log.append((utcnow(), actor, action, target, details))
        logging.debug("audit: %s %s %s", actor, action, target)

