"""Typing presence.

In-memory only. Entries are keyed by room and user, and remember which
connections announced them so an abrupt disconnect clears the indicator.
Entries that are not refreshed within ``expiry_seconds`` are removed by
sweep(), which the janitor calls periodically.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from constants import EVT_USER_STOP_TYPING, EVT_USER_TYPING

TYPING_EXPIRY_SECONDS = 8


@dataclass
class TypingEntry:
    user_id: str
    role: Optional[str]
    display_name: Optional[str]
    sids: Set[str] = field(default_factory=set)
    updated_at: float = field(default_factory=time.time)

    def to_payload(self, room: str) -> dict:
        return {
            "roomId": room,
            "userId": self.user_id,
            "role": self.role,
            "displayName": self.display_name,
        }


class TypingTracker:
    def __init__(self, broadcaster, expiry_seconds: float = TYPING_EXPIRY_SECONDS):
        self.broadcaster = broadcaster
        self.expiry_seconds = float(expiry_seconds)
        self._lock = threading.Lock()
        self._rooms: Dict[str, Dict[str, TypingEntry]] = {}

    def start_typing(
        self,
        room: str,
        user_id: str,
        role: str | None,
        display_name: str | None,
        sid: str | None = None,
        now: float | None = None,
    ) -> TypingEntry:
        with self._lock:
            users = self._rooms.setdefault(room, {})
            entry = users.get(user_id)
            if entry is None:
                entry = TypingEntry(user_id=user_id, role=role, display_name=display_name)
                users[user_id] = entry
            entry.role = role
            entry.display_name = display_name
            entry.updated_at = time.time() if now is None else now
            if sid:
                entry.sids.add(sid)
            payload = entry.to_payload(room)

        # Re-announcing is harmless: clients treat typing users as a set.
        self.broadcaster.broadcast(room, EVT_USER_TYPING, payload, skip_sid=sid)
        return entry

    def stop_typing(
        self,
        room: str,
        user_id: str,
        sid: str | None = None,
        role: str | None = None,
        display_name: str | None = None,
    ) -> Optional[TypingEntry]:
        """Clear the user's indicator. Returns the removed entry, or None if none existed."""
        with self._lock:
            entry = self._pop_locked(room, user_id)
        if entry is not None:
            payload = entry.to_payload(room)
        else:
            payload = TypingEntry(user_id=user_id, role=role, display_name=display_name).to_payload(room)
        self.broadcaster.broadcast(room, EVT_USER_STOP_TYPING, payload, skip_sid=sid)
        return entry

    def drop_connection(self, sid: str) -> List[Tuple[str, TypingEntry]]:
        """Forget sid everywhere; entries left with no announcing connection are cleared."""
        removed: List[Tuple[str, TypingEntry]] = []
        with self._lock:
            for room, users in list(self._rooms.items()):
                for user_id, entry in list(users.items()):
                    if sid not in entry.sids:
                        continue
                    entry.sids.discard(sid)
                    if not entry.sids:
                        removed.append((room, self._pop_locked(room, user_id)))
        for room, entry in removed:
            self.broadcaster.broadcast(room, EVT_USER_STOP_TYPING, entry.to_payload(room))
        return removed

    def sweep(self, now: float | None = None) -> List[Tuple[str, TypingEntry]]:
        """Expire entries that were not refreshed in time."""
        now = time.time() if now is None else now
        cutoff = now - self.expiry_seconds
        expired: List[Tuple[str, TypingEntry]] = []
        with self._lock:
            for room, users in list(self._rooms.items()):
                for user_id, entry in list(users.items()):
                    if entry.updated_at < cutoff:
                        expired.append((room, self._pop_locked(room, user_id)))
        for room, entry in expired:
            self.broadcaster.broadcast(room, EVT_USER_STOP_TYPING, entry.to_payload(room))
        return expired

    def typing_users(self, room: str) -> List[dict]:
        with self._lock:
            return [e.to_payload(room) for e in self._rooms.get(room, {}).values()]

    def _pop_locked(self, room: str, user_id: str) -> Optional[TypingEntry]:
        users = self._rooms.get(room)
        if not users:
            return None
        entry = users.pop(user_id, None)
        if not users:
            del self._rooms[room]
        return entry
