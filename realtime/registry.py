"""Connection registry.

Tracks every live Socket.IO session, its authentication state and the
channels it has joined. One instance is created by the app factory and handed
to the handlers, the broadcaster and the HTTP routes.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from constants import user_channel


@dataclass
class Connection:
    sid: str
    user_id: Optional[str] = None
    role: Optional[str] = None
    display_name: Optional[str] = None
    channels: Set[str] = field(default_factory=set)
    connected_at: float = field(default_factory=time.time)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


class ConnectionRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Dict[str, Connection] = {}
        self._channels: Dict[str, Set[str]] = {}

    def add(self, sid: str) -> Connection:
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None:
                conn = Connection(sid=sid)
                self._connections[sid] = conn
            return conn

    def get(self, sid: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(sid)

    def join(self, sid: str, channel: str) -> None:
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None:
                return
            conn.channels.add(channel)
            self._channels.setdefault(channel, set()).add(sid)

    def _leave_locked(self, sid: str, channel: str) -> None:
        conn = self._connections.get(sid)
        if conn is not None:
            conn.channels.discard(channel)
        members = self._channels.get(channel)
        if members is not None:
            members.discard(sid)
            if not members:
                del self._channels[channel]

    def bind(self, sid: str, user_id: str, role: str, display_name: str | None = None) -> Optional[str]:
        """Attach an identity to a connection.

        Returns the private channel of a previously bound *different* user,
        which the connection has now left.
        """
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None:
                return None
            previous = None
            if conn.user_id is not None and conn.user_id != user_id:
                previous = user_channel(conn.user_id)
                self._leave_locked(sid, previous)
            conn.user_id = str(user_id)
            conn.role = role
            conn.display_name = display_name
            return previous

    def remove(self, sid: str) -> Optional[Connection]:
        with self._lock:
            conn = self._connections.pop(sid, None)
            if conn is None:
                return None
            for channel in list(conn.channels):
                self._leave_locked(sid, channel)
            return conn

    def members(self, channel: str) -> List[str]:
        with self._lock:
            return sorted(self._channels.get(channel, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self.members(user_channel(user_id)))

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
