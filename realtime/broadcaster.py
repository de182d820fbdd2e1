"""Room broadcaster.

Delivers an event to every connection currently registered on a channel.
Sends on one channel are serialized by a per-channel lock so clients observe
events in publish order; a failed send to one session is logged and skipped
without aborting delivery to the rest of the channel.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from constants import EVT_ERROR, EVT_MESSAGE_CREATED


DEFAULT_EVENT_ALIASES = {EVT_MESSAGE_CREATED: "newMessage"}


class RoomBroadcaster:
    def __init__(self, socketio, registry, aliases: Optional[Dict[str, str]] = None):
        self.socketio = socketio
        self.registry = registry
        self.aliases = dict(DEFAULT_EVENT_ALIASES if aliases is None else aliases)
        self._locks_guard = threading.Lock()
        self._channel_locks: Dict[str, threading.Lock] = {}

    def _channel_lock(self, channel: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._channel_locks.get(channel)
            if lock is None:
                lock = threading.Lock()
                self._channel_locks[channel] = lock
            return lock

    def broadcast(self, channel: str, event: str, payload, skip_sid: str | None = None) -> int:
        """Send to every member of channel except skip_sid. Returns the delivery count."""
        events = [event]
        alias = self.aliases.get(event)
        if alias:
            events.append(alias)

        delivered = 0
        with self._channel_lock(channel):
            for sid in self.registry.members(channel):
                if sid == skip_sid:
                    continue
                if self._send(sid, events, payload):
                    delivered += 1
        return delivered

    def emit_to(self, sid: str, event: str, payload) -> bool:
        return self._send(sid, [event], payload)

    def emit_error(self, sid: str, message: str) -> bool:
        return self._send(sid, [EVT_ERROR], {"message": message})

    def _send(self, sid: str, events, payload) -> bool:
        try:
            for name in events:
                self.socketio.emit(name, payload, to=sid)
            return True
        except Exception as exc:
            # Dead or half-closed transport; the client refetches on reconnect.
            logging.warning("Broadcast to sid=%s failed (%s): %s", sid, events[0], exc)
            return False
