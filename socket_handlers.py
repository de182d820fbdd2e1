#!/usr/bin/env python3
"""
socket_handlers.py

Socket.IO event handlers for the SuperPAAC group chat.

Handlers are split by concern (see realtime/*.py). This module builds the
small set of helpers they share and registers each group. Every handler
returns an acknowledgement dict; failures are also emitted to the caller as
an `error` event so clients without ack callbacks still see them.
"""

import logging
from types import SimpleNamespace

from constants import ROOM_CHANNEL
from errors import AuthError, ChatError, ForbiddenError, ValidationError


def register_socketio_handlers(socketio, settings, services):
    """
    Registers all Socket.IO event handlers against the app's service instances.
    """

    registry = services.registry
    broadcaster = services.broadcaster

    def _current_user(sid: str):
        """Return the authenticated Connection for sid or raise AuthError."""
        conn = registry.get(sid)
        if conn is None or not conn.is_authenticated:
            raise AuthError("Not authenticated")
        return conn

    def _fail(sid: str, exc: ChatError) -> dict:
        if isinstance(exc, ForbiddenError):
            logging.warning("Socket action denied sid=%s: %s", sid, exc.detail)
        broadcaster.emit_error(sid, exc.message)
        return {"success": False, "error": exc.message, "code": exc.code}

    def _room_of(data) -> str:
        """The one room. A client naming any other room is refused."""
        requested = (data.get("roomId") or data.get("room")) if isinstance(data, dict) else None
        if requested and str(requested) != ROOM_CHANNEL:
            raise ValidationError(f"Unknown room: {requested}")
        return ROOM_CHANNEL

    def _message_id_of(data):
        # Clients send either the bare id or {"messageId": ...}.
        if isinstance(data, dict):
            return data.get("messageId") or data.get("message_id") or data.get("id")
        return data

    ctx = SimpleNamespace(
        services=services,
        current_user=_current_user,
        fail=_fail,
        room_of=_room_of,
        message_id_of=_message_id_of,
    )

    from realtime import chat, presence
    presence.register(socketio, settings, ctx)
    chat.register(socketio, settings, ctx)
