"""Socket.IO handlers: connection lifecycle, authentication and typing."""

import logging

from flask import request

from errors import ChatError
from realtime.auth_gate import credential_from_payload


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    gate = ctx.services.gate
    typing = ctx.services.typing

    @socketio.on("connect")
    def handle_connect(auth=None):
        sid = request.sid
        gate.on_connect(sid)

        # Optional: a token in the connect auth payload saves a round trip.
        credential = credential_from_payload(auth) if auth else None
        if credential:
            try:
                gate.authenticate(sid, credential)
            except ChatError as exc:
                ctx.fail(sid, exc)

    @socketio.on("disconnect")
    def handle_disconnect(*args, **kwargs):
        # Socket.IO may pass a reason depending on version.
        gate.on_disconnect(request.sid)

    @socketio.on("authenticate")
    def handle_authenticate(data=None):
        sid = request.sid
        try:
            result = gate.authenticate(sid, credential_from_payload(data))
        except ChatError as exc:
            logging.info("Socket authentication failed sid=%s: %s", sid, exc.message)
            return ctx.fail(sid, exc)
        return {"success": True, **result}

    @socketio.on("typing")
    def handle_typing(data=None):
        sid = request.sid
        try:
            conn = ctx.current_user(sid)
            room = ctx.room_of(data)
        except ChatError as exc:
            return ctx.fail(sid, exc)
        typing.start_typing(room, conn.user_id, conn.role, conn.display_name, sid=sid)
        return {"success": True}

    @socketio.on("stop_typing")
    def handle_stop_typing(data=None):
        sid = request.sid
        try:
            conn = ctx.current_user(sid)
            room = ctx.room_of(data)
        except ChatError as exc:
            return ctx.fail(sid, exc)
        typing.stop_typing(room, conn.user_id, sid=sid, role=conn.role, display_name=conn.display_name)
        return {"success": True}
