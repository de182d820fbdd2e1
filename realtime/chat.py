"""Socket.IO handlers: message create, soft-delete, reactions and pins.

All mutations act as the user bound to the calling connection. A userId in
the payload is never trusted.
"""

from flask import request

from errors import ChatError


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    engine = ctx.services.engine

    def handle_create(data=None):
        sid = request.sid
        data = data if isinstance(data, dict) else {"text": data}
        try:
            conn = ctx.current_user(sid)
            ctx.room_of(data)
            msg = engine.create_message(conn.user_id, data.get("text"), attachments=data.get("attachments"))
        except ChatError as exc:
            return ctx.fail(sid, exc)
        return {"success": True, "messageId": msg.id}

    def handle_soft_delete(data=None):
        sid = request.sid
        try:
            conn = ctx.current_user(sid)
            msg = engine.soft_delete(conn.user_id, ctx.message_id_of(data))
        except ChatError as exc:
            return ctx.fail(sid, exc)
        return {"success": True, "messageId": msg.id}

    for name in ("chatMessage", "message:create"):
        socketio.on_event(name, handle_create)
    for name in ("messageSoftDeleted", "message:delete", "deleteMessage"):
        socketio.on_event(name, handle_soft_delete)

    @socketio.on("message:react")
    def handle_react(data=None):
        sid = request.sid
        data = data if isinstance(data, dict) else {}
        try:
            conn = ctx.current_user(sid)
            ctx.room_of(data)
            msg = engine.toggle_reaction(conn.user_id, ctx.message_id_of(data), data.get("emoji") or data.get("reaction"))
        except ChatError as exc:
            return ctx.fail(sid, exc)
        return {"success": True, "messageId": msg.id, "reactions": msg.reactions_payload()}

    @socketio.on("message:pinToggle")
    def handle_pin_toggle(data=None):
        sid = request.sid
        data = data if isinstance(data, dict) else {}
        pin = data.get("pin")
        if pin is None:
            pin = data.get("isPinned")
        try:
            conn = ctx.current_user(sid)
            ctx.room_of(data)
            msg = engine.toggle_pin(conn.user_id, ctx.message_id_of(data), pin)
        except ChatError as exc:
            return ctx.fail(sid, exc)
        return {"success": True, **msg.pin_payload()}
