#!/usr/bin/env python3
"""routes_chat.py

Chat-related HTTP endpoints: message history and mutations, notifications,
health.

Mutations go through the same MutationEngine as the Socket.IO handlers, so a
message created or deleted over HTTP is broadcast to the room exactly like
one sent over the socket.
"""

from __future__ import annotations

from flask import current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from constants import APP_VERSION
from errors import NotFoundError


def _services():
    return current_app.config["SUPERPAAC_SERVICES"]


def _int_arg(name: str, default: int, max_val: int) -> int:
    try:
        val = int(request.args.get(name, default))
    except (TypeError, ValueError):
        val = default
    return max(1, min(val, max_val))


def _message_payloads(store, messages) -> list[dict]:
    users: dict = {}
    out = []
    for msg in messages:
        if msg.sender_id and msg.sender_id not in users:
            users[msg.sender_id] = store.find_user(msg.sender_id)
        sender = users.get(msg.sender_id) if msg.sender_id else None
        out.append(msg.to_payload(sender, redact_deleted=True))
    return out


def register_chat_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    history_limit = int(settings.get("history_limit") or 200)

    # ── Messages ────────────────────────────────────────────────────────

    @app.route("/api/messages", methods=["GET"])
    @jwt_required()
    def api_list_messages():
        store = _services().store
        messages = store.list_messages(_int_arg("limit", history_limit, 1000))
        return jsonify({"success": True, "data": _message_payloads(store, messages)})

    @app.route("/api/messages", methods=["POST"])
    @_limit(settings.get("message_rate_limit") or "60 per minute")
    @jwt_required()
    def api_create_message():
        data = request.get_json(silent=True) or {}
        svc = _services()
        msg = svc.engine.create_message(
            get_jwt_identity(),
            data.get("text"),
            attachments=data.get("attachments"),
        )
        sender = svc.store.find_user(msg.sender_id)
        return jsonify({"success": True, "message": "Message created", "data": msg.to_payload(sender)}), 201

    @app.route("/api/messages/<message_id>", methods=["DELETE"])
    @jwt_required()
    def api_delete_message(message_id):
        msg = _services().engine.soft_delete(get_jwt_identity(), message_id)
        return jsonify({"success": True, "message": "Message deleted", "data": {"messageId": msg.id}})

    # ── Notifications ───────────────────────────────────────────────────

    @app.route("/api/notifications", methods=["GET"])
    @jwt_required()
    def api_list_notifications():
        user_id = get_jwt_identity()
        store = _services().store
        notes = store.list_notifications(user_id, _int_arg("limit", 50, 200))
        return jsonify(
            {
                "success": True,
                "data": {
                    "notifications": [n.to_payload() for n in notes],
                    "unreadCount": store.count_unread(user_id),
                },
            }
        )

    @app.route("/api/notifications/unread-count", methods=["GET"])
    @jwt_required()
    def api_unread_count():
        count = _services().store.count_unread(get_jwt_identity())
        return jsonify({"success": True, "data": {"unreadCount": count}})

    @app.route("/api/notifications/<notification_id>/read", methods=["POST"])
    @jwt_required()
    def api_mark_notification_read(notification_id):
        note = _services().fanout.mark_read(notification_id, get_jwt_identity())
        if note is None:
            raise NotFoundError("Notification not found")
        return jsonify({"success": True, "data": note.to_payload()})

    @app.route("/api/notifications/read-all", methods=["POST"])
    @jwt_required()
    def api_mark_all_notifications_read():
        changed = _services().fanout.mark_all_read(get_jwt_identity())
        return jsonify({"success": True, "data": {"modifiedCount": changed}})

    # ── Health ──────────────────────────────────────────────────────────

    @app.route("/health", methods=["GET"])
    def health():
        svc = _services()
        return jsonify(
            {
                "ok": True,
                "version": APP_VERSION,
                "store": getattr(svc.store, "backend", "postgres"),
                "connections": len(svc.registry),
            }
        )
