#!/usr/bin/env python3
"""mutations.py

The message mutation engine: create, soft-delete, reaction toggle and pin
toggle.

Every read-modify-persist-broadcast sequence on a message runs under that
message's lock, so two concurrent toggles can never both read the same
starting state. The pin fan-out runs after the lock is released and works on
the value that was just written.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from constants import (
    EVT_MESSAGE_CREATED,
    EVT_MESSAGE_SOFT_DELETED,
    EVT_PIN_UPDATED,
    EVT_REACTION_UPDATED,
    PIN_NOTIFICATION_TITLE,
)
from errors import FanoutError, NotFoundError, ValidationError
from models import Attachment, Message, new_id, utcnow
from permissions import ACTION_PIN, ACTION_SOFT_DELETE

DEFAULT_MAX_MESSAGE_LENGTH = 4000
DEFAULT_MAX_ATTACHMENTS = 10
MAX_EMOJI_LENGTH = 32
PREVIEW_LENGTH = 100


class LockArena:
    """Per-key locks that are dropped once nobody holds or waits on them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = [threading.Lock(), 0]
                self._locks[key] = slot
            slot[1] += 1
        slot[0].acquire()
        try:
            yield
        finally:
            slot[0].release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def sanitize_attachments(raw, limit: int = DEFAULT_MAX_ATTACHMENTS) -> List[Attachment]:
    """Normalize client-supplied attachment metadata. Entries without a url are dropped."""
    out: List[Attachment] = []
    for meta in raw or []:
        if not isinstance(meta, dict):
            continue
        url = str(meta.get("url") or "").strip()
        if not url:
            continue
        name = str(meta.get("name") or meta.get("originalName") or "").strip()[:200]
        mime = str(meta.get("mimeType") or meta.get("mime_type") or meta.get("mime") or "").strip()[:100]
        size = None
        try:
            if meta.get("size") is not None:
                size = int(meta.get("size"))
        except (TypeError, ValueError):
            size = None
        kind = "image" if mime.startswith("image/") else "file"
        out.append(Attachment(url=url[:1000], name=name, mime_type=mime, size=size, kind=kind))
        if len(out) >= limit:
            break
    return out


def parse_flag(val) -> Optional[bool]:
    """None stays None. Booleans and the usual string spellings map to bool."""
    if val is None or isinstance(val, bool):
        return val
    if isinstance(val, int) and val in (0, 1):
        return bool(val)
    word = str(val).strip().lower()
    if word in ("true", "1", "yes", "on"):
        return True
    if word in ("false", "0", "no", "off"):
        return False
    raise ValidationError(f"Expected true or false, got {val!r}")


def message_preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    text = text or ""
    if len(text) > length:
        return text[:length] + "..."
    return text


def pin_notification_template(msg: Message, actor_role: str) -> dict:
    return {
        "type": "PINNED_ANNOUNCEMENT",
        "title": PIN_NOTIFICATION_TITLE,
        "message": f"{(actor_role or '').capitalize()} pinned a message: {message_preview(msg.text)}",
        "room_id": msg.room_id,
        "message_id": msg.id,
    }


class MutationEngine:
    def __init__(self, store, broadcaster, fanout, policy, settings: dict | None = None):
        settings = settings or {}
        self.store = store
        self.broadcaster = broadcaster
        self.fanout = fanout
        self.policy = policy
        self.locks = LockArena()
        self.max_message_length = int(settings.get("max_message_length") or DEFAULT_MAX_MESSAGE_LENGTH)
        self.max_attachments = int(settings.get("max_attachments") or DEFAULT_MAX_ATTACHMENTS)

    def _load(self, message_id) -> Message:
        msg = self.store.find_message(str(message_id)) if message_id else None
        if msg is None:
            raise NotFoundError("Message not found")
        return msg

    # ── create ──────────────────────────────────────────────────────────

    def create_message(self, actor_id: str, text: str | None, attachments=None) -> Message:
        actor = self.store.find_user(actor_id) if actor_id else None
        if actor is None:
            raise NotFoundError("User not found")

        if text is not None and not isinstance(text, str):
            raise ValidationError("Message text must be a string")
        text = (text or "").strip()
        files = sanitize_attachments(attachments, self.max_attachments)
        if not text and not files:
            raise ValidationError("Message must contain text or attachments")
        if len(text) > self.max_message_length:
            raise ValidationError(f"Message too long (max {self.max_message_length} characters)")
        if not text:
            text = f"📎 {len(files)} file(s) shared"

        msg = Message(
            id=new_id(),
            text=text,
            sender_id=actor.id,
            sender_role=actor.role,
            attachments=files,
        )
        with self.locks.hold(msg.id):
            saved = self.store.save_message(msg)
            self.broadcaster.broadcast(saved.room_id, EVT_MESSAGE_CREATED, saved.to_payload(actor))
        logging.info("Message %s created by %s (%s)", saved.id, actor.id, actor.role)
        return saved

    # ── soft delete ─────────────────────────────────────────────────────

    def soft_delete(self, actor_id: str, message_id) -> Message:
        actor = self.policy.require(actor_id, ACTION_SOFT_DELETE)
        with self.locks.hold(str(message_id)):
            msg = self._load(message_id)
            if not msg.is_deleted:
                msg.soft_delete(actor.role, utcnow())
                msg = self.store.save_message(msg)
            self.broadcaster.broadcast(msg.room_id, EVT_MESSAGE_SOFT_DELETED, {"messageId": msg.id})
        self.store.record_audit(actor.id, "message_soft_delete", msg.id, f"role={actor.role}")
        logging.info("Message %s soft-deleted by %s", msg.id, actor.id)
        return msg

    # ── reactions ───────────────────────────────────────────────────────

    def toggle_reaction(self, actor_id: str, message_id, emoji) -> Message:
        emoji = str(emoji or "").strip()
        if not emoji:
            raise ValidationError("Emoji is required")
        if len(emoji) > MAX_EMOJI_LENGTH:
            raise ValidationError("Unsupported reaction")
        if not actor_id:
            raise ValidationError("User is required")

        with self.locks.hold(str(message_id)):
            msg = self._load(message_id)
            if msg.is_deleted:
                raise ValidationError("Cannot react to a deleted message")
            added = msg.toggle_reaction(str(actor_id), emoji, utcnow())
            msg = self.store.save_message(msg)
            self.broadcaster.broadcast(
                msg.room_id,
                EVT_REACTION_UPDATED,
                {"messageId": msg.id, "reactions": msg.reactions_payload()},
            )
        logging.info("Reaction %s %s on %s by %s", emoji, "added" if added else "removed", msg.id, actor_id)
        return msg

    # ── pins ────────────────────────────────────────────────────────────

    def toggle_pin(self, actor_id: str, message_id, pin: bool | None = None) -> Message:
        """Pin or unpin. With pin=None the current state is flipped."""
        actor = self.policy.require(actor_id, ACTION_PIN)
        pin = parse_flag(pin)

        with self.locks.hold(str(message_id)):
            msg = self._load(message_id)
            if msg.is_deleted:
                raise ValidationError("Cannot pin a deleted message")
            if pin is None:
                pin = not msg.is_pinned
            newly_pinned = pin and not msg.is_pinned
            if pin:
                if newly_pinned:
                    msg.pin(actor.id, utcnow())
            else:
                msg.unpin()
            msg = self.store.save_message(msg)
            self.broadcaster.broadcast(msg.room_id, EVT_PIN_UPDATED, msg.pin_payload())

        self.store.record_audit(actor.id, "message_pin" if pin else "message_unpin", msg.id, f"role={actor.role}")
        logging.info("Message %s %s by %s", msg.id, "pinned" if pin else "unpinned", actor.id)

        if newly_pinned:
            self._announce_pin(msg, actor)
        return msg

    def _announce_pin(self, msg: Message, actor) -> Optional[list]:
        try:
            return self.fanout.fanout(actor.id, pin_notification_template(msg, actor.role))
        except FanoutError as exc:
            logging.warning("Pin announcement for %s not delivered: %s", msg.id, exc.message)
        except Exception:
            logging.exception("Pin announcement for %s failed", msg.id)
        return None
