"""models.py

Plain dataclasses for users, messages and notifications, plus the wire
(camelCase) projections sent over Socket.IO and HTTP.

Message state transitions live here so the deleted-message invariant
(no reactions, not pinned) is enforced in exactly one place.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from constants import DELETED_PLACEHOLDER_TEXT, ROOM_CHANNEL


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts else None


def parse_ts(val) -> datetime | None:
    """Accept a datetime or an ISO string (as stored in JSONB columns)."""
    if val is None or isinstance(val, datetime):
        return val
    return datetime.fromisoformat(str(val))


@dataclass
class User:
    id: str
    name: str
    email: str
    role: str = "student"
    password_hash: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def public(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "role": self.role}


@dataclass
class Reaction:
    emoji: str
    user_id: str
    created_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> Dict[str, Any]:
        return {"emoji": self.emoji, "userId": self.user_id, "createdAt": _iso(self.created_at)}

    def to_record(self) -> Dict[str, Any]:
        return {"emoji": self.emoji, "user_id": self.user_id, "created_at": _iso(self.created_at)}

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Reaction":
        return cls(emoji=rec["emoji"], user_id=rec["user_id"], created_at=parse_ts(rec.get("created_at")))


@dataclass
class Attachment:
    url: str
    name: str = ""
    mime_type: str = ""
    size: int | None = None
    kind: str = "file"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "name": self.name,
            "mimeType": self.mime_type,
            "size": self.size,
            "kind": self.kind,
        }

    def to_record(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "name": self.name,
            "mime_type": self.mime_type,
            "size": self.size,
            "kind": self.kind,
        }

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Attachment":
        return cls(
            url=rec["url"],
            name=rec.get("name") or "",
            mime_type=rec.get("mime_type") or "",
            size=rec.get("size"),
            kind=rec.get("kind") or "file",
        )


@dataclass
class Message:
    id: str
    text: str
    sender_id: Optional[str]
    sender_role: str
    room_id: str = ROOM_CHANNEL
    created_at: datetime = field(default_factory=utcnow)
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    is_pinned: bool = False
    pinned_at: Optional[datetime] = None
    pinned_by: Optional[str] = None
    reactions: List[Reaction] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)

    # ── transitions ─────────────────────────────────────────────────────

    def toggle_reaction(self, user_id: str, emoji: str, now: datetime | None = None) -> bool:
        """Flip the (user_id, emoji) reaction. Returns True if it is now present."""
        for i, r in enumerate(self.reactions):
            if r.user_id == user_id and r.emoji == emoji:
                del self.reactions[i]
                return False
        self.reactions.append(Reaction(emoji=emoji, user_id=user_id, created_at=now or utcnow()))
        return True

    def pin(self, actor_id: str, now: datetime | None = None) -> None:
        self.is_pinned = True
        self.pinned_at = now or utcnow()
        self.pinned_by = actor_id

    def unpin(self) -> None:
        self.is_pinned = False
        self.pinned_at = None
        self.pinned_by = None

    def soft_delete(self, actor_role: str, now: datetime | None = None) -> None:
        self.is_deleted = True
        self.deleted_at = now or utcnow()
        self.deleted_by = actor_role
        self.reactions = []
        self.unpin()

    def copy(self) -> "Message":
        return replace(
            self,
            reactions=[replace(r) for r in self.reactions],
            attachments=[replace(a) for a in self.attachments],
        )

    # ── projections ─────────────────────────────────────────────────────

    def reactions_payload(self) -> List[Dict[str, Any]]:
        return [r.to_payload() for r in self.reactions]

    def pin_payload(self) -> Dict[str, Any]:
        return {
            "messageId": self.id,
            "isPinned": self.is_pinned,
            "pinnedAt": _iso(self.pinned_at),
            "pinnedBy": self.pinned_by,
        }

    def to_payload(self, sender: User | None = None, *, redact_deleted: bool = False) -> Dict[str, Any]:
        text = self.text
        attachments = [a.to_payload() for a in self.attachments]
        if redact_deleted and self.is_deleted:
            text = DELETED_PLACEHOLDER_TEXT
            attachments = []
        return {
            "id": self.id,
            "roomId": self.room_id,
            "text": text,
            "sender": sender.public() if sender else None,
            "senderRole": self.sender_role,
            "createdAt": _iso(self.created_at),
            "isDeleted": self.is_deleted,
            "deletedAt": _iso(self.deleted_at),
            "deletedBy": self.deleted_by,
            "isPinned": self.is_pinned,
            "pinnedAt": _iso(self.pinned_at),
            "pinnedBy": self.pinned_by,
            "reactions": self.reactions_payload(),
            "attachments": attachments,
        }


@dataclass
class Notification:
    id: str
    user_id: str
    type: str
    title: str
    message: str
    room_id: str = ROOM_CHANNEL
    message_id: Optional[str] = None
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "roomId": self.room_id,
            "messageId": self.message_id,
            "isRead": self.is_read,
            "createdAt": _iso(self.created_at),
        }
