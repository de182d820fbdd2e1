#!/usr/bin/env python3
"""notifications.py

Per-user notification fan-out.

Each recipient gets its own persisted Notification. Live delivery goes to the
recipient's private channel only when one of their connections is currently
registered there; offline users simply find the row the next time they list
notifications.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from constants import EVT_NOTIFICATION_NEW, EVT_UNREAD_COUNT, NOTIFICATION_TYPES, user_channel
from errors import FanoutError, StoreUnavailableError, ValidationError
from models import Notification

TITLE_MAX = 100
BODY_MAX = 500


class NotificationFanout:
    def __init__(self, store, registry, broadcaster):
        self.store = store
        self.registry = registry
        self.broadcaster = broadcaster

    def fanout(self, excluding_user_id: Optional[str], template: dict) -> List[Notification]:
        """Persist and deliver one notification per recipient.

        A failure for one recipient is logged and skipped; the rest still get
        theirs. Only a failure to list recipients aborts the whole fan-out.
        """
        if template.get("type") not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type: {template.get('type')!r}")
        try:
            recipients = self.store.fanout_user_ids(excluding_user_id)
        except StoreUnavailableError as exc:
            raise FanoutError(f"Could not list recipients: {exc}") from exc

        data = dict(template)
        data["title"] = str(data.get("title") or "")[:TITLE_MAX]
        data["message"] = str(data.get("message") or "")[:BODY_MAX]

        created: List[Notification] = []
        for uid in recipients:
            try:
                note = self.store.create_notification({**data, "user_id": uid})
            except Exception as exc:
                err = FanoutError(f"user={uid}: {exc}")
                logging.warning("Notification fan-out skipped recipient (%s): %s", err.code, err.message)
                continue
            created.append(note)
            if self.registry.is_online(uid):
                self.broadcaster.broadcast(user_channel(uid), EVT_NOTIFICATION_NEW, note.to_payload())

        logging.info(
            "Fan-out %s: %d/%d notifications created (excluding %s)",
            data.get("type"),
            len(created),
            len(recipients),
            excluding_user_id,
        )
        return created

    def push_unread_count(self, user_id: str) -> int:
        """Send the current unread count to every open tab of user_id."""
        count = self.store.count_unread(user_id)
        self.broadcaster.broadcast(user_channel(user_id), EVT_UNREAD_COUNT, {"unreadCount": count})
        return count

    def mark_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        note = self.store.mark_notification_read(notification_id, user_id)
        if note is not None:
            self.push_unread_count(user_id)
        return note

    def mark_all_read(self, user_id: str) -> int:
        changed = self.store.mark_all_notifications_read(user_id)
        self.push_unread_count(user_id)
        return changed
