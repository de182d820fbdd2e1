#!/usr/bin/env python3
"""
SuperPAAC Chat – database helpers (PostgreSQL version)

• Optional ThreadedConnectionPool (init_db_pool), direct connects otherwise
• Idempotent schema creation (users, messages, notifications, audit_log)
• PostgresStore: the store contract used by the mutation engine,
  the notification fan-out and the HTTP routes

Reactions and attachments are JSONB columns on messages so that every
message mutation (including soft-delete clearing reactions + pin) is a
single UPDATE.
"""

from __future__ import annotations

import functools
import logging
from contextlib import contextmanager
from typing import List, Optional

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from constants import ROOM_CHANNEL, get_db_connection_string, sanitize_postgres_dsn
from errors import StoreUnavailableError, ValidationError
from models import Attachment, Message, Notification, Reaction, User, new_id


# ----------------------------------------------------------------------
# Connection helpers
# ----------------------------------------------------------------------

# Optional global connection pool. Enabled by calling init_db_pool().
_POOL: ThreadedConnectionPool | None = None
_DSN: str | None = None


def init_db_pool(minconn: int = 1, maxconn: int = 10, dsn: str | None = None) -> None:
    """Initialise a global ThreadedConnectionPool.

    Safe to call multiple times (no-op after first init).
    """
    global _POOL, _DSN
    if _POOL is not None:
        return

    _DSN = str(sanitize_postgres_dsn(dsn or get_db_connection_string()))

    try:
        _POOL = ThreadedConnectionPool(minconn=int(minconn), maxconn=int(maxconn), dsn=_DSN)
        logging.info("✅  Postgres connection pool ready (min=%s max=%s)", minconn, maxconn)
    except psycopg2.Error as e:
        _POOL = None
        logging.warning("⚠️  Could not initialise Postgres pool; falling back to direct connects: %s", e)


def _acquire_conn():
    """Acquire a connection either from the pool or by direct connect.

    Returns (conn, from_pool: bool)
    """
    if _POOL is not None:
        return _POOL.getconn(), True
    return psycopg2.connect(_DSN or get_db_connection_string()), False


def _release_conn(conn, from_pool: bool) -> None:
    if conn is None:
        return
    if _POOL is not None and from_pool:
        try:
            # Ensure a clean connection is returned to the pool.
            conn.rollback()
        except psycopg2.Error:
            pass
        _POOL.putconn(conn)
    else:
        conn.close()


@contextmanager
def db_cursor():
    """Yield a RealDictCursor on a fresh connection; commit on success."""
    try:
        conn, from_pool = _acquire_conn()
    except psycopg2.OperationalError as e:
        logging.error("Database unavailable: %s", e)
        raise StoreUnavailableError() from e
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            yield cur
        conn.commit()
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
        logging.error("Database connection lost: %s", e)
        raise StoreUnavailableError() from e
    except Exception:
        try:
            conn.rollback()
        except psycopg2.Error:
            pass
        raise
    finally:
        _release_conn(conn, from_pool)


def _store_errors(func):
    """Translate driver errors that escape db_cursor() into StoreUnavailableError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except psycopg2.IntegrityError as e:
            raise ValidationError("Conflicting record") from e
        except psycopg2.Error as e:
            logging.error("Database error in %s: %s", func.__name__, e)
            raise StoreUnavailableError() from e

    return wrapper


# ----------------------------------------------------------------------
# Schema
# ----------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    email         TEXT NOT NULL,
    password      TEXT NOT NULL DEFAULT '',
    role          TEXT NOT NULL DEFAULT 'student'
                  CHECK (role IN ('student', 'teacher', 'admin', 'mentor')),
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS users_email_unique_ci ON users (LOWER(email));

CREATE TABLE IF NOT EXISTS messages (
    id            TEXT PRIMARY KEY,
    room_id       TEXT NOT NULL DEFAULT 'superpaac-group',
    text          TEXT NOT NULL DEFAULT '',
    sender_id     TEXT REFERENCES users(id) ON DELETE SET NULL,
    sender_role   TEXT NOT NULL,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    is_deleted    BOOLEAN NOT NULL DEFAULT FALSE,
    deleted_at    TIMESTAMPTZ,
    deleted_by    TEXT,
    is_pinned     BOOLEAN NOT NULL DEFAULT FALSE,
    pinned_at     TIMESTAMPTZ,
    pinned_by     TEXT,
    reactions     JSONB NOT NULL DEFAULT '[]'::jsonb,
    attachments   JSONB NOT NULL DEFAULT '[]'::jsonb
);
CREATE INDEX IF NOT EXISTS messages_room_created_idx ON messages (room_id, created_at);

CREATE TABLE IF NOT EXISTS notifications (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    type          TEXT NOT NULL
                  CHECK (type IN ('PINNED_ANNOUNCEMENT', 'MENTION', 'SYSTEM', 'MESSAGE')),
    title         VARCHAR(100) NOT NULL,
    message       VARCHAR(500) NOT NULL,
    room_id       TEXT NOT NULL DEFAULT 'superpaac-group',
    message_id    TEXT REFERENCES messages(id) ON DELETE SET NULL,
    is_read       BOOLEAN NOT NULL DEFAULT FALSE,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS notifications_user_read_idx
    ON notifications (user_id, is_read, created_at DESC);

CREATE TABLE IF NOT EXISTS audit_log (
    id            BIGSERIAL PRIMARY KEY,
    actor         TEXT,
    action        TEXT NOT NULL,
    target        TEXT,
    details       TEXT,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_MESSAGE_COLUMNS = (
    "id, room_id, text, sender_id, sender_role, created_at, is_deleted, deleted_at, deleted_by, "
    "is_pinned, pinned_at, pinned_by, reactions, attachments"
)
_NOTIFICATION_COLUMNS = "id, user_id, type, title, message, room_id, message_id, is_read, created_at"


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        role=row["role"],
        password_hash=row.get("password") or "",
        created_at=row["created_at"],
    )


def _row_to_message(row) -> Message:
    return Message(
        id=row["id"],
        room_id=row["room_id"],
        text=row["text"],
        sender_id=row["sender_id"],
        sender_role=row["sender_role"],
        created_at=row["created_at"],
        is_deleted=bool(row["is_deleted"]),
        deleted_at=row["deleted_at"],
        deleted_by=row["deleted_by"],
        is_pinned=bool(row["is_pinned"]),
        pinned_at=row["pinned_at"],
        pinned_by=row["pinned_by"],
        reactions=[Reaction.from_record(r) for r in (row["reactions"] or [])],
        attachments=[Attachment.from_record(a) for a in (row["attachments"] or [])],
    )


def _row_to_notification(row) -> Notification:
    return Notification(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        title=row["title"],
        message=row["message"],
        room_id=row["room_id"],
        message_id=row["message_id"],
        is_read=bool(row["is_read"]),
        created_at=row["created_at"],
    )


class PostgresStore:
    """Store contract backed by PostgreSQL."""

    backend = "postgres"

    @_store_errors
    def init_schema(self) -> None:
        with db_cursor() as cur:
            cur.execute(_SCHEMA)
        logging.info("Database schema ready")

    # ── users ───────────────────────────────────────────────────────────

    @_store_errors
    def create_user(self, name: str, email: str, password_hash: str = "", role: str = "student") -> User:
        email = (email or "").strip().lower()
        if self.find_user_by_email(email):
            raise ValidationError("User with this email already exists")
        with db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO users (id, name, email, password, role)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *;
                """,
                (new_id(), name, email, password_hash, role),
            )
            return _row_to_user(cur.fetchone())

    @_store_errors
    def find_user(self, user_id: str) -> Optional[User]:
        with db_cursor() as cur:
            cur.execute("SELECT * FROM users WHERE id = %s;", (str(user_id),))
            row = cur.fetchone()
        return _row_to_user(row) if row else None

    @_store_errors
    def find_user_by_email(self, email: str) -> Optional[User]:
        with db_cursor() as cur:
            cur.execute("SELECT * FROM users WHERE LOWER(email) = LOWER(%s);", ((email or "").strip(),))
            row = cur.fetchone()
        return _row_to_user(row) if row else None

    @_store_errors
    def set_user_role(self, user_id: str, role: str) -> Optional[User]:
        with db_cursor() as cur:
            cur.execute("UPDATE users SET role = %s WHERE id = %s RETURNING *;", (role, str(user_id)))
            row = cur.fetchone()
        return _row_to_user(row) if row else None

    @_store_errors
    def update_password_hash(self, user_id: str, password_hash: str) -> bool:
        with db_cursor() as cur:
            cur.execute("UPDATE users SET password = %s WHERE id = %s;", (password_hash, str(user_id)))
            return cur.rowcount == 1

    @_store_errors
    def fanout_user_ids(self, excluding: str | None) -> List[str]:
        with db_cursor() as cur:
            if excluding:
                cur.execute("SELECT id FROM users WHERE id <> %s ORDER BY created_at;", (str(excluding),))
            else:
                cur.execute("SELECT id FROM users ORDER BY created_at;")
            return [r["id"] for r in cur.fetchall()]

    # ── messages ────────────────────────────────────────────────────────

    @_store_errors
    def find_message(self, message_id: str) -> Optional[Message]:
        with db_cursor() as cur:
            cur.execute(f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = %s;", (str(message_id),))
            row = cur.fetchone()
        return _row_to_message(row) if row else None

    @_store_errors
    def save_message(self, msg: Message) -> Message:
        """Insert or fully overwrite a message in one statement."""
        with db_cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO messages ({_MESSAGE_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    text = EXCLUDED.text,
                    is_deleted = EXCLUDED.is_deleted,
                    deleted_at = EXCLUDED.deleted_at,
                    deleted_by = EXCLUDED.deleted_by,
                    is_pinned = EXCLUDED.is_pinned,
                    pinned_at = EXCLUDED.pinned_at,
                    pinned_by = EXCLUDED.pinned_by,
                    reactions = EXCLUDED.reactions,
                    attachments = EXCLUDED.attachments
                RETURNING {_MESSAGE_COLUMNS};
                """,
                (
                    msg.id,
                    msg.room_id,
                    msg.text,
                    msg.sender_id,
                    msg.sender_role,
                    msg.created_at,
                    msg.is_deleted,
                    msg.deleted_at,
                    msg.deleted_by,
                    msg.is_pinned,
                    msg.pinned_at,
                    msg.pinned_by,
                    Json([r.to_record() for r in msg.reactions]),
                    Json([a.to_record() for a in msg.attachments]),
                ),
            )
            return _row_to_message(cur.fetchone())

    @_store_errors
    def list_messages(self, limit: int | None = None) -> List[Message]:
        with db_cursor() as cur:
            if limit:
                cur.execute(
                    f"""
                    SELECT * FROM (
                        SELECT {_MESSAGE_COLUMNS} FROM messages
                         WHERE room_id = %s
                         ORDER BY created_at DESC
                         LIMIT %s
                    ) recent ORDER BY created_at ASC;
                    """,
                    (ROOM_CHANNEL, int(limit)),
                )
            else:
                cur.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE room_id = %s ORDER BY created_at ASC;",
                    (ROOM_CHANNEL,),
                )
            return [_row_to_message(r) for r in cur.fetchall()]

    # ── notifications ───────────────────────────────────────────────────

    @_store_errors
    def create_notification(self, data: dict) -> Notification:
        with db_cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO notifications (id, user_id, type, title, message, room_id, message_id)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {_NOTIFICATION_COLUMNS};
                """,
                (
                    new_id(),
                    str(data["user_id"]),
                    data["type"],
                    data["title"],
                    data["message"],
                    data.get("room_id") or ROOM_CHANNEL,
                    data.get("message_id"),
                ),
            )
            return _row_to_notification(cur.fetchone())

    @_store_errors
    def list_notifications(self, user_id: str, limit: int = 50) -> List[Notification]:
        with db_cursor() as cur:
            cur.execute(
                f"""
                SELECT {_NOTIFICATION_COLUMNS} FROM notifications
                 WHERE user_id = %s
                 ORDER BY created_at DESC
                 LIMIT %s;
                """,
                (str(user_id), max(1, int(limit))),
            )
            return [_row_to_notification(r) for r in cur.fetchall()]

    @_store_errors
    def count_unread(self, user_id: str) -> int:
        with db_cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS n FROM notifications WHERE user_id = %s AND is_read = FALSE;",
                (str(user_id),),
            )
            return int(cur.fetchone()["n"])

    @_store_errors
    def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        with db_cursor() as cur:
            cur.execute(
                f"""
                UPDATE notifications SET is_read = TRUE
                 WHERE id = %s AND user_id = %s
                RETURNING {_NOTIFICATION_COLUMNS};
                """,
                (str(notification_id), str(user_id)),
            )
            row = cur.fetchone()
        return _row_to_notification(row) if row else None

    @_store_errors
    def mark_all_notifications_read(self, user_id: str) -> int:
        with db_cursor() as cur:
            cur.execute(
                "UPDATE notifications SET is_read = TRUE WHERE user_id = %s AND is_read = FALSE;",
                (str(user_id),),
            )
            return int(cur.rowcount or 0)

    # ── audit ───────────────────────────────────────────────────────────

    def record_audit(self, actor: str, action: str, target: str | None = None, details: str | None = None) -> None:
        """Insert an audit log entry. Never raises."""
        try:
            with db_cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO audit_log (actor, action, target, details)
                    VALUES (%s, %s, %s, %s);
                    """,
                    (actor, action, target, details),
                )
        except (psycopg2.Error, StoreUnavailableError) as e:
            logging.error("Failed to write audit log (%s, %s, %s, %s): %s", actor, action, target, details, e)


@_store_errors
def get_db_identity() -> dict:
    """Return current_user/current_database/server address for the boot log."""
    with db_cursor() as cur:
        cur.execute(
            """
            SELECT current_user, current_database(),
                   inet_server_addr()::text AS server_addr, inet_server_port() AS server_port;
            """
        )
        return dict(cur.fetchone() or {})


def create_store(settings: dict):
    """Build the configured store backend."""
    backend = str(settings.get("store_backend") or "postgres").strip().lower()
    if backend == "memory":
        from memory_store import MemoryStore

        logging.warning("Using in-memory store: data is lost on restart")
        return MemoryStore()
    if backend != "postgres":
        raise ValueError(f"Unknown store_backend: {backend}")

    init_db_pool(
        minconn=int(settings.get("db_pool_min", 1)),
        maxconn=int(settings.get("db_pool_max", 10)),
        dsn=str(settings.get("database_url")) if settings.get("database_url") else None,
    )
    store = PostgresStore()
    store.init_schema()
    return store
