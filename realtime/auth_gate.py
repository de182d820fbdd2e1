"""Authentication gate for Socket.IO connections.

A connection is accepted unauthenticated and joins the shared room channel
straight away. It becomes authenticated when it presents a valid access token
(on the `authenticate` event, or in the Socket.IO connect auth payload), at
which point it also joins its private `user:<id>` channel.
"""

from __future__ import annotations

import logging

import jwt
from flask_jwt_extended import decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import ExpiredSignatureError

from constants import EVT_USER_TYPING, ROOM_CHANNEL, user_channel
from errors import AuthError


def credential_from_payload(data) -> str | None:
    """Pull a bearer credential out of whatever shape the client sent."""
    if isinstance(data, str):
        token = data
    else:
        data = data or {}
        token = data.get("credential") or data.get("token") or data.get("access_token")
    token = str(token or "").strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token or None


class AuthenticationGate:
    def __init__(self, store, registry, fanout, broadcaster=None, typing=None):
        self.store = store
        self.registry = registry
        self.fanout = fanout
        self.broadcaster = broadcaster
        self.typing = typing

    def on_connect(self, sid: str):
        conn = self.registry.add(sid)
        self.registry.join(sid, ROOM_CHANNEL)
        logging.debug("Socket connected sid=%s", sid)
        return conn

    def verify(self, credential: str | None) -> str:
        """Return the user id a credential was issued to. Needs an app context."""
        if not credential:
            raise AuthError("Missing credential")
        try:
            claims = decode_token(credential)
        except ExpiredSignatureError:
            raise AuthError("Credential expired")
        except (jwt.InvalidTokenError, JWTExtendedException) as exc:
            logging.debug("Rejected credential: %s", exc)
            raise AuthError("Invalid credential")
        if claims.get("type") != "access" or not claims.get("sub"):
            raise AuthError("Invalid credential")
        return str(claims["sub"])

    def authenticate(self, sid: str, credential: str | None) -> dict:
        """Bind a verified identity to sid. On failure the connection stays unauthenticated."""
        user_id = self.verify(credential)
        user = self.store.find_user(user_id)
        if user is None:
            raise AuthError("Unknown user")

        if self.registry.get(sid) is None:
            self.registry.add(sid)
            self.registry.join(sid, ROOM_CHANNEL)
        previous = self.registry.bind(sid, user.id, user.role, user.name)
        if previous:
            logging.info("sid=%s re-authenticated, left %s", sid, previous)
        self.registry.join(sid, user_channel(user.id))

        try:
            self.fanout.push_unread_count(user.id)
        except Exception as exc:
            logging.warning("Unread count for %s not delivered: %s", user.id, exc)

        # Late joiners see who is already typing.
        if self.typing is not None and self.broadcaster is not None:
            for entry in self.typing.typing_users(ROOM_CHANNEL):
                if entry.get("userId") != user.id:
                    self.broadcaster.emit_to(sid, EVT_USER_TYPING, entry)

        logging.info("Socket authenticated sid=%s user=%s role=%s", sid, user.id, user.role)
        return {"userId": user.id, "role": user.role}

    def on_disconnect(self, sid: str):
        conn = self.registry.remove(sid)
        if self.typing is not None:
            self.typing.drop_connection(sid)
        if conn is not None:
            logging.debug("Socket disconnected sid=%s user=%s", sid, conn.user_id)
        return conn
