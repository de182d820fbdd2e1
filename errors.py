"""errors.py

Error taxonomy shared by the socket handlers, the HTTP routes and the
mutation engine. Every error carries a short wire ``code`` and an HTTP status
so both transports report it the same way.
"""

from __future__ import annotations


class ChatError(Exception):
    code = "error"
    status = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_payload(self) -> dict:
        return {"message": self.message}


class ValidationError(ChatError):
    code = "validation_error"
    status = 400
    default_message = "Invalid request"


class NotFoundError(ChatError):
    code = "not_found"
    status = 404
    default_message = "Not found"


class ForbiddenError(ChatError):
    # Never say which privileged action was attempted.
    code = "forbidden"
    status = 403
    default_message = "Permission denied"

    def __init__(self, message: str | None = None):
        super().__init__(self.default_message)
        self.detail = message


class AuthError(ChatError):
    code = "auth_failed"
    status = 401
    default_message = "Authentication failed"


class FanoutError(ChatError):
    code = "fanout_failed"
    status = 500
    default_message = "Notification delivery failed"


class StoreUnavailableError(ChatError):
    code = "server_error"
    status = 503
    default_message = "Server error"
