import os

# Must be set before server_init is imported: no eventlet monkey patching in tests.
os.environ.setdefault("SUPERPAAC_SOCKETIO_ASYNC", "threading")
os.environ.setdefault("SUPERPAAC_PERSIST_SECRETS", "0")

from datetime import timedelta

import pytest
from flask_jwt_extended import create_access_token

from memory_store import MemoryStore
from security import hash_password, issue_access_token
from server_init import create_app


class FakeSocketIO:
    """Records emits instead of sending them. Sids in `fail_sids` raise."""

    def __init__(self):
        self.sent = []
        self.fail_sids = set()

    def emit(self, event, payload=None, to=None, **kwargs):
        if to in self.fail_sids:
            raise ConnectionError(f"transport closed for {to}")
        self.sent.append((to, event, payload))

    def to_sid(self, sid):
        return [(event, payload) for to, event, payload in self.sent if to == sid]

    def events(self, name):
        return [(to, payload) for to, event, payload in self.sent if event == name]


@pytest.fixture
def fake_socketio():
    return FakeSocketIO()


@pytest.fixture
def settings():
    return {
        "store_backend": "memory",
        "secret_key": "test-secret-key",
        "jwt_secret": "test-jwt-secret-with-enough-length-for-hs256",
        "mentor_code": "MENTOR123",
        "rate_limit_enabled": False,
        "typing_expiry_seconds": 8,
        "access_token_days": 7,
    }


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def app_and_socketio(settings, store):
    return create_app(settings, store=store)


@pytest.fixture
def app(app_and_socketio):
    return app_and_socketio[0]


@pytest.fixture
def socketio(app_and_socketio):
    return app_and_socketio[1]


@pytest.fixture
def services(app):
    return app.config["SUPERPAAC_SERVICES"]


@pytest.fixture
def make_user(store):
    counter = {"n": 0}

    def _make(role="student", name=None, password="password123"):
        counter["n"] += 1
        name = name or f"{role.title()} {counter['n']}"
        email = f"{role}{counter['n']}@example.com"
        return store.create_user(name, email, hash_password(password), role=role)

    return _make


@pytest.fixture
def token_for(app):
    def _token(user, expires_delta=None):
        with app.app_context():
            if expires_delta is not None:
                return create_access_token(identity=str(user.id), expires_delta=expires_delta)
            return issue_access_token(user)

    return _token


@pytest.fixture
def expired_token_for(token_for):
    def _token(user):
        return token_for(user, expires_delta=timedelta(seconds=-10))

    return _token


@pytest.fixture
def connect(app, socketio, token_for):
    """Open a Socket.IO test client, optionally authenticated as `user`."""
    clients = []

    def _connect(user=None):
        client = socketio.test_client(app)
        clients.append(client)
        if user is not None:
            ack = client.emit("authenticate", {"token": token_for(user)}, callback=True)
            assert ack["success"] is True
        client.get_received()
        return client

    yield _connect
    for client in clients:
        if client.is_connected():
            client.disconnect()


@pytest.fixture
def drain():
    """Group everything a test client received since the last call by event name."""

    def _drain(client):
        out = {}
        for pkt in client.get_received():
            out.setdefault(pkt["name"], []).append(pkt["args"][0] if pkt["args"] else None)
        return out

    return _drain


@pytest.fixture
def auth_headers(token_for):
    def _headers(user):
        return {"Authorization": f"Bearer {token_for(user)}"}

    return _headers
