import pytest

from constants import EVT_UNREAD_COUNT, ROOM_CHANNEL, user_channel
from errors import AuthError
from realtime.auth_gate import credential_from_payload


@pytest.fixture
def gate(services):
    return services.gate


@pytest.mark.parametrize(
    "payload, expected",
    [
        ("abc", "abc"),
        ({"token": "abc"}, "abc"),
        ({"credential": "Bearer abc"}, "abc"),
        ({"access_token": "  abc  "}, "abc"),
        ({}, None),
        (None, None),
    ],
)
def test_credential_from_payload(payload, expected):
    assert credential_from_payload(payload) == expected


def test_connect_joins_room_unauthenticated(gate, services):
    conn = gate.on_connect("sid-1")
    assert conn.is_authenticated is False
    assert services.registry.members(ROOM_CHANNEL) == ["sid-1"]


def test_authenticate_binds_and_joins_private_channel(app, gate, services, make_user, token_for, monkeypatch):
    user = make_user("teacher")
    pushed = []
    monkeypatch.setattr(services.fanout, "push_unread_count", pushed.append)
    gate.on_connect("sid-1")

    with app.app_context():
        result = gate.authenticate("sid-1", token_for(user))

    assert result == {"userId": user.id, "role": "teacher"}
    conn = services.registry.get("sid-1")
    assert conn.user_id == user.id
    assert conn.display_name == user.name
    assert services.registry.members(user_channel(user.id)) == ["sid-1"]
    assert pushed == [user.id]


@pytest.mark.parametrize("credential", [None, "", "not-a-jwt", "a.b.c"])
def test_bad_credentials_leave_connection_unauthenticated(app, gate, services, credential):
    gate.on_connect("sid-1")
    with app.app_context(), pytest.raises(AuthError):
        gate.authenticate("sid-1", credential)
    assert services.registry.get("sid-1").is_authenticated is False


def test_expired_credential(app, gate, services, make_user, expired_token_for):
    user = make_user()
    token = expired_token_for(user)
    gate.on_connect("sid-1")

    with app.app_context(), pytest.raises(AuthError) as exc:
        gate.authenticate("sid-1", token)

    assert exc.value.message == "Credential expired"
    assert services.registry.get("sid-1").is_authenticated is False


def test_credential_for_unknown_user(app, gate, make_user, token_for, store):
    user = make_user()
    token = token_for(user)
    store._users.pop(user.id)
    gate.on_connect("sid-1")

    with app.app_context(), pytest.raises(AuthError):
        gate.authenticate("sid-1", token)


def test_reauth_as_other_user_leaves_old_channel(app, gate, services, make_user, token_for):
    first, second = make_user(), make_user()
    gate.on_connect("sid-1")

    with app.app_context():
        gate.authenticate("sid-1", token_for(first))
        gate.authenticate("sid-1", token_for(second))

    assert services.registry.members(user_channel(first.id)) == []
    assert services.registry.members(user_channel(second.id)) == ["sid-1"]


def test_disconnect_forgets_connection_and_typing(app, gate, services, make_user, token_for):
    user = make_user()
    gate.on_connect("sid-1")
    with app.app_context():
        gate.authenticate("sid-1", token_for(user))
    services.typing.start_typing(ROOM_CHANNEL, user.id, user.role, user.name, sid="sid-1")

    gate.on_disconnect("sid-1")

    assert services.registry.get("sid-1") is None
    assert services.registry.is_online(user.id) is False
    assert services.typing.typing_users(ROOM_CHANNEL) == []


def test_unread_count_pushed_on_authenticate(connect, drain, make_user, services, token_for):
    user = make_user()
    services.fanout.fanout(None, {"type": "SYSTEM", "title": "t", "message": "m"})
    client = connect()

    ack = client.emit("authenticate", {"token": token_for(user)}, callback=True)

    assert ack["success"] is True
    assert drain(client)[EVT_UNREAD_COUNT] == [{"unreadCount": 1}]
