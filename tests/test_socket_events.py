from constants import (
    EVT_ERROR,
    EVT_MESSAGE_CREATED,
    EVT_MESSAGE_SOFT_DELETED,
    EVT_NOTIFICATION_NEW,
    EVT_PIN_UPDATED,
    EVT_REACTION_UPDATED,
    EVT_USER_STOP_TYPING,
    EVT_USER_TYPING,
    PIN_NOTIFICATION_TITLE,
    ROOM_CHANNEL,
)


def test_announcement_lifecycle(app, connect, drain, make_user, auth_headers, services):
    """Create, pin, react twice, soft-delete, then read the history over HTTP."""
    teacher, admin, student = make_user("teacher"), make_user("admin"), make_user("student")
    t_client, a_client, s_client = connect(teacher), connect(admin), connect(student)

    ack = t_client.emit("chatMessage", {"text": "Exam postponed"}, callback=True)
    assert ack["success"] is True
    message_id = ack["messageId"]
    for client in (t_client, a_client, s_client):
        got = drain(client)
        assert got[EVT_MESSAGE_CREATED][0]["text"] == "Exam postponed"
        assert got["newMessage"][0]["id"] == message_id

    ack = a_client.emit("message:pinToggle", {"messageId": message_id}, callback=True)
    assert ack["success"] is True
    assert ack["isPinned"] is True
    admin_events = drain(a_client)
    assert admin_events[EVT_PIN_UPDATED][0]["pinnedBy"] == admin.id
    assert EVT_NOTIFICATION_NEW not in admin_events
    for client in (t_client, s_client):
        got = drain(client)
        assert got[EVT_PIN_UPDATED][0]["isPinned"] is True
        [note] = got[EVT_NOTIFICATION_NEW]
        assert note["title"] == PIN_NOTIFICATION_TITLE
        assert "Exam postponed" in note["message"]
        assert note["messageId"] == message_id

    ack = s_client.emit("message:react", {"messageId": message_id, "emoji": "👍"}, callback=True)
    assert [r["emoji"] for r in ack["reactions"]] == ["👍"]
    ack = s_client.emit("message:react", {"messageId": message_id, "emoji": "👍"}, callback=True)
    assert ack["reactions"] == []
    updates = drain(t_client)[EVT_REACTION_UPDATED]
    assert [len(u["reactions"]) for u in updates] == [1, 0]

    ack = a_client.emit("messageSoftDeleted", {"messageId": message_id}, callback=True)
    assert ack["success"] is True
    for client in (t_client, a_client, s_client):
        assert drain(client)[EVT_MESSAGE_SOFT_DELETED] == [{"messageId": message_id}]

    http = app.test_client()
    resp = http.get("/api/messages", headers=auth_headers(student))
    [row] = resp.get_json()["data"]
    assert row["text"] == "This message was deleted"
    assert row["isDeleted"] is True
    assert row["deletedBy"] == "admin"
    assert row["reactions"] == []
    assert row["isPinned"] is False


def test_unauthenticated_mutation_is_rejected(connect, drain, services):
    client = connect()

    ack = client.emit("message:create", {"text": "hi"}, callback=True)

    assert ack["success"] is False
    assert ack["code"] == "auth_failed"
    assert drain(client)[EVT_ERROR] == [{"message": "Not authenticated"}]
    assert services.store.list_messages() == []


def test_bad_token_gets_error_ack(connect, drain):
    client = connect()

    ack = client.emit("authenticate", {"token": "garbage"}, callback=True)

    assert ack["success"] is False
    assert EVT_ERROR in drain(client)


def test_student_cannot_pin(connect, drain, make_user):
    teacher, student = make_user("teacher"), make_user("student")
    t_client, s_client = connect(teacher), connect(student)
    message_id = t_client.emit("chatMessage", {"text": "hello"}, callback=True)["messageId"]
    drain(s_client)

    ack = s_client.emit("message:pinToggle", {"messageId": message_id, "pin": True}, callback=True)

    assert ack["success"] is False
    assert ack["error"] == "Permission denied"
    assert drain(s_client)[EVT_ERROR] == [{"message": "Permission denied"}]


def test_teacher_cannot_soft_delete(connect, drain, make_user):
    teacher = make_user("teacher")
    client = connect(teacher)
    message_id = client.emit("chatMessage", {"text": "oops"}, callback=True)["messageId"]

    ack = client.emit("deleteMessage", message_id, callback=True)

    assert ack["success"] is False
    assert ack["code"] == "forbidden"


def test_payload_user_id_is_ignored(connect, make_user, services):
    student, admin = make_user("student"), make_user("admin")
    client = connect(student)

    ack = client.emit("message:create", {"text": "hi", "userId": admin.id}, callback=True)

    assert services.store.find_message(ack["messageId"]).sender_id == student.id


def test_typing_round_trip(connect, drain, make_user):
    alice, bob = make_user(name="Alice"), make_user(name="Bob")
    a_client, b_client = connect(alice), connect(bob)

    a_client.emit("typing", {"roomId": ROOM_CHANNEL}, callback=True)
    assert EVT_USER_TYPING not in drain(a_client)
    [event] = drain(b_client)[EVT_USER_TYPING]
    assert event["displayName"] == "Alice"

    a_client.emit("stop_typing", {"roomId": ROOM_CHANNEL}, callback=True)
    assert drain(b_client)[EVT_USER_STOP_TYPING][0]["userId"] == alice.id


def test_disconnect_clears_typing(connect, drain, make_user, services):
    alice, bob = make_user(), make_user()
    a_client, b_client = connect(alice), connect(bob)
    a_client.emit("typing", {}, callback=True)
    drain(b_client)

    a_client.disconnect()

    assert drain(b_client)[EVT_USER_STOP_TYPING][0]["userId"] == alice.id
    assert services.typing.typing_users(ROOM_CHANNEL) == []
    assert services.registry.is_online(alice.id) is False


def test_token_in_connect_auth_payload(app, socketio, make_user, token_for, services):
    user = make_user()
    client = socketio.test_client(app, auth={"token": token_for(user)})
    try:
        assert services.registry.is_online(user.id) is True
    finally:
        client.disconnect()


def test_message_for_another_room_is_refused(connect, drain, make_user, services):
    alice, bob = make_user(), make_user()
    a_client, b_client = connect(alice), connect(bob)

    ack = a_client.emit("chatMessage", {"roomId": "general", "text": "hello"}, callback=True)

    assert ack["success"] is False
    assert ack["code"] == "validation_error"
    assert drain(a_client)[EVT_ERROR] == [{"message": "Unknown room: general"}]
    assert EVT_MESSAGE_CREATED not in drain(b_client)
    assert services.store.list_messages() == []


def test_message_naming_the_group_room_is_accepted(connect, drain, make_user, services):
    alice, bob = make_user(), make_user()
    a_client, b_client = connect(alice), connect(bob)

    ack = a_client.emit("chatMessage", {"roomId": ROOM_CHANNEL, "text": "hello"}, callback=True)

    assert ack["success"] is True
    assert drain(b_client)[EVT_MESSAGE_CREATED][0]["id"] == ack["messageId"]
    assert services.store.find_message(ack["messageId"]).room_id == ROOM_CHANNEL


def test_typing_in_another_room_is_refused(connect, drain, make_user, services):
    alice, bob = make_user(), make_user()
    a_client, b_client = connect(alice), connect(bob)

    ack = a_client.emit("typing", {"roomId": "room-1"}, callback=True)

    assert ack["success"] is False
    assert ack["code"] == "validation_error"
    assert EVT_USER_TYPING not in drain(b_client)
    assert services.typing.typing_users(ROOM_CHANNEL) == []


def test_non_string_text_is_a_validation_error(connect, drain, make_user):
    client = connect(make_user())

    ack = client.emit("chatMessage", {"text": 5}, callback=True)

    assert ack["success"] is False
    assert ack["code"] == "validation_error"
    assert drain(client)[EVT_ERROR] == [{"message": "Message text must be a string"}]


def test_pin_flag_sent_as_string(connect, drain, make_user):
    admin = make_user("admin")
    client = connect(admin)
    message_id = client.emit("chatMessage", {"text": "hello"}, callback=True)["messageId"]

    ack = client.emit("message:pinToggle", {"messageId": message_id, "pin": "true"}, callback=True)
    assert ack["isPinned"] is True
    ack = client.emit("message:pinToggle", {"messageId": message_id, "pin": "false"}, callback=True)
    assert ack["isPinned"] is False

    ack = client.emit("message:pinToggle", {"messageId": message_id, "pin": "maybe"}, callback=True)
    assert ack["success"] is False
    assert ack["code"] == "validation_error"


def test_late_joiner_sees_who_is_typing(connect, drain, make_user, token_for):
    alice, bob = make_user(name="Alice"), make_user(name="Bob")
    a_client = connect(alice)
    a_client.emit("typing", {}, callback=True)

    b_client = connect()
    ack = b_client.emit("authenticate", {"token": token_for(bob)}, callback=True)

    assert ack["success"] is True
    [event] = drain(b_client)[EVT_USER_TYPING]
    assert event["userId"] == alice.id
    assert event["displayName"] == "Alice"
