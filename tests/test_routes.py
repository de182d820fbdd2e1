import gc

import pytest
from argon2 import PasswordHasher

from security import verify_password_and_upgrade
from server_init import create_app


@pytest.fixture
def http(app):
    return app.test_client()


def _register(http, **overrides):
    body = {"name": "Sam", "email": "sam@example.com", "password": "password123", **overrides}
    return http.post("/api/auth/register", json=body)


def test_register_student(http):
    resp = _register(http)
    data = resp.get_json()
    assert resp.status_code == 201
    assert data["user"]["role"] == "student"
    assert data["token"]


def test_register_with_mentor_code_becomes_teacher(http):
    resp = _register(http, mentorCode="MENTOR123")
    assert resp.get_json()["user"]["role"] == "teacher"


def test_register_with_wrong_mentor_code_stays_student(http):
    resp = _register(http, mentorCode="nope")
    assert resp.get_json()["user"]["role"] == "student"


def test_register_duplicate_email(http):
    _register(http)
    resp = _register(http, email="SAM@example.com")
    assert resp.status_code == 409


@pytest.mark.parametrize("overrides", [{"password": "short"}, {"name": ""}, {"email": ""}])
def test_register_validation(http, overrides):
    resp = _register(http, **overrides)
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_login_and_me(http):
    _register(http)

    resp = http.post("/api/auth/login", json={"email": "sam@example.com", "password": "password123"})
    assert resp.status_code == 200
    token = resp.get_json()["token"]

    me = http.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.get_json()["user"]["email"] == "sam@example.com"


def test_login_wrong_password(http):
    _register(http)
    resp = http.post("/api/auth/login", json={"email": "sam@example.com", "password": "wrong-password"})
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "auth_failed"


def test_me_requires_token(http):
    assert http.get("/api/auth/me").status_code == 401


def test_post_and_list_messages(http, make_user, auth_headers, connect, drain):
    teacher = make_user("teacher")
    listener = connect(make_user())

    resp = http.post("/api/messages", json={"text": "Homework is up"}, headers=auth_headers(teacher))
    assert resp.status_code == 201
    created = resp.get_json()["data"]
    assert created["sender"]["id"] == teacher.id

    assert drain(listener)["message:created"][0]["id"] == created["id"]

    rows = http.get("/api/messages", headers=auth_headers(teacher)).get_json()["data"]
    assert [r["text"] for r in rows] == ["Homework is up"]


def test_post_empty_message(http, make_user, auth_headers):
    resp = http.post("/api/messages", json={"text": "   "}, headers=auth_headers(make_user()))
    assert resp.status_code == 400


def test_delete_requires_admin(http, make_user, auth_headers):
    teacher, admin = make_user("teacher"), make_user("admin")
    message_id = http.post("/api/messages", json={"text": "x"}, headers=auth_headers(teacher)).get_json()["data"]["id"]

    denied = http.delete(f"/api/messages/{message_id}", headers=auth_headers(teacher))
    assert denied.status_code == 403
    assert denied.get_json()["message"] == "Permission denied"

    ok = http.delete(f"/api/messages/{message_id}", headers=auth_headers(admin))
    assert ok.status_code == 200


def test_delete_unknown_message(http, make_user, auth_headers):
    resp = http.delete("/api/messages/nope", headers=auth_headers(make_user("admin")))
    assert resp.status_code == 404


def test_notifications_endpoints(http, make_user, auth_headers, services):
    user = make_user()
    headers = auth_headers(user)
    for _ in range(2):
        services.fanout.fanout(None, {"type": "SYSTEM", "title": "Hi", "message": "there"})

    listing = http.get("/api/notifications", headers=headers).get_json()["data"]
    assert listing["unreadCount"] == 2
    first_id = listing["notifications"][0]["id"]

    read = http.post(f"/api/notifications/{first_id}/read", headers=headers)
    assert read.get_json()["data"]["isRead"] is True
    count = http.get("/api/notifications/unread-count", headers=headers).get_json()["data"]
    assert count == {"unreadCount": 1}

    done = http.post("/api/notifications/read-all", headers=headers).get_json()["data"]
    assert done == {"modifiedCount": 1}


def test_mark_unknown_notification(http, make_user, auth_headers):
    resp = http.post("/api/notifications/nope/read", headers=auth_headers(make_user()))
    assert resp.status_code == 404


def test_health(http):
    data = http.get("/health").get_json()
    assert data["ok"] is True
    assert data["store"] == "memory"


@pytest.fixture
def limited_http(settings, store):
    app, _ = create_app({**settings, "rate_limit_enabled": True}, store=store)
    return app.test_client()


def test_rate_limited_routes_survive_garbage_collection(limited_http):
    gc.collect()
    resp = _register(limited_http)
    assert resp.status_code == 201


def test_register_is_rate_limited(limited_http):
    codes = [_register(limited_http, email=f"sam{i}@example.com").status_code for i in range(6)]
    assert codes == [201] * 5 + [429]


def test_login_upgrades_outdated_password_hash(http, store):
    weak = PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1).hash("password123")
    user = store.create_user("Old", "old@example.com", weak)

    resp = http.post("/api/auth/login", json={"email": "old@example.com", "password": "password123"})

    assert resp.status_code == 200
    stored = store.find_user(user.id).password_hash
    assert stored != weak
    assert verify_password_and_upgrade("password123", stored) == (True, None)
