"""
Client library against a scripted transport.
"""
import json

import httpx
import pytest

from client import ApiError, PortalClient, PortalSession

TOKEN = "tok-1"
USER = {"id": "p1", "name": "John Parent", "email": "parent@example.com", "role": "parent"}
MAILBOX = [
    {"id": "m2", "sender": {"id": "p1", "name": "John Parent", "role": "parent"},
     "receiver": {"id": "t1", "name": "Mary Teacher", "role": "teacher"},
     "content": "Can we discuss further?", "is_read": False, "created_at": "2026-10-01T11:00:00+00:00"},
    {"id": "m1", "sender": {"id": "t1", "name": "Mary Teacher", "role": "teacher"},
     "receiver": {"id": "p1", "name": "John Parent", "role": "parent"},
     "content": "About your child's progress", "is_read": False, "created_at": "2026-10-01T10:00:00+00:00"},
]
READ_EARLIER = {
    "id": "m0", "sender": {"id": "t1", "name": "Mary Teacher", "role": "teacher"},
    "receiver": {"id": "p1", "name": "John Parent", "role": "parent"},
    "content": "Welcome", "is_read": True, "created_at": "2026-10-01T09:00:00+00:00",
}


class FakeApi:
    def __init__(self):
        self.requests = []
        self.thread = [READ_EARLIER] + MAILBOX[::-1]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/auth/login":
            body = json.loads(request.content)
            if body["password"] != "password":
                return httpx.Response(400, json={"error": "Invalid credentials"})
            return httpx.Response(200, json={"token": TOKEN, "user": USER})
        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"error": "Invalid or expired token"})
        if path == "/api/messages":
            return httpx.Response(200, json={"items": MAILBOX})
        if path == "/api/homework":
            return httpx.Response(200, json={"items": [{"title": "Math", "class_name": request.url.params["class"]}]})
        if path == "/api/messages/conversation/t1":
            return httpx.Response(200, json={"items": self.thread})
        if request.method == "PUT" and path.endswith("/read"):
            return httpx.Response(200, json={"id": path.split("/")[-2], "is_read": True})
        if path == "/api/users/profile":
            return httpx.Response(200, json={**USER, **json.loads(request.content)})
        return httpx.Response(404, json={"error": "Not Found"})


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def session_file(tmp_path):
    return tmp_path / "session.json"


def _client(api, session):
    return PortalClient("http://portal/api", session, transport=httpx.MockTransport(api))


def test_login_persists_session(api, session_file):
    with _client(api, PortalSession(str(session_file))) as portal:
        user = portal.login("parent@example.com", "password")
    assert user == USER

    restored = PortalSession.load(str(session_file))
    assert restored.is_authenticated
    assert restored.token == TOKEN
    assert restored.user_id == "p1"


def test_requests_carry_bearer_token(api, session_file):
    with _client(api, PortalSession(str(session_file))) as portal:
        portal.login("parent@example.com", "password")
        portal.homework("10", "A")
    last = api.requests[-1]
    assert last.headers["Authorization"] == "Bearer tok-1"
    assert last.url.params["class"] == "10"
    assert last.url.params["section"] == "A"


def test_failed_login_raises_and_keeps_session_empty(api):
    session = PortalSession()
    with _client(api, session) as portal:
        with pytest.raises(ApiError) as exc:
            portal.login("parent@example.com", "wrong")
    assert exc.value.status_code == 400
    assert exc.value.message == "Invalid credentials"
    assert not session.is_authenticated


def test_unauthorized_response_clears_session(api, session_file):
    session_file.write_text(json.dumps({"token": "stale", "user": USER}))
    session = PortalSession.load(str(session_file))
    assert session.is_authenticated

    with _client(api, session) as portal:
        with pytest.raises(ApiError) as exc:
            portal.messages()
    assert exc.value.status_code == 401
    assert not session.is_authenticated
    assert session.user is None
    assert not session_file.exists()


def test_conversations_grouped_locally(api):
    with _client(api, PortalSession()) as portal:
        portal.login("parent@example.com", "password")
        summaries = portal.conversations()
    assert len(summaries) == 1
    assert summaries[0].id == "t1"
    assert summaries[0].name == "Mary Teacher"
    assert summaries[0].unread_count == 1
    assert summaries[0].last_message["id"] == "m2"


def test_update_profile_refreshes_cached_user(api, session_file):
    session = PortalSession(str(session_file))
    with _client(api, session) as portal:
        portal.login("parent@example.com", "password")
        portal.update_profile(name="Johnny Parent")
    assert session.user["name"] == "Johnny Parent"
    assert PortalSession.load(str(session_file)).user["name"] == "Johnny Parent"


def test_logout_clears_storage(api, session_file):
    session = PortalSession(str(session_file))
    with _client(api, session) as portal:
        portal.login("parent@example.com", "password")
        portal.logout()
    assert not session.is_authenticated
    assert not session_file.exists()


def test_load_tolerates_missing_and_corrupt_files(session_file):
    assert not PortalSession.load(str(session_file)).is_authenticated
    session_file.write_text("{not json")
    session = PortalSession.load(str(session_file))
    assert not session.is_authenticated
    assert not session_file.exists()


def test_open_conversation_marks_incoming_unread(api):
    with _client(api, PortalSession()) as portal:
        portal.login("parent@example.com", "password")
        thread = portal.open_conversation("t1")

    marked = [r.url.path for r in api.requests if r.method == "PUT"]
    assert marked == ["/api/messages/m1/read"]
    assert [m["id"] for m in thread] == ["m0", "m1", "m2"]
    assert next(m for m in thread if m["id"] == "m1")["is_read"] is True


def test_open_conversation_without_unread_sends_no_updates(api):
    api.thread = [READ_EARLIER, dict(MAILBOX[0])]
    with _client(api, PortalSession()) as portal:
        portal.login("parent@example.com", "password")
        thread = portal.open_conversation("t1")
    assert len(thread) == 2
    assert not [r for r in api.requests if r.method == "PUT"]


@pytest.mark.parametrize("content", ["null", "[]", '"x"', "42"])
def test_load_discards_non_object_json(session_file, content):
    session_file.write_text(content)
    session = PortalSession.load(str(session_file))
    assert not session.is_authenticated
    assert session.user is None
    assert not session_file.exists()
