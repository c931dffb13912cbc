"""
Messages API: mailbox, conversation ordering, read receipts.
"""
import pytest

from database import MESSAGES

pytestmark = pytest.mark.anyio


async def _send(client, auth, sender, receiver, content):
    r = await client.post("/api/messages", json={"receiver_id": str(receiver["_id"]), "content": content},
                          headers=auth(sender))
    assert r.status_code == 201, r.text
    return r.json()


async def test_send_and_list(client, make_user, auth):
    teacher = make_user("teacher", name="Mary Teacher")
    parent = make_user("parent", name="John Parent")
    sent = await _send(client, auth, teacher, parent, "Hello! This is about your child's progress.")
    assert sent["is_read"] is False
    assert sent["sender"] == {"id": str(teacher["_id"]), "name": "Mary Teacher", "role": "teacher"}

    r = await client.get("/api/messages", headers=auth(parent))
    items = r.json()["items"]
    assert len(items) == 1
    assert items[0]["receiver"]["name"] == "John Parent"


async def test_mailbox_newest_first_and_conversation_oldest_first(client, make_user, auth):
    a = make_user("teacher")
    b = make_user("parent")
    c = make_user("parent")
    await _send(client, auth, a, b, "one")
    await _send(client, auth, b, a, "two")
    await _send(client, auth, a, c, "elsewhere")
    await _send(client, auth, a, b, "three")

    mailbox = await client.get("/api/messages", headers=auth(b))
    assert [m["content"] for m in mailbox.json()["items"]] == ["three", "two", "one"]

    convo = await client.get(f"/api/messages/conversation/{b['_id']}", headers=auth(a))
    assert [m["content"] for m in convo.json()["items"]] == ["one", "two", "three"]


async def test_only_receiver_can_mark_read(client, make_user, auth, db):
    sender = make_user("teacher")
    receiver = make_user("parent")
    outsider = make_user("admin")
    message = await _send(client, auth, sender, receiver, "Please read me")
    path = f"/api/messages/{message['id']}/read"

    for intruder in (sender, outsider):
        r = await client.put(path, headers=auth(intruder))
        assert r.status_code == 403
        assert r.json() == {"error": "Unauthorized to mark this message as read"}
    assert db[MESSAGES].find_one({})["is_read"] is False

    ok = await client.put(path, headers=auth(receiver))
    assert ok.status_code == 200
    assert ok.json()["is_read"] is True
    again = await client.put(path, headers=auth(receiver))
    assert again.status_code == 200


async def test_mark_read_missing_message(client, make_user, auth):
    r = await client.put("/api/messages/5f1f1f1f1f1f1f1f1f1f1f1f/read", headers=auth(make_user("parent")))
    assert r.status_code == 404
    assert r.json() == {"error": "Message not found"}


async def test_send_rejections(client, make_user, auth):
    parent = make_user("parent")
    teacher = make_user("teacher")

    to_self = await client.post("/api/messages", json={"receiver_id": str(parent["_id"]), "content": "hi"},
                                headers=auth(parent))
    assert to_self.status_code == 400

    nobody = await client.post("/api/messages", json={"receiver_id": "5f1f1f1f1f1f1f1f1f1f1f1f", "content": "hi"},
                               headers=auth(parent))
    assert nobody.status_code == 404

    blank = await client.post("/api/messages", json={"receiver_id": str(teacher["_id"]), "content": "   "},
                              headers=auth(parent))
    assert blank.status_code == 400


async def test_conversation_summaries(client, make_user, auth):
    parent = make_user("parent")
    mary = make_user("teacher", name="Mary Teacher")
    admin = make_user("admin", name="Admin User")
    await _send(client, auth, mary, parent, "progress")
    await _send(client, auth, parent, mary, "thanks")
    await _send(client, auth, admin, parent, "calendar")
    await _send(client, auth, admin, parent, "reminder")

    r = await client.get("/api/messages/conversations", headers=auth(parent))
    summaries = r.json()["items"]
    assert [s["name"] for s in summaries] == ["Admin User", "Mary Teacher"]
    assert summaries[0]["unread_count"] == 2
    assert summaries[0]["last_message"]["content"] == "reminder"
    assert summaries[1]["unread_count"] == 1
    assert summaries[1]["last_message"]["content"] == "thanks"
