import json

import pytest
from conftest import auth
from pymongo.errors import AutoReconnect, PyMongoError
from starlette.requests import Request

from chirp.main import storage_exception_handler
from chirp.repositories.message_repository import MessageRepository


def send(client, sender, recipient, content):
    return client.post("/messages/send", json={"recipientId": recipient, "content": content}, headers=auth(sender))


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "chirp-messaging"}


def test_requires_authentication(client):
    assert client.get("/conversations").status_code == 401
    response = client.get("/conversations", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_send_message(client, users):
    response = send(client, users["alice"], users["bob"], "hello bob")
    assert response.status_code == 201
    body = response.json()
    assert set(body) >= {"id", "senderId", "senderName", "content", "timestamp", "read"}
    assert body["senderId"] == users["alice"]
    assert body["senderName"] == "alice"
    assert body["content"] == "hello bob"
    assert body["read"] is False


def test_send_missing_fields_is_400(client, users):
    headers = auth(users["alice"])
    assert client.post("/messages/send", json={"content": "hi"}, headers=headers).status_code == 400
    assert client.post("/messages/send", json={"recipientId": users["bob"]}, headers=headers).status_code == 400
    response = client.post("/messages/send", json={"recipientId": users["bob"], "content": ""}, headers=headers)
    assert response.status_code == 400
    assert response.json()["message"]


def test_send_wrongly_typed_body_is_400(client, users):
    response = client.post("/messages/send", json={"recipientId": users["bob"], "content": 42}, headers=auth(users["alice"]))
    assert response.status_code == 400


def test_send_to_unknown_recipient_is_404(client, users):
    response = send(client, users["alice"], "65f0c0ffee0000000000abcd", "anyone?")
    assert response.status_code == 404
    assert response.json()["message"] == "Recipient not found"


def test_send_to_self_is_400(client, users):
    assert send(client, users["alice"], users["alice"], "me").status_code == 400


def test_offline_recipient_scenario(client, users):
    alice, bob = users["alice"], users["bob"]
    assert send(client, alice, bob, "hi").status_code == 201

    conversations = client.get("/conversations", headers=auth(bob)).json()
    assert len(conversations) == 1
    assert conversations[0]["id"] == alice
    assert conversations[0]["participantName"] == "alice"
    assert conversations[0]["lastMessage"] == "hi"
    assert conversations[0]["unreadCount"] == 1
    assert client.get("/messages/unread/count", headers=auth(bob)).json() == {"unreadCount": 1}

    history = client.get(f"/messages/{alice}", headers=auth(bob)).json()
    assert [m["content"] for m in history] == ["hi"]

    conversations = client.get("/conversations", headers=auth(bob)).json()
    assert conversations[0]["unreadCount"] == 0
    assert client.get("/messages/unread/count", headers=auth(bob)).json() == {"unreadCount": 0}


def test_conversations_one_row_per_partner(client, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    send(client, alice, bob, "to bob")
    send(client, carol, alice, "from carol")
    send(client, bob, alice, "bob again")

    rows = client.get("/conversations", headers=auth(alice)).json()
    assert sorted(r["id"] for r in rows) == sorted([bob, carol])
    assert rows[0]["id"] == bob
    assert rows[0]["lastMessage"] == "bob again"
    assert client.get("/conversations", headers=auth(users["carol"])).json()[0]["unreadCount"] == 0


def test_mark_read_endpoint(client, users):
    alice, bob = users["alice"], users["bob"]
    send(client, alice, bob, "one")
    send(client, alice, bob, "two")

    response = client.put(f"/messages/read/{alice}", headers=auth(bob))
    assert response.status_code == 200
    assert response.json() == {"message": "Messages marked as read", "updated": 2}
    assert client.put(f"/messages/read/{alice}", headers=auth(bob)).json()["updated"] == 0
    assert client.get("/conversations", headers=auth(bob)).json()[0]["unreadCount"] == 0


def test_mark_read_unknown_partner_is_404(client, users):
    assert client.put("/messages/read/65f0c0ffee0000000000abcd", headers=auth(users["bob"])).status_code == 404


class BrokenMessages:
    """Stand-in for a messages collection whose server goes away mid-query."""

    def find(self, *args, **kwargs):
        return self._rows()

    async def _rows(self):
        yield {"_id": "65f0c0ffee0000000000beef", "sender_id": "x", "recipient_id": "y", "content": "half", "read": False}
        raise AutoReconnect("connection reset by mongod")

    async def count_documents(self, *args, **kwargs):
        raise AutoReconnect("connection reset by mongod")


@pytest.fixture
def broken_messages(monkeypatch):
    monkeypatch.setattr(MessageRepository, "collection", property(lambda self: BrokenMessages()))


def test_conversations_fail_whole_when_storage_drops_mid_stream(client, users, broken_messages):
    response = client.get("/conversations", headers=auth(users["alice"]))
    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Server error"
    assert "connection reset" not in response.text


def test_unread_count_storage_failure_is_generic_500(client, users, broken_messages):
    response = client.get("/messages/unread/count", headers=auth(users["alice"]))
    assert response.status_code == 500
    assert response.json()["message"] == "Server error"
    assert "connection reset" not in response.text


@pytest.mark.anyio
async def test_raw_driver_error_handler_hides_detail():
    request = Request({"type": "http", "method": "GET", "path": "/conversations", "headers": [], "query_string": b""})
    response = await storage_exception_handler(request, PyMongoError("node 10.0.0.7 unreachable"))

    assert response.status_code == 500
    body = json.loads(response.body)
    assert body["message"] == "Server error"
    assert body["error"]["detail"] == "Server error"
    assert "10.0.0.7" not in response.body.decode()


def test_presence_endpoint_offline(client, users):
    response = client.get(f"/presence/{users['bob']}", headers=auth(users["alice"]))
    assert response.json() == {"userId": users["bob"], "online": False}
