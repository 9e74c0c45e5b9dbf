import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app import create_app
from conftest import make_token


@pytest.fixture
def app(store, verifier):
    return create_app(store, store, verifier)


@pytest.fixture
def client(app):
    # One portal for every session so all sockets share the event loop
    with TestClient(app) as client:
        yield client


def auth_header(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["connections"] == 0


def test_websocket_conversation_flow(client, app):
    hub = app.state.hub
    with client.websocket_connect(f"/ws?token={make_token(1)}") as ws_a:
        authenticated = ws_a.receive_json()
        assert authenticated["event"] == "authenticated"
        assert authenticated["data"]["user"]["id"] == 1

        ws_a.send_json({"event": "joinConversation", "data": 7})
        joined = ws_a.receive_json()
        assert joined["event"] == "joinedConversation"
        assert joined["data"]["memberCount"] == 1

        with client.websocket_connect("/ws/raw") as ws_b:
            ws_b.send_json({"type": "authenticate", "data": {"token": make_token(2)}})
            assert ws_b.receive_json()["type"] == "authenticated"

            ws_b.send_json({"type": "join_conversation", "data": 7})
            joined_b = ws_b.receive_json()
            assert joined_b["type"] == "joined_conversation"
            assert joined_b["data"]["memberCount"] == 2

            ws_b.send_json({
                "type": "send_message",
                "data": {"conversationId": 7, "content": "hi", "temporaryId": "t-1"},
            })
            status = ws_b.receive_json()
            assert status["type"] == "message_status"
            assert status["data"]["status"] == "sent"
            assert status["data"]["temporaryId"] == "t-1"

            new_message = ws_a.receive_json()
            assert new_message["event"] == "newMessage"
            assert new_message["data"]["content"] == "hi"
            assert new_message["data"]["sender_id"] == 2

            ws_a.send_json({"event": "startTyping", "data": 7})
            typing = ws_b.receive_json()
            assert typing["type"] == "user_typing"
            assert typing["data"]["userName"] == "Alice"

            ws_a.close()
            # Round trip on B so the disconnect of A has been handled
            ws_b.send_json({"type": "ping", "data": "x"})
            assert ws_b.receive_json()["type"] == "pong"
            assert hub.rooms.members_of(7) == frozenset(hub.registry.connections_of(2))

    assert hub.stats()["connections"] == 0
    assert len(hub.rooms) == 0


def test_websocket_unauthenticated_join_is_refused(client, app):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "joinConversation", "data": 7})
        error = ws.receive_json()
        assert error["event"] == "error"
        assert error["data"]["message"] == "Not authenticated"
        assert len(app.state.hub.rooms) == 0


def test_websocket_bad_handshake_token_closes(client):
    with client.websocket_connect("/ws?token=bogus") as ws:
        error = ws.receive_json()
        assert error["event"] == "error"
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 1008


def test_websocket_ignores_unknown_frames(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        ws.send_json({"event": "dance"})
        ws.send_json({"event": "ping", "data": 1})
        assert ws.receive_json()["event"] == "pong"


def test_rest_requires_bearer_token(client):
    response = client.get("/api/messages/conversations")
    assert response.status_code == 401
    assert response.json()["detail"] == "No token, authorization denied"

    response = client.get("/api/messages/conversations", headers={"Authorization": "Bearer junk"})
    assert response.status_code == 401

    response = client.get("/api/messages/conversations", headers=auth_header(99))
    assert response.status_code == 401
    assert response.json()["detail"] == "User not found"


def test_rest_conversations(client):
    response = client.post("/api/messages/conversations", json={"otherUserId": 2}, headers=auth_header(1))
    assert response.status_code == 200
    assert response.json() == {"conversationId": 7}

    response = client.post("/api/messages/conversations", json={"otherUserId": 1}, headers=auth_header(1))
    assert response.status_code == 400

    response = client.post("/api/messages/conversations", json={"otherUserId": 3}, headers=auth_header(2))
    assert response.status_code == 200
    new_id = response.json()["conversationId"]
    assert new_id not in (7, 8)

    listed = client.get("/api/messages/conversations", headers=auth_header(1)).json()
    assert {c["conversation_id"] for c in listed} == {7, 8}


def test_rest_message_is_broadcast_to_room(client, store):
    with client.websocket_connect(f"/ws?token={make_token(2)}") as ws:
        ws.receive_json()
        ws.send_json({"event": "joinConversation", "data": 7})
        ws.receive_json()

        response = client.post(
            "/api/messages/conversations/7/messages",
            json={"content": "over http"},
            headers=auth_header(1),
        )
        assert response.status_code == 201
        assert response.json()["sender_id"] == 1

        pushed = ws.receive_json()
        assert pushed["event"] == "newMessage"
        assert pushed["data"]["content"] == "over http"

    history = client.get("/api/messages/conversations/7/messages", headers=auth_header(2)).json()
    assert [m["content"] for m in history] == ["over http"]


def test_rest_message_access_rules(client, store):
    response = client.post(
        "/api/messages/conversations/7/messages", json={"content": "x"}, headers=auth_header(3)
    )
    assert response.status_code == 403

    response = client.post(
        "/api/messages/conversations/404/messages", json={"content": "x"}, headers=auth_header(1)
    )
    assert response.status_code == 404

    response = client.post(
        "/api/messages/conversations/7/messages", json={"content": "  "}, headers=auth_header(1)
    )
    assert response.status_code == 400
    assert store.messages == []

    response = client.put("/api/messages/conversations/7/mark-read", headers=auth_header(2))
    assert response.status_code == 200
    assert store.read_marks == [(7, 2)]


def test_rest_conversations_ordered_by_activity(client):
    for conversation_id, content in ((7, "to Bob"), (8, "to Carol"), (7, "Bob again")):
        response = client.post(
            f"/api/messages/conversations/{conversation_id}/messages",
            json={"content": content},
            headers=auth_header(1),
        )
        assert response.status_code == 201

    listed = client.get("/api/messages/conversations", headers=auth_header(1)).json()
    assert [c["conversation_id"] for c in listed] == [7, 8]
    assert listed[0]["last_message"] == "Bob again"
    assert [c["unread_count"] for c in listed] == [0, 0]

    [for_bob] = client.get("/api/messages/conversations", headers=auth_header(2)).json()
    assert for_bob["unread_count"] == 2

    client.put("/api/messages/conversations/7/mark-read", headers=auth_header(2))
    [for_bob] = client.get("/api/messages/conversations", headers=auth_header(2)).json()
    assert for_bob["unread_count"] == 0
    history = client.get("/api/messages/conversations/7/messages", headers=auth_header(2)).json()
    assert all(m["is_read"] for m in history)


def test_websocket_reauthenticate_as_other_user_keeps_connection(client, app):
    hub = app.state.hub
    with client.websocket_connect(f"/ws?token={make_token(1)}") as ws:
        connection_id = ws.receive_json()["data"]["connectionId"]

        ws.send_json({"event": "authenticate", "data": {"token": make_token(2)}})
        error = ws.receive_json()
        assert error["event"] == "error"

        ws.send_json({"event": "ping", "data": "still here"})
        pong = ws.receive_json()
        assert pong["event"] == "pong"
        assert hub.registry.resolve_user(connection_id) == 1


def test_websocket_failed_authenticate_closes_unauthenticated(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {"token": "bogus"}})
        assert ws.receive_json()["event"] == "error"
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 1008
