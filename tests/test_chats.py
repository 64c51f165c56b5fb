import pytest
from fastapi import WebSocketDisconnect

from database import Subscription, create_document, get_document, get_documents
from schemas import MESSAGES


@pytest.fixture
def reserved_chat(client, register, list_food):
    alice = register("Alice", "alice@example.com")
    bob = register("Bob", "bob@example.com")
    bread = list_food(alice, "Bread")
    chat_id = client.post(f"/api/food-items/{bread['id']}/reserve", headers=bob["headers"]).json()["chat_id"]
    return alice, bob, chat_id


class TestChatStatus:
    def test_only_receiver_marks_received(self, client, reserved_chat):
        alice, bob, chat_id = reserved_chat
        assert client.post(f"/api/chats/{chat_id}/received", headers=alice["headers"]).status_code == 403
        assert get_document("chats", chat_id)["status"] == "pending"

    def test_status_never_moves_back(self, client, reserved_chat):
        _, bob, chat_id = reserved_chat
        assert client.post(f"/api/chats/{chat_id}/received", headers=bob["headers"]).status_code == 200
        assert client.post(f"/api/chats/{chat_id}/received", headers=bob["headers"]).status_code == 409

        client.post(f"/api/chats/{chat_id}/rating", json={"rating": 5}, headers=bob["headers"])
        assert client.post(f"/api/chats/{chat_id}/received", headers=bob["headers"]).status_code == 409
        assert get_document("chats", chat_id)["status"] == "completed"

    def test_rating_requires_received(self, client, reserved_chat):
        alice, bob, chat_id = reserved_chat
        resp = client.post(f"/api/chats/{chat_id}/rating", json={"rating": 5}, headers=bob["headers"])
        assert resp.status_code == 409
        assert get_document("users", alice["id"])["ratings"] == []

    def test_only_receiver_rates(self, client, reserved_chat):
        alice, bob, chat_id = reserved_chat
        client.post(f"/api/chats/{chat_id}/received", headers=bob["headers"])
        resp = client.post(f"/api/chats/{chat_id}/rating", json={"rating": 5}, headers=alice["headers"])
        assert resp.status_code == 403

    def test_rating_out_of_range(self, client, reserved_chat):
        _, bob, chat_id = reserved_chat
        client.post(f"/api/chats/{chat_id}/received", headers=bob["headers"])
        assert client.post(f"/api/chats/{chat_id}/rating", json={"rating": 0}, headers=bob["headers"]).status_code == 422
        assert client.post(f"/api/chats/{chat_id}/rating", json={"rating": 6}, headers=bob["headers"]).status_code == 422

    def test_resubmission_counts_twice(self, client, reserved_chat):
        alice, bob, chat_id = reserved_chat
        client.post(f"/api/chats/{chat_id}/received", headers=bob["headers"])
        client.post(f"/api/chats/{chat_id}/rating", json={"rating": 5}, headers=bob["headers"])
        resp = client.post(f"/api/chats/{chat_id}/rating", json={"rating": 2}, headers=bob["headers"])
        assert resp.json()["average_rating"] == 3.5
        donor = get_document("users", alice["id"])
        assert donor["ratings"] == [5, 2]
        assert len(donor["rating_comments"]) == 2


class TestChatList:
    def test_lists_chats_by_participant(self, client, reserved_chat, register):
        alice, bob, chat_id = reserved_chat
        carol = register("Carol", "carol@example.com")
        assert [c["id"] for c in client.get("/api/chats", headers=alice["headers"]).json()] == [chat_id]
        assert [c["id"] for c in client.get("/api/chats", headers=bob["headers"]).json()] == [chat_id]
        assert client.get("/api/chats", headers=carol["headers"]).json() == []

    def test_delete_chat_removes_messages(self, client, reserved_chat):
        alice, _, chat_id = reserved_chat
        assert client.delete(f"/api/chats/{chat_id}", headers=alice["headers"]).status_code == 200
        assert get_document("chats", chat_id) is None
        assert get_documents("messages", {"chat_id": chat_id}) == []

    def test_outsider_cannot_delete(self, client, reserved_chat, register):
        _, _, chat_id = reserved_chat
        carol = register("Carol", "carol@example.com")
        assert client.delete(f"/api/chats/{chat_id}", headers=carol["headers"]).status_code == 403


class TestTranscript:
    def test_send_appends_and_updates_last_message(self, client, reserved_chat):
        alice, bob, chat_id = reserved_chat
        resp = client.post(f"/api/chats/{chat_id}/messages", json={"text": "  When can I pick up?  "},
                           headers=bob["headers"])
        assert resp.status_code == 201
        client.post(f"/api/chats/{chat_id}/messages", json={"text": "After 5pm"}, headers=alice["headers"])

        messages = client.get(f"/api/chats/{chat_id}/messages", headers=alice["headers"]).json()
        assert [(m["sender_name"], m["text"]) for m in messages] == [
            ("System", "Bob has reserved Bread"),
            ("Bob", "When can I pick up?"),
            ("Alice", "After 5pm"),
        ]
        assert get_document("chats", chat_id)["last_message"]["text"] == "After 5pm"

    def test_blank_message_rejected(self, client, reserved_chat):
        _, bob, chat_id = reserved_chat
        resp = client.post(f"/api/chats/{chat_id}/messages", json={"text": "   "}, headers=bob["headers"])
        assert resp.status_code == 400
        assert len(get_documents("messages", {"chat_id": chat_id})) == 1

    def test_outsider_cannot_read_or_write(self, client, reserved_chat, register):
        _, _, chat_id = reserved_chat
        carol = register("Carol", "carol@example.com")
        assert client.get(f"/api/chats/{chat_id}/messages", headers=carol["headers"]).status_code == 403
        resp = client.post(f"/api/chats/{chat_id}/messages", json={"text": "hi"}, headers=carol["headers"])
        assert resp.status_code == 403


class TestSubscription:
    def test_delivers_full_ordered_list_after_change(self, db):
        with Subscription(MESSAGES, {"chat_id": "c1"}, sort=[("timestamp", 1), ("_id", 1)]) as sub:
            assert sub.snapshot() == []
            assert sub.next_snapshot(timeout=0) is None

            create_document(MESSAGES, {"chat_id": "c1", "text": "one", "timestamp": 1})
            create_document(MESSAGES, {"chat_id": "c2", "text": "elsewhere", "timestamp": 2})
            create_document(MESSAGES, {"chat_id": "c1", "text": "two", "timestamp": 3})

            assert [m["text"] for m in sub.next_snapshot(timeout=0)] == ["one", "two"]
            assert sub.next_snapshot(timeout=0) is None

        create_document(MESSAGES, {"chat_id": "c1", "text": "three", "timestamp": 4})
        assert sub.next_snapshot(timeout=0) is None

    def test_transcript_stream(self, client, reserved_chat):
        _, bob, chat_id = reserved_chat
        with client.websocket_connect(f"/api/chats/{chat_id}/messages/ws?token={bob['token']}") as ws:
            first = ws.receive_json()
            assert [m["sender_id"] for m in first] == ["system"]

            client.post(f"/api/chats/{chat_id}/messages", json={"text": "on my way"}, headers=bob["headers"])
            update = ws.receive_json()
            assert [m["text"] for m in update] == ["Bob has reserved Bread", "on my way"]

    def test_chat_list_stream(self, client, reserved_chat):
        alice, _, chat_id = reserved_chat
        with client.websocket_connect(f"/api/chats/ws?token={alice['token']}") as ws:
            assert [c["id"] for c in ws.receive_json()] == [chat_id]

    def test_chat_list_stream_after_messages(self, client, reserved_chat):
        alice, bob, chat_id = reserved_chat
        client.post(f"/api/chats/{chat_id}/messages", json={"text": "hi"}, headers=bob["headers"])
        with client.websocket_connect(f"/api/chats/ws?token={alice['token']}") as ws:
            first = ws.receive_json()
            assert first[0]["last_message"]["text"] == "hi"
            assert isinstance(first[0]["last_message"]["timestamp"], str)

            client.post(f"/api/chats/{chat_id}/messages", json={"text": "see you at 5"}, headers=bob["headers"])
            update = ws.receive_json()
            assert [c["id"] for c in update] == [chat_id]
            assert update[0]["last_message"]["text"] == "see you at 5"

    def test_store_failure_closes_stream(self, client, reserved_chat, monkeypatch):
        alice, _, _ = reserved_chat

        def snapshot(self):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(Subscription, "snapshot", snapshot)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/api/chats/ws?token={alice['token']}") as ws:
                ws.receive_json()
        assert exc_info.value.code == 1011

    def test_stream_requires_auth(self, client, reserved_chat, register):
        _, _, chat_id = reserved_chat
        carol = register("Carol", "carol@example.com")
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/api/chats/ws?token=bogus") as ws:
                ws.receive_json()
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/api/chats/{chat_id}/messages/ws?token={carol['token']}") as ws:
                ws.receive_json()
