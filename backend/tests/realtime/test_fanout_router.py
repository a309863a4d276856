# backend/tests/realtime/test_fanout_router.py
"""
Scenario tests for the fanout router: every trigger, its state change and
exactly which connections receive which events.
"""

import asyncio
from datetime import datetime
from typing import List

import pytest
from sqlalchemy.exc import OperationalError

from courier.core.ulid_helper import generate_ulid
from courier.database import SessionLocal
from courier.models.message import DeleteScope, Message, MessageStatus
from courier.services.message_service import LifecyclePolicy
from courier.services.messaging.fanout import FanoutRouter
from courier.services.messaging.registry import ConnectionRegistry


class GatedPresenceStore:
    """Presence store whose offline write can be held open."""

    def __init__(self):
        self.offline: List[str] = []
        self.offline_started = asyncio.Event()
        self._gate = asyncio.Event()
        self._gate.set()

    async def mark_online(self, user_id: str, at: datetime) -> None:
        return None

    async def mark_offline(self, user_id: str, at: datetime) -> None:
        self.offline_started.set()
        await self._gate.wait()
        self.offline.append(user_id)

    def hold_offline(self) -> None:
        self._gate.clear()

    def release_offline(self) -> None:
        self._gate.set()


async def _send(router, connection, frame, receiver_id, body, **extra):
    await router.handle_frame(
        connection, frame("send-message", receiverId=receiver_id, message=body, **extra)
    )
    sent = connection.of_type("message-sent")
    assert sent, f"expected message-sent, got {connection.sent}"
    return sent[-1]["payload"]["id"]


class TestJoin:
    @pytest.mark.asyncio
    async def test_join_replies_and_announces_online(self, router, make_connection, join, frame):
        bob = await join("bob")
        conn = make_connection("alice")

        await router.handle_frame(conn, frame("join", userId="alice"))

        assert conn.types() == ["joined"]
        assert conn.sent[0]["payload"] == {"userId": "alice", "connectionId": conn.connection_id}
        assert bob.of_type("user-online")[0]["payload"] == {"userId": "alice"}

    @pytest.mark.asyncio
    async def test_second_device_does_not_reannounce(self, router, join, make_connection, frame):
        bob = await join("bob")
        await join("alice")
        bob.clear()

        await router.handle_frame(make_connection("alice"), frame("join", userId="alice"))

        assert bob.sent == []

    @pytest.mark.asyncio
    async def test_join_as_another_user_is_rejected(self, router, join, make_connection, frame):
        bob = await join("bob")
        mallory = make_connection("mallory")

        await router.handle_frame(mallory, frame("join", userId="bob"))

        assert mallory.types() == ["error"]
        assert mallory.sent[0]["payload"]["code"] == "UNAUTHORIZED"
        assert router.registry.user_for(mallory.connection_id) is None
        assert router.registry.connections_for("bob") == {bob.connection_id}

    @pytest.mark.asyncio
    async def test_impersonator_never_receives_messages(
        self, router, join, make_connection, frame
    ):
        alice = await join("alice")
        mallory = make_connection("mallory")
        await router.handle_frame(mallory, frame("join", userId="bob"))
        mallory.clear()

        await router.handle_frame(alice, frame("send-message", receiverId="bob", message="secret"))

        assert mallory.sent == []

    @pytest.mark.asyncio
    async def test_join_without_verified_identity_is_rejected(
        self, router, make_connection, frame
    ):
        conn = make_connection()

        await router.handle_frame(conn, frame("join", userId="alice"))

        assert conn.types() == ["error"]
        assert conn.sent[0]["payload"]["code"] == "UNAUTHORIZED"
        assert not router.registry.is_online("alice")

    @pytest.mark.asyncio
    async def test_events_before_join_are_rejected(self, router, make_connection, frame):
        conn = make_connection()

        await router.handle_frame(conn, frame("send-message", receiverId="bob", message="hi"))

        assert conn.types() == ["error"]
        assert conn.sent[0]["payload"]["code"] == "UNAUTHORIZED"
        with SessionLocal() as session:
            assert session.query(Message).count() == 0

    @pytest.mark.asyncio
    async def test_malformed_frame_gets_invalid_event(self, router, make_connection):
        conn = make_connection()

        await router.handle_frame(conn, "{not json")

        assert conn.types() == ["error"]
        assert conn.sent[0]["payload"]["code"] == "INVALID_EVENT"

    @pytest.mark.asyncio
    async def test_persisted_presence_follows_join_and_disconnect(
        self, router, make_connection, alice, load_user, frame
    ):
        conn = make_connection(alice)
        await router.handle_frame(conn, frame("join", userId=alice))
        assert load_user(alice).is_online is True

        await router.handle_disconnect(conn)
        assert load_user(alice).is_online is False


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_offline_receiver_leaves_message_sent(self, router, join, frame, load_message):
        alice = await join("alice")

        message_id = await _send(router, alice, frame, "bob", "hello")

        assert alice.types() == ["message-sent"]
        assert MessageStatus(load_message(message_id).status) == MessageStatus.SENT

    @pytest.mark.asyncio
    async def test_online_receiver_gets_message_and_sender_gets_delivered(
        self, router, join, frame, load_message
    ):
        alice = await join("alice")
        bob = await join("bob")

        message_id = await _send(router, alice, frame, "bob", "hello")

        assert bob.types() == ["receive-message"]
        received = bob.sent[0]["payload"]
        assert received["id"] == message_id
        assert received["senderId"] == "alice"
        assert received["message"] == "hello"
        assert alice.types() == ["message-sent", "message-status-update"]
        assert alice.sent[1]["payload"] == {"messageId": message_id, "status": "delivered"}
        assert MessageStatus(load_message(message_id).status) == MessageStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_every_device_of_both_users_is_reached(self, router, join, frame):
        alice_phone = await join("alice")
        alice_laptop = await join("alice")
        bob_phone = await join("bob")
        bob_laptop = await join("bob")

        await _send(router, alice_phone, frame, "bob", "hello")

        assert bob_phone.types() == ["receive-message"]
        assert bob_laptop.types() == ["receive-message"]
        assert alice_laptop.types() == ["message-sent", "message-status-update"]

    @pytest.mark.asyncio
    async def test_receiver_observes_acceptance_order(self, router, join, frame):
        alice = await join("alice")
        bob = await join("bob")

        await asyncio.gather(
            *(
                router.handle_frame(alice, frame("send-message", receiverId="bob", message=body))
                for body in ["m1", "m2", "m3"]
            )
        )

        sent_order = [e["payload"]["id"] for e in alice.of_type("message-sent")]
        received_order = [e["payload"]["id"] for e in bob.of_type("receive-message")]
        assert len(received_order) == 3
        assert received_order == sent_order

    @pytest.mark.asyncio
    async def test_self_send_is_not_echoed_as_receive(self, router, join, frame):
        alice = await join("alice")

        await _send(router, alice, frame, "alice", "note to self")

        assert "receive-message" not in alice.types()
        assert alice.types()[0] == "message-sent"

    @pytest.mark.asyncio
    async def test_sender_id_must_match_joined_user(self, router, join, frame):
        alice = await join("alice")

        await router.handle_frame(
            alice, frame("send-message", receiverId="bob", message="hi", senderId="mallory")
        )

        assert alice.types() == ["error"]
        assert alice.sent[0]["payload"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_reply_to_unknown_message(self, router, join, frame):
        alice = await join("alice")
        bob = await join("bob")

        await router.handle_frame(
            alice,
            frame("send-message", receiverId="bob", message="hi", replyTo=generate_ulid()),
        )

        assert alice.types() == ["error"]
        assert alice.sent[0]["payload"]["code"] == "INVALID_REFERENCE"
        assert bob.sent == []

    @pytest.mark.asyncio
    async def test_reply_carries_summary(self, router, join, frame):
        alice = await join("alice")
        bob = await join("bob")
        original = await _send(router, alice, frame, "bob", "question?")
        bob.clear()

        await _send(router, alice, frame, "bob", "follow-up", replyTo=original)

        reply_to = bob.of_type("receive-message")[0]["payload"]["replyTo"]
        assert reply_to["id"] == original
        assert reply_to["message"] == "question?"

    @pytest.mark.asyncio
    async def test_persistence_failure_only_errors_the_sender(
        self, router, join, frame, monkeypatch
    ):
        alice = await join("alice")
        bob = await join("bob")

        def broken_create(self, *args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(
            "courier.repositories.message_repository.MessageRepository.create_message",
            broken_create,
        )

        await router.handle_frame(alice, frame("send-message", receiverId="bob", message="hi"))

        assert alice.types() == ["error"]
        assert alice.sent[0]["payload"]["code"] == "PERSISTENCE_FAILURE"
        assert bob.sent == []
        with SessionLocal() as session:
            assert session.query(Message).count() == 0

    @pytest.mark.asyncio
    async def test_failed_delivery_transition_aborts_fanout(
        self, router, join, frame, monkeypatch
    ):
        alice = await join("alice")
        bob = await join("bob")

        def broken_mark_delivered(self, message_id, at):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr(
            "courier.repositories.message_repository.MessageRepository.mark_delivered",
            broken_mark_delivered,
        )

        await router.handle_frame(alice, frame("send-message", receiverId="bob", message="hi"))

        assert alice.types() == ["error"]
        assert alice.sent[0]["payload"]["code"] == "PERSISTENCE_FAILURE"
        assert bob.sent == []
        with SessionLocal() as session:
            assert session.query(Message).count() == 0


class TestMessageSeen:
    @pytest.mark.asyncio
    async def test_seen_notifies_sender(self, router, join, frame, load_message):
        alice = await join("alice")
        bob = await join("bob")
        message_id = await _send(router, alice, frame, "bob", "hello")
        alice.clear()

        await router.handle_frame(bob, frame("message-seen", messageIds=[message_id]))

        assert alice.types() == ["messages-seen"]
        assert alice.sent[0]["payload"] == {"messageIds": [message_id], "seenBy": "bob"}
        assert MessageStatus(load_message(message_id).status) == MessageStatus.SEEN

    @pytest.mark.asyncio
    async def test_seen_skips_messages_addressed_to_someone_else(
        self, router, join, frame, load_message
    ):
        alice = await join("alice")
        bob = await join("bob")
        carol = await join("carol")
        to_bob = await _send(router, alice, frame, "bob", "for bob")
        to_carol = await _send(router, alice, frame, "carol", "for carol")
        alice.clear()

        await router.handle_frame(bob, frame("message-seen", messageIds=[to_bob, to_carol]))

        assert alice.of_type("messages-seen")[0]["payload"]["messageIds"] == [to_bob]
        assert MessageStatus(load_message(to_carol).status) == MessageStatus.DELIVERED
        assert carol.of_type("messages-seen") == []

    @pytest.mark.asyncio
    async def test_repeated_seen_is_silent(self, router, join, frame):
        alice = await join("alice")
        bob = await join("bob")
        message_id = await _send(router, alice, frame, "bob", "hello")
        await router.handle_frame(bob, frame("message-seen", messageIds=[message_id]))
        alice.clear()

        await router.handle_frame(bob, frame("message-seen", messageIds=[message_id]))

        assert alice.sent == []
        assert bob.of_type("error") == []


class TestTyping:
    @pytest.mark.asyncio
    async def test_typing_goes_to_receiver_only(self, router, join, frame):
        alice = await join("alice")
        bob = await join("bob")
        carol = await join("carol")

        await router.handle_frame(alice, frame("typing", receiverId="bob", isTyping=True))

        assert bob.of_type("typing")[0]["payload"] == {"userId": "alice", "isTyping": True}
        assert alice.of_type("typing") == []
        assert carol.of_type("typing") == []

    @pytest.mark.asyncio
    async def test_typing_to_oneself_is_dropped(self, router, join, frame):
        phone = await join("alice")
        laptop = await join("alice")

        await router.handle_frame(phone, frame("typing", receiverId="alice", isTyping=True))

        assert phone.sent == []
        assert laptop.sent == []


class TestEditAndDelete:
    @pytest.mark.asyncio
    async def test_edit_reaches_both_participants(self, router, join, frame, load_message):
        alice = await join("alice")
        bob = await join("bob")
        carol = await join("carol")
        message_id = await _send(router, alice, frame, "bob", "helo")
        alice.clear()
        bob.clear()

        await router.handle_frame(
            alice, frame("edit-message", messageId=message_id, newMessage="hello")
        )

        expected = {"messageId": message_id, "newMessage": "hello", "isEdited": True}
        assert alice.of_type("message-edited")[0]["payload"] == expected
        assert bob.of_type("message-edited")[0]["payload"] == expected
        assert carol.of_type("message-edited") == []
        assert load_message(message_id).body == "hello"

    @pytest.mark.asyncio
    async def test_edit_by_receiver_rejected(self, router, join, frame):
        alice = await join("alice")
        bob = await join("bob")
        message_id = await _send(router, alice, frame, "bob", "hi")
        alice.clear()

        await router.handle_frame(
            bob, frame("edit-message", messageId=message_id, newMessage="hacked")
        )

        assert bob.of_type("error")[0]["payload"]["code"] == "UNAUTHORIZED"
        assert alice.sent == []

    @pytest.mark.asyncio
    async def test_edit_unknown_message(self, router, join, frame):
        alice = await join("alice")
        await router.handle_frame(
            alice, frame("edit-message", messageId=generate_ulid(), newMessage="x")
        )
        assert alice.of_type("error")[0]["payload"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_delete_for_me_only_notifies_requester(self, router, join, frame, load_message):
        alice = await join("alice")
        bob = await join("bob")
        message_id = await _send(router, alice, frame, "bob", "oops")
        alice.clear()
        bob.clear()

        await router.handle_frame(
            alice, frame("delete-message", messageId=message_id, deleteFor="me")
        )

        assert alice.of_type("message-deleted")[0]["payload"] == {
            "messageId": message_id,
            "deleteFor": "me",
        }
        assert bob.sent == []
        stored = load_message(message_id)
        assert DeleteScope(stored.delete_scope) == DeleteScope.FOR_SENDER_ONLY

    @pytest.mark.asyncio
    async def test_delete_for_both_notifies_both(self, router, join, frame, load_message):
        alice = await join("alice")
        bob = await join("bob")
        message_id = await _send(router, alice, frame, "bob", "oops")
        alice.clear()
        bob.clear()

        await router.handle_frame(
            alice, frame("delete-message", messageId=message_id, deleteFor="both")
        )

        assert alice.of_type("message-deleted")[0]["payload"]["deleteFor"] == "both"
        assert bob.of_type("message-deleted")[0]["payload"]["deleteFor"] == "both"
        assert DeleteScope(load_message(message_id).delete_scope) == DeleteScope.FOR_BOTH

    @pytest.mark.asyncio
    async def test_receiver_cannot_delete_for_both(self, router, join, frame):
        alice = await join("alice")
        bob = await join("bob")
        message_id = await _send(router, alice, frame, "bob", "hi")
        alice.clear()

        await router.handle_frame(
            bob, frame("delete-message", messageId=message_id, deleteFor="both")
        )

        assert bob.of_type("error")[0]["payload"]["code"] == "UNAUTHORIZED"
        assert alice.sent == []


class TestOnlineStatus:
    @pytest.mark.asyncio
    async def test_online_user(self, router, join, frame, bob):
        alice = await join("alice")
        await join(bob)

        await router.handle_frame(alice, frame("get-online-status", userId=bob))

        payload = alice.of_type("online-status")[0]["payload"]
        assert payload["userId"] == bob
        assert payload["isOnline"] is True

    @pytest.mark.asyncio
    async def test_offline_user_reports_last_seen(self, router, join, frame, bob):
        alice = await join("alice")
        bob_conn = await join(bob)
        await router.handle_disconnect(bob_conn)
        alice.clear()

        await router.handle_frame(alice, frame("get-online-status", userId=bob))

        payload = alice.of_type("online-status")[0]["payload"]
        assert payload["isOnline"] is False
        assert payload["lastSeen"] is not None

    @pytest.mark.asyncio
    async def test_unknown_offline_user(self, router, join, frame):
        alice = await join("alice")
        await router.handle_frame(alice, frame("get-online-status", userId="ghost"))
        assert alice.of_type("error")[0]["payload"]["code"] == "NOT_FOUND"


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_last_connection_announces_offline(self, router, join):
        alice = await join("alice")
        bob_phone = await join("bob")
        bob_laptop = await join("bob")
        alice.clear()

        await router.handle_disconnect(bob_phone)
        assert alice.sent == []

        await router.handle_disconnect(bob_laptop)
        offline = alice.of_type("user-offline")
        assert len(offline) == 1
        assert offline[0]["payload"]["userId"] == "bob"
        assert offline[0]["payload"]["lastSeen"] is not None

    @pytest.mark.asyncio
    async def test_disconnected_connection_receives_nothing(self, router, join, frame):
        alice = await join("alice")
        bob = await join("bob")
        await router.handle_disconnect(bob)
        bob.clear()

        await _send(router, alice, frame, "bob", "anyone there?")

        assert bob.sent == []

    @pytest.mark.asyncio
    async def test_offline_announced_even_if_caller_is_cancelled(
        self, clock, make_connection, frame
    ):
        store = GatedPresenceStore()
        registry = ConnectionRegistry(presence_store=store, clock=clock)
        router = FanoutRouter(registry, SessionLocal, clock=clock, policy=LifecyclePolicy())
        alice, bob = make_connection("alice"), make_connection("bob")
        await router.handle_frame(alice, frame("join", userId="alice"))
        await router.handle_frame(bob, frame("join", userId="bob"))
        alice.clear()

        store.hold_offline()
        disconnect = asyncio.create_task(router.handle_disconnect(bob))
        await store.offline_started.wait()
        disconnect.cancel()
        with pytest.raises(asyncio.CancelledError):
            await disconnect
        store.release_offline()

        for _ in range(100):
            if alice.of_type("user-offline"):
                break
            await asyncio.sleep(0.01)

        assert alice.of_type("user-offline")[0]["payload"]["userId"] == "bob"
        assert store.offline == ["bob"]
        assert not registry.is_online("bob")


class TestBacklogDelivery:
    @pytest.mark.asyncio
    async def test_backlog_not_delivered_by_default(
        self, router, join, make_connection, frame, load_message
    ):
        alice = await join("alice")
        message_id = await _send(router, alice, frame, "bob", "while you were out")
        alice.clear()

        await router.handle_frame(make_connection("bob"), frame("join", userId="bob"))

        assert alice.of_type("message-status-update") == []
        assert MessageStatus(load_message(message_id).status) == MessageStatus.SENT

    @pytest.mark.asyncio
    async def test_backlog_delivered_on_connect_when_enabled(
        self, registry, clock, make_connection, frame, load_message
    ):
        policy = LifecyclePolicy(deliver_backlog_on_connect=True)
        router = FanoutRouter(registry, SessionLocal, clock=clock, policy=policy)
        alice = make_connection("alice")
        await router.handle_frame(alice, frame("join", userId="alice"))
        ids = [await _send(router, alice, frame, "bob", body) for body in ["one", "two"]]
        alice.clear()

        await router.handle_frame(make_connection("bob"), frame("join", userId="bob"))

        updates = alice.of_type("message-status-update")
        assert [u["payload"]["messageId"] for u in updates] == ids
        assert all(u["payload"]["status"] == "delivered" for u in updates)
        for message_id in ids:
            assert MessageStatus(load_message(message_id).status) == MessageStatus.DELIVERED
