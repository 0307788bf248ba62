"""Tests for the persistence gateway."""

import pytest
from pymongo.errors import AutoReconnect

from relay_server.exception import InvalidPayload, PersistenceFailure
from relay_server.messaging.models import Attachment, AttachmentKind, Message, PresenceRecord
from relay_server.repository.media.chat_message_repository import ChatMessageRepository
from relay_server.repository.mongo_helper import wait_for_mongo
from relay_server.security.roles import Role
from relay_server.utils.generator import generate_message_id, resolve_conversation_id


def _message(sender_id="u1", receiver_id="a1", body="hi", **kwargs):
    return Message(
        message_id=generate_message_id(),
        conversation_id=resolve_conversation_id(sender_id, receiver_id),
        sender_id=sender_id,
        sender_role=Role.USER if sender_id.startswith("u") else Role.ADMIN,
        receiver_id=receiver_id,
        receiver_role=Role.USER if receiver_id.startswith("u") else Role.ADMIN,
        body=body,
        **kwargs
    )


class TestChatMessageRepository:

    def test_create_and_get_roundtrip(self, repositories):
        repo = repositories.chat_message
        attachment = Attachment("https://cdn.example.test/a.png", "a.png", 42, AttachmentKind.IMAGE, "image/png")
        message = repo.create_message(_message(attachment=attachment, sender_name="Uma", receiver_name="Ann"))

        stored = repo.get_message(message.message_id)

        assert stored.message_id == message.message_id
        assert stored.sender_role is Role.USER
        assert stored.receiver_name == "Ann"
        assert stored.attachment.kind is AttachmentKind.IMAGE
        assert stored.attachment.mime_type == "image/png"
        assert stored.created_at == message.created_at

    def test_get_message_with_bad_id(self, repositories):
        assert repositories.chat_message.get_message("not-an-object-id") is None

    def test_mark_delivered_is_one_way(self, repositories):
        repo = repositories.chat_message
        message = repo.create_message(_message())

        assert repo.mark_delivered(message.message_id) is True
        assert repo.mark_delivered(message.message_id) is False
        assert repo.get_message(message.message_id).delivered is True

    def test_participant_filter(self, repositories, mongo_db):
        repo = repositories.chat_message
        message = repo.create_message(_message())
        # A stray document under the same key that the viewer is not part of
        mongo_db["chat_messages"].insert_one({
            "conversation_id": message.conversation_id, "sender_id": "x", "receiver_id": "y",
            "sender_role": "admin", "receiver_role": "user", "body": "stray", "read": False, "delivered": False
        })

        visible = repo.get_conversation_messages(message.conversation_id, participant_id="u1")

        assert [m.body for m in visible] == ["hi"]

    def test_invalid_before_cursor(self, repositories):
        with pytest.raises(InvalidPayload):
            repositories.chat_message.get_conversation_messages("dm_x", before="yesterday")

    def test_unread_senders_and_mark_read(self, repositories):
        repo = repositories.chat_message
        first = repo.create_message(_message("u1", "a1", "one"))
        repo.create_message(_message("u1", "a1", "two"))
        repo.create_message(_message("a1", "u1", "reply"))

        assert repo.find_unread_senders(first.conversation_id, "a1") == ["u1"]
        assert repo.mark_conversation_read(first.conversation_id, "a1") == 2
        assert repo.mark_conversation_read(first.conversation_id, "a1") == 0
        assert repo.find_unread_senders(first.conversation_id, "a1") == []

    def test_driver_errors_become_persistence_failures(self):
        class FailingCollection:
            def insert_one(self, doc):
                raise AutoReconnect("connection reset")

        repo = ChatMessageRepository({"chat_messages": FailingCollection()})

        with pytest.raises(PersistenceFailure) as excinfo:
            repo.create_message(_message())
        assert excinfo.value.retryable is True


class TestUserPresenceRepository:

    def test_save_record_upserts(self, repositories):
        repo = repositories.user_presence
        repo.save_record(PresenceRecord("a1", "Ann", Role.ADMIN, online=True, connection_handle="sid-1"))
        repo.save_record(PresenceRecord("a1", "Ann B.", Role.ADMIN, online=False))

        records = repo.list_records()

        assert len(records) == 1
        assert records[0].display_name == "Ann B."
        assert records[0].online is False
        assert records[0].connection_handle is None

    def test_reset_online(self, repositories):
        repo = repositories.user_presence
        repo.save_record(PresenceRecord("a1", "Ann", Role.ADMIN, online=True, connection_handle="sid-1"))
        repo.save_record(PresenceRecord("u1", "Uma", Role.USER, online=False))

        assert repo.reset_online() == 1
        assert all(not r.online for r in repo.list_records())


class TestWaitForMongo:

    def test_gives_up_after_max_attempts(self, monkeypatch):
        from relay_server.repository import mongo_helper

        class DownClient:
            class admin:
                @staticmethod
                def command(name):
                    raise AutoReconnect("no server")

        delays = []
        monkeypatch.setattr(mongo_helper.MongoRepositorySingleton, "get_client", classmethod(lambda cls: DownClient()))

        assert wait_for_mongo(max_attempts=3, initial_delay=1.0, sleep=delays.append) is False
        assert delays == [1.0, 2.0]

    def test_returns_once_ping_succeeds(self, monkeypatch):
        from relay_server.repository import mongo_helper

        calls = []

        class FlakyClient:
            class admin:
                @staticmethod
                def command(name):
                    calls.append(name)
                    if len(calls) < 2:
                        raise AutoReconnect("starting up")
                    return {"ok": 1}

        monkeypatch.setattr(mongo_helper.MongoRepositorySingleton, "get_client", classmethod(lambda cls: FlakyClient()))

        assert wait_for_mongo(max_attempts=0, initial_delay=0.5, sleep=lambda s: None) is True
        assert calls == ["ping", "ping"]
