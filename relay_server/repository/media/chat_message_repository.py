"""Chat message repository.

Handles append and query operations for chat messages.
Stored in chat_db.
"""
import logging
from typing import Optional, Dict, Any, List

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING

from relay_server.exception import InvalidPayload
from relay_server.messaging.models import Message
from relay_server.repository.base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ChatMessageRepository(BaseRepository):
    """Repository for chat messages."""

    def __init__(self, db, collection_name="chat_messages"):
        super().__init__(db=db, collection_name=collection_name)
        logger.info(f"Initializing {self.collection_name} collection")

    # =========================================================================
    # Message operations
    # =========================================================================

    def create_message(self, message: Message) -> Message:
        """Persist a new message. Nothing is observable until this returns."""
        self.insert(message.to_db_doc())
        return message

    def get_message(self, message_id: str) -> Optional[Message]:
        try:
            oid = ObjectId(message_id)
        except (InvalidId, TypeError):
            return None
        docs = self.find({'_id': oid}, limit=1)
        return Message.from_doc(docs[0]) if docs else None

    def mark_delivered(self, message_id: str) -> bool:
        """Flip delivered to True. Already-delivered messages are left untouched."""
        modified = self.update_many({'_id': ObjectId(message_id), 'delivered': False}, {'delivered': True})
        return modified > 0

    def get_conversation_messages(
        self,
        conversation_id: str,
        limit: int = 50,
        before: Optional[str] = None,
        participant_id: Optional[str] = None
    ) -> List[Message]:
        """Return up to ``limit`` messages, oldest first.

        ``before`` is the message id of the oldest message the caller already
        holds; only older messages are returned. With ``participant_id`` only
        messages that participant sent or received are visible.
        """
        query: Dict[str, Any] = {'conversation_id': conversation_id}
        if participant_id:
            query['$or'] = [{'sender_id': participant_id}, {'receiver_id': participant_id}]
        if before:
            try:
                query['_id'] = {'$lt': ObjectId(before)}
            except (InvalidId, TypeError):
                raise InvalidPayload('before must be a message id')

        # Newest first so the limit keeps the most recent page, then reverse
        docs = self.find(query, sort=[('_id', DESCENDING)], limit=limit)
        docs.reverse()
        return [Message.from_doc(d) for d in docs]

    def get_pair_messages_page(
        self,
        conversation_id: str,
        page: int = 1,
        limit: int = 20
    ) -> List[Message]:
        """Page through a conversation newest-first, each page returned oldest-first."""
        docs = self.find(
            {'conversation_id': conversation_id},
            sort=[('_id', DESCENDING)],
            skip=(page - 1) * limit,
            limit=limit
        )
        docs.reverse()
        return [Message.from_doc(d) for d in docs]

    def count_conversation_messages(self, conversation_id: str) -> int:
        return self.count({'conversation_id': conversation_id})

    def find_unread_senders(self, conversation_id: str, reader_id: str) -> List[str]:
        """Senders with unread messages addressed to the reader in a conversation."""
        docs = self.find(
            {'conversation_id': conversation_id, 'receiver_id': reader_id, 'read': False},
            sort=[('_id', ASCENDING)]
        )
        senders = []
        for doc in docs:
            if doc.get('sender_id') not in senders:
                senders.append(doc.get('sender_id'))
        return senders

    def mark_conversation_read(self, conversation_id: str, reader_id: str) -> int:
        """Mark every unread message addressed to the reader as read. Idempotent."""
        return self.update_many(
            {'conversation_id': conversation_id, 'receiver_id': reader_id, 'read': False},
            {'read': True}
        )

    def ensure_indexes(self):
        with self._guard('create_index'):
            self.collection.create_index(
                [('conversation_id', ASCENDING), ('_id', DESCENDING)],
                name='chat_messages_conversation_id'
            )
            self.collection.create_index(
                [('receiver_id', ASCENDING), ('read', ASCENDING)],
                name='chat_messages_receiver_read'
            )
