"""Message lifecycle manager.

Coordinates the persist -> route -> mark-delivered -> mark-read transitions
of a message:

    created -> persisted -> (delivered | undelivered) -> (unread | read)

A message does not exist in any observable form until its durable write
succeeds. If the write fails the send fails and nothing is routed.
``delivered`` is best-effort metadata set right after a successful live
push, and ``read`` only flips through an explicit bulk mark-read.
"""
import logging
import math
import threading
from typing import Any, Dict, List, Optional

from relay_server.exception import InvalidPayload, PersistenceFailure, PolicyViolation, UploadFailed
from relay_server.messaging.models import DeliveryOutcome, Message, MessageDraft, PresenceRecord
from relay_server.presence.registry import PresenceRegistry
from relay_server.repository.media.chat_message_repository import ChatMessageRepository
from relay_server.security.roles import Role, can_address
from relay_server.utils.generator import generate_message_id, resolve_conversation_id
from relay_server.websocket.event_emitter import RoutingEngine

logger = logging.getLogger(__name__)

# Conversations share this many locks, picked by hash
CONVERSATION_LOCK_STRIPES = 64


class MessagingService:
    """High-level messaging operations shared by the socket handlers and REST routes."""

    def __init__(
        self,
        messages: ChatMessageRepository,
        registry: PresenceRegistry,
        router: RoutingEngine,
        storage=None,
        history_default_limit: int = 50,
        history_max_limit: int = 200
    ):
        self.messages = messages
        self.registry = registry
        self.router = router
        self.storage = storage
        self.history_default_limit = history_default_limit
        self.history_max_limit = history_max_limit
        self._conversation_locks: List[threading.Lock] = [
            threading.Lock() for _ in range(CONVERSATION_LOCK_STRIPES)
        ]

    # =========================================================================
    # Send
    # =========================================================================

    def send(self, sender: PresenceRecord, draft: MessageDraft, sender_handle: Optional[str] = None) -> Message:
        """Validate, persist and route a message, returning the stored message.

        Raises:
            InvalidPayload: the sender addressed itself.
            PolicyViolation: the receiver is unknown without a claimed role,
                or the roles may not address each other.
            UploadFailed: a raw file could not be stored.
            PersistenceFailure: the durable write failed; nothing was routed.
        """
        if draft.receiver_id == sender.identity_id:
            raise InvalidPayload('cannot send a message to yourself')

        receiver_role, receiver_name = self._resolve_receiver(draft)
        if not can_address(sender.role, receiver_role):
            logger.info(f"Send rejected: {sender.role.value} {sender.identity_id} may not address "
                        f"{receiver_role.value} {draft.receiver_id}")
            raise PolicyViolation(f'{sender.role.value} may not message {receiver_role.value}')

        attachment = draft.attachment
        if draft.file is not None:
            if self.storage is None:
                raise UploadFailed('object storage is not configured')
            attachment = self.storage.store_file(draft.file)

        conversation_id = resolve_conversation_id(sender.identity_id, draft.receiver_id)

        # Persist and route under the conversation lock so one sender's
        # messages are stored and pushed in send order.
        with self._conversation_lock(conversation_id):
            message = Message(
                message_id=generate_message_id(),
                conversation_id=conversation_id,
                sender_id=sender.identity_id,
                sender_role=sender.role,
                receiver_id=draft.receiver_id,
                receiver_role=receiver_role,
                body=draft.body,
                attachment=attachment,
                sender_name=sender.display_name,
                receiver_name=receiver_name
            )
            self.messages.create_message(message)
            outcome = self.router.deliver_message(message, sender_handle=sender_handle)

        if outcome == DeliveryOutcome.DELIVERED:
            try:
                if self.messages.mark_delivered(message.message_id):
                    message.delivered = True
            except PersistenceFailure as e:
                # The receiver already has it; only the flag is stale.
                logger.warning(f"Message {message.message_id} pushed but delivered flag not saved: {e}")

        logger.info(f"Message {message.message_id} sent by {sender.identity_id} to {draft.receiver_id} "
                    f"in {conversation_id} ({outcome.value})")
        return message

    def _resolve_receiver(self, draft: MessageDraft):
        receiver = self.registry.get(draft.receiver_id)
        if receiver is not None:
            return receiver.role, receiver.display_name
        if draft.receiver_role is None:
            raise PolicyViolation(f'unknown receiver {draft.receiver_id}')
        # Not in the directory: treated as unreachable, stored for later pull
        logger.info(f"Receiver {draft.receiver_id} unknown to presence directory, message will wait for pull")
        return draft.receiver_role, draft.receiver_name or draft.receiver_id

    # =========================================================================
    # History
    # =========================================================================

    def clamp_limit(self, limit) -> int:
        if limit is None or limit == '':
            return self.history_default_limit
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise InvalidPayload('limit must be an integer')
        return max(1, min(limit, self.history_max_limit))

    def fetch_history(
        self,
        conversation_id: str,
        limit=None,
        before: Optional[str] = None,
        viewer_id: Optional[str] = None
    ) -> List[Message]:
        """Oldest-first messages of a conversation, bounded by ``limit``.

        Used both for the login backfill and for pulling messages that were
        stored while the receiver was offline.
        """
        if not conversation_id or not isinstance(conversation_id, str):
            raise InvalidPayload('conversationId is required')
        return self.messages.get_conversation_messages(
            conversation_id, limit=self.clamp_limit(limit), before=before, participant_id=viewer_id
        )

    def history_page(self, user_id: str, other_user_id: str, page=1, limit=20) -> Dict[str, Any]:
        """One page of a pair's history for the REST endpoint, with paging totals."""
        try:
            page = max(1, int(page))
        except (TypeError, ValueError):
            raise InvalidPayload('page must be an integer')
        limit = self.clamp_limit(limit)
        conversation_id = resolve_conversation_id(user_id, other_user_id)
        total = self.messages.count_conversation_messages(conversation_id)
        chats = self.messages.get_pair_messages_page(conversation_id, page=page, limit=limit)
        return {
            'conversationId': conversation_id,
            'chats': [m.to_dict() for m in chats],
            'total': total,
            'page': page,
            'pages': math.ceil(total / limit) if total else 0
        }

    # =========================================================================
    # Read receipts and typing
    # =========================================================================

    def mark_read(self, conversation_id: str, reader_id: str) -> int:
        """Mark the reader's unread messages in a conversation as read.

        Idempotent: a repeat call finds nothing unread, changes nothing and
        sends no receipts. Each original sender that is reachable gets a
        readReceipt event; offline senders get nothing.
        """
        if not isinstance(conversation_id, str) or not isinstance(reader_id, str) \
                or not conversation_id or not reader_id:
            raise InvalidPayload('conversationId and reader are required')
        # Same lock as send, so no message lands between the two queries
        with self._conversation_lock(conversation_id):
            senders = self.messages.find_unread_senders(conversation_id, reader_id)
            count = self.messages.mark_conversation_read(conversation_id, reader_id)
        if count:
            for sender_id in senders:
                self.router.send_read_receipt(sender_id, conversation_id, reader_id)
            logger.info(f"{reader_id} read {count} message(s) in {conversation_id}")
        return count

    def typing(self, sender: PresenceRecord, receiver_id: str, is_typing: bool) -> bool:
        if not receiver_id:
            raise InvalidPayload('receiverId is required')
        return self.router.send_typing(sender, receiver_id, is_typing)

    # =========================================================================
    # Presence listings
    # =========================================================================

    def list_online(self, viewer_role, viewer_id: Optional[str], online_only: bool = True) -> List[PresenceRecord]:
        role = Role.parse(viewer_role)
        if role is None:
            raise InvalidPayload(f"role must be one of {', '.join(Role.all_roles())}")
        return self.registry.list_visible(role, viewer_id, online_only=online_only)

    # =========================================================================
    # Internals
    # =========================================================================

    def _conversation_lock(self, conversation_id: str) -> threading.Lock:
        return self._conversation_locks[hash(conversation_id) % len(self._conversation_locks)]
