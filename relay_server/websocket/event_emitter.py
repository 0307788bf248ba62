"""Routing engine for realtime events.

Decides which live connections receive each outbound event and pushes it
over Socket.IO. Delivery is fire-and-forget and at-most-once: there is no
outbound queue, no retry and no acknowledgement. Anything addressed to an
identity without a live connection is dropped here; messages survive only
because they were persisted before routing.

Usage:
    router = RoutingEngine(socketio, registry)
    registry.add_listener(router.broadcast_presence)
    outcome = router.deliver_message(message, sender_handle=request.sid)
"""
import logging
from typing import Any, Dict, Optional

from relay_server.messaging.models import DeliveryOutcome, Message, PresenceRecord
from relay_server.presence.registry import PresenceRegistry
from relay_server.security.roles import can_address, can_view
from relay_server.utils.time_utils import utc_now, to_iso

logger = logging.getLogger(__name__)


class RoutingEngine:
    """Fans events out to live connections according to the visibility policy."""

    # =========================================================================
    # Event Type Constants
    # =========================================================================

    PRESENCE_CHANGED = 'presenceChanged'
    MESSAGE_RECEIVED = 'messageReceived'
    MESSAGE_SENT = 'messageSent'
    HISTORY_LOADED = 'historyLoaded'
    TYPING_CHANGED = 'typingChanged'
    READ_RECEIPT = 'readReceipt'
    ONLINE_USERS = 'onlineUsers'
    IDENTIFIED = 'identified'
    ERROR = 'error'

    def __init__(self, socketio, registry: PresenceRegistry):
        self.socketio = socketio
        self.registry = registry

    # =========================================================================
    # Emit Methods
    # =========================================================================

    def emit_to_handle(self, handle: str, event: str, data: Dict[str, Any]) -> bool:
        """Push one event to one connection. Transport errors are logged, never raised."""
        try:
            self.socketio.emit(event, data, to=handle)
            return True
        except Exception as e:
            logger.warning(f"ROUTER: emit {event} to {handle} failed: {e}")
            return False

    def emit_to_identity(self, identity_id: str, event: str, data: Dict[str, Any]) -> bool:
        """Push an event to the identity's live connection, or drop it."""
        handle = self.registry.lookup_live(identity_id)
        if handle is None:
            logger.debug(f"ROUTER: {identity_id} not reachable, {event} dropped")
            return False
        return self.emit_to_handle(handle, event, data)

    def broadcast_presence(self, record: PresenceRecord) -> int:
        """Send a presence snapshot to every live connection allowed to see the subject.

        The policy is evaluated per recipient against its role at delivery
        time. The subject's own connection is skipped. Returns the number of
        connections reached.
        """
        payload = record.to_dict()
        reached = 0
        for handle, identity_id, role in self.registry.live_connections():
            if identity_id == record.identity_id:
                continue
            if not can_view(role, record.role):
                continue
            if self.emit_to_handle(handle, self.PRESENCE_CHANGED, payload):
                reached += 1
        logger.debug(f"ROUTER: presence of {record.identity_id} (online={record.online}) sent to {reached} connection(s)")
        return reached

    def deliver_message(self, message: Message, sender_handle: Optional[str] = None) -> DeliveryOutcome:
        """Push a persisted message to its receiver and confirm it to the sender.

        The sender confirmation goes out regardless of whether the receiver is
        reachable. Returns DELIVERED when the receiver's live connection was
        handed the message, QUEUED_FOR_PULL otherwise.
        """
        payload = message.to_dict()
        outcome = DeliveryOutcome.QUEUED_FOR_PULL

        receiver_handle = self.registry.lookup_live(message.receiver_id)
        if receiver_handle is not None:
            # The copy being pushed is the delivered one
            if self.emit_to_handle(receiver_handle, self.MESSAGE_RECEIVED, {**payload, 'delivered': True}):
                outcome = DeliveryOutcome.DELIVERED
        else:
            logger.debug(f"ROUTER: {message.receiver_id} offline, message {message.message_id} left for pull")

        target = sender_handle or self.registry.lookup_live(message.sender_id)
        if target is not None:
            self.emit_to_handle(target, self.MESSAGE_SENT, {
                **payload,
                'delivered': outcome == DeliveryOutcome.DELIVERED,
                'deliveryStatus': outcome.value
            })
        return outcome

    def send_typing(self, sender: PresenceRecord, receiver_id: str, is_typing: bool) -> bool:
        """Relay a typing indicator to an addressable, reachable receiver. Never persisted."""
        receiver = self.registry.get(receiver_id)
        if receiver is None or not can_address(sender.role, receiver.role):
            return False
        return self.emit_to_identity(receiver_id, self.TYPING_CHANGED, {
            'senderId': sender.identity_id,
            'senderName': sender.display_name,
            'isTyping': bool(is_typing)
        })

    def send_read_receipt(self, sender_id: str, conversation_id: str, reader_id: str) -> bool:
        """Tell the original sender that the reader has read the conversation."""
        return self.emit_to_identity(sender_id, self.READ_RECEIPT, {
            'conversationId': conversation_id,
            'readerId': reader_id,
            'timestamp': to_iso(utc_now())
        })
