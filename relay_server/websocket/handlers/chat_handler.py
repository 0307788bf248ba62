"""WebSocket Chat Handler.

All realtime operations of the relay go through these Socket.IO events:
- identify: bind the connection to an identity and mark it online
- send: persist then route a message
- fetchHistory: pull a conversation's stored messages
- typing: relay a typing indicator
- markRead: mark a conversation read and notify the senders
- listOnline: list the identities the caller may see

Ordering:
- events of one connection are processed one at a time, in arrival order
- events from a connection that has been superseded by a newer connection
  of the same identity are dropped without a reply
"""
import logging
import threading
from typing import Any, Dict, Optional

from flask import request

from relay_server.exception import InvalidPayload, RelayError, StaleConnection, UnknownIdentity
from relay_server.messaging.models import Identity, MessageDraft, PresenceRecord
from relay_server.messaging.service import MessagingService
from relay_server.presence.registry import PresenceRegistry
from relay_server.utils.generator import resolve_conversation_id
from relay_server.utils.helpers import parse_bool
from relay_server.websocket.event_emitter import RoutingEngine

logger = logging.getLogger(__name__)


class ChatHandler:
    """Handler for WebSocket chat events."""

    # Inbound event names
    EVENT_IDENTIFY = 'identify'
    EVENT_SEND = 'send'
    EVENT_FETCH_HISTORY = 'fetchHistory'
    EVENT_TYPING = 'typing'
    EVENT_MARK_READ = 'markRead'
    EVENT_LIST_ONLINE = 'listOnline'

    def __init__(self, socketio, registry: PresenceRegistry, router: RoutingEngine, service: MessagingService):
        """Initialize chat handler.

        Args:
            socketio: Flask-SocketIO instance
            registry: presence directory shared with the router
            router: routing engine used for direct replies
            service: message lifecycle manager
        """
        self.socketio = socketio
        self.registry = registry
        self.router = router
        self.service = service
        self._lock = threading.Lock()
        self._connection_locks: Dict[str, threading.Lock] = {}
        self._identified: set = set()

    def register_handlers(self):
        """Register all chat WebSocket event handlers."""

        # =====================================================================
        # Identity Events
        # =====================================================================

        @self.socketio.on(self.EVENT_IDENTIFY)
        def handle_identify(data=None):
            """Bind this connection to an identity.

            Data:
                identityId: str
                role: user | sub_admin | admin
                displayName: str
                email: str (optional)

            Response Events:
                - identified (to caller) with the presence snapshot
                - presenceChanged (to every connection allowed to see the identity)
            """
            return self._dispatch(self.EVENT_IDENTIFY, self._identify, data)

        # =====================================================================
        # Message Events
        # =====================================================================

        @self.socketio.on(self.EVENT_SEND)
        def handle_send(data=None):
            """Send a message.

            Data:
                receiverId: str
                body: str (optional when an attachment or file is given)
                attachment: {url, name, size, kind} (optional)
                file: {data: bytes, name, mimeType} (optional)
                receiverRole: str (optional, for receivers not yet seen)
                tempId: str (optional, echoed back on errors)

            Response Events:
                - messageSent (to sender) with deliveryStatus
                - messageReceived (to receiver, when reachable)
                - error (on failure)
            """
            return self._dispatch(self.EVENT_SEND, self._send, data)

        @self.socketio.on(self.EVENT_FETCH_HISTORY)
        def handle_fetch_history(data=None):
            """Load stored messages of a conversation (conversationId or otherUserId)."""
            return self._dispatch(self.EVENT_FETCH_HISTORY, self._fetch_history, data)

        @self.socketio.on(self.EVENT_TYPING)
        def handle_typing(data=None):
            return self._dispatch(self.EVENT_TYPING, self._typing, data)

        @self.socketio.on(self.EVENT_MARK_READ)
        def handle_mark_read(data=None):
            """Mark every message addressed to the caller in a conversation as read."""
            return self._dispatch(self.EVENT_MARK_READ, self._mark_read, data)

        # =====================================================================
        # Presence Events
        # =====================================================================

        @self.socketio.on(self.EVENT_LIST_ONLINE)
        def handle_list_online(data=None):
            return self._dispatch(self.EVENT_LIST_ONLINE, self._list_online, data)

    # =========================================================================
    # Connection lifecycle (called by the hub)
    # =========================================================================

    def on_disconnect(self, socket_id: str) -> Optional[PresenceRecord]:
        with self._connection_lock(socket_id):
            record = self.registry.unregister(socket_id)
        with self._lock:
            self._connection_locks.pop(socket_id, None)
            self._identified.discard(socket_id)
        return record

    # =========================================================================
    # Event implementations
    # =========================================================================

    def _identify(self, socket_id: str, data: Dict[str, Any]):
        identity = Identity.from_payload(data)
        current = self.registry.identity_for(socket_id)
        if current is not None and current.identity_id != identity.identity_id:
            # Re-identifying as someone else ends the previous binding first
            self.registry.unregister(socket_id)
        record = self.registry.register(identity, socket_id)
        with self._lock:
            self._identified.add(socket_id)
        self.router.emit_to_handle(socket_id, RoutingEngine.IDENTIFIED, record.to_dict())
        return {'success': True, 'identityId': record.identity_id}

    def _send(self, socket_id: str, data: Dict[str, Any]):
        sender = self._require_sender(socket_id)
        draft = MessageDraft.from_payload(data)
        message = self.service.send(sender, draft, sender_handle=socket_id)
        return {'success': True, 'messageId': message.message_id, 'delivered': message.delivered}

    def _fetch_history(self, socket_id: str, data: Dict[str, Any]):
        viewer = self._require_sender(socket_id)
        conversation_id = self._conversation_from(viewer, data)
        messages = self.service.fetch_history(
            conversation_id,
            limit=data.get('limit'),
            before=data.get('before'),
            viewer_id=viewer.identity_id
        )
        self.router.emit_to_handle(socket_id, RoutingEngine.HISTORY_LOADED, {
            'conversationId': conversation_id,
            'messages': [m.to_dict() for m in messages]
        })
        return {'success': True, 'count': len(messages)}

    def _typing(self, socket_id: str, data: Dict[str, Any]):
        sender = self._require_sender(socket_id)
        receiver_id = data.get('receiverId') or data.get('receiver_id')
        if not isinstance(receiver_id, str):
            raise InvalidPayload('receiverId is required')
        relayed = self.service.typing(sender, receiver_id, parse_bool(data.get('isTyping'), default=True))
        return {'success': True, 'relayed': relayed}

    def _mark_read(self, socket_id: str, data: Dict[str, Any]):
        reader = self._require_sender(socket_id)
        conversation_id = self._conversation_from(reader, data)
        count = self.service.mark_read(conversation_id, reader.identity_id)
        return {'success': True, 'conversationId': conversation_id, 'count': count}

    def _list_online(self, socket_id: str, data: Dict[str, Any]):
        viewer = self._require_sender(socket_id)
        records = self.service.list_online(
            viewer.role, viewer.identity_id, online_only=parse_bool(data.get('onlineOnly'), default=True)
        )
        users = [r.to_dict() for r in records]
        self.router.emit_to_handle(socket_id, RoutingEngine.ONLINE_USERS, {'users': users})
        return {'success': True, 'count': len(users)}

    # =========================================================================
    # Helpers
    # =========================================================================

    def _dispatch(self, event: str, handler, data):
        socket_id = request.sid
        if data is None:
            data = {}
        with self._connection_lock(socket_id):
            try:
                if not isinstance(data, dict):
                    raise InvalidPayload(f'{event} payload must be an object')
                return handler(socket_id, data)
            except StaleConnection as e:
                logger.debug(f"WS {event} from superseded sid={socket_id} dropped: {e}")
                return None
            except RelayError as e:
                logger.info(f"WS {event} from sid={socket_id} failed: {e.code} {e.message}")
                payload = {**e.to_dict(), 'event': event}
                if isinstance(data, dict) and data.get('tempId'):
                    payload['tempId'] = data.get('tempId')
                self.router.emit_to_handle(socket_id, RoutingEngine.ERROR, payload)
                return {'success': False, 'code': e.code, 'error': e.message}
            except Exception:
                logger.exception(f"WS {event} from sid={socket_id} crashed")
                self.router.emit_to_handle(socket_id, RoutingEngine.ERROR, {
                    'code': 'INTERNAL_ERROR',
                    'message': 'Internal server error',
                    'retryable': True,
                    'event': event
                })
                return {'success': False, 'code': 'INTERNAL_ERROR'}

    def _require_sender(self, socket_id: str) -> PresenceRecord:
        record = self.registry.identity_for(socket_id)
        if record is not None:
            return record
        with self._lock:
            was_identified = socket_id in self._identified
        if was_identified:
            raise StaleConnection(f'connection {socket_id} was superseded')
        raise UnknownIdentity('identify before sending events')

    @staticmethod
    def _conversation_from(viewer: PresenceRecord, data: Dict[str, Any]) -> str:
        conversation_id = data.get('conversationId')
        if conversation_id is not None and conversation_id != '':
            if not isinstance(conversation_id, str):
                raise InvalidPayload('conversationId must be a string')
            return conversation_id
        other_id = data.get('otherUserId') or data.get('receiverId')
        if not other_id or not isinstance(other_id, str):
            raise InvalidPayload('conversationId or otherUserId is required')
        return resolve_conversation_id(viewer.identity_id, other_id)

    def _connection_lock(self, socket_id: str) -> threading.Lock:
        with self._lock:
            lock = self._connection_locks.get(socket_id)
            if lock is None:
                lock = threading.Lock()
                self._connection_locks[socket_id] = lock
            return lock


def init_chat_handler(socketio, registry, router, service) -> ChatHandler:
    """Initialize and register chat handler."""
    handler = ChatHandler(socketio, registry, router, service)
    handler.register_handlers()
    logger.debug("WS chat handler registered")
    return handler
