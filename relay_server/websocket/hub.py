"""Centralized WebSocket Hub.

Wires the presence registry, routing engine, message lifecycle manager and
chat handlers onto one Socket.IO server. The hub is stored on the Flask app
(``app.extensions['relay_hub']``) so REST routes share the same registry
and service as the socket handlers.
"""
import logging
from typing import Optional

from flask import Flask, current_app, request
from flask_socketio import SocketIO

from config import config
from relay_server.messaging.service import MessagingService
from relay_server.presence.registry import PresenceRegistry
from relay_server.websocket.event_emitter import RoutingEngine
from relay_server.websocket.handlers.chat_handler import init_chat_handler

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'relay_hub'


class WebSocketHub:
    """Composition root for the realtime relay."""

    def __init__(self, socketio: SocketIO = None):
        self.socketio = socketio
        self.registry: Optional[PresenceRegistry] = None
        self.router: Optional[RoutingEngine] = None
        self.service: Optional[MessagingService] = None
        self.storage = None
        self._chat_handler = None
        self._initialized = False

    def init_app(self, app: Flask, socketio: SocketIO, repositories, storage=None):
        """Initialize the WebSocket hub.

        Args:
            app: Flask application
            socketio: Flask-SocketIO instance bound to ``app``
            repositories: object exposing ``chat_message`` and ``user_presence``
            storage: object storage service for attachments (optional)
        """
        logger.debug(f"WS_HUB: init app={app.name}, mode={getattr(socketio, 'async_mode', '?')}")

        self.socketio = socketio
        self.app = app
        self.storage = storage

        self.registry = PresenceRegistry(repositories.user_presence)
        self.router = RoutingEngine(socketio, self.registry)
        self.registry.add_listener(self.router.broadcast_presence)
        self.service = MessagingService(
            repositories.chat_message,
            self.registry,
            self.router,
            storage=storage,
            history_default_limit=config.HISTORY_DEFAULT_LIMIT,
            history_max_limit=config.HISTORY_MAX_LIMIT
        )

        self._register_handlers()
        self._chat_handler = init_chat_handler(socketio, self.registry, self.router, self.service)

        app.extensions[EXTENSION_KEY] = self
        self._initialized = True
        logger.debug("WS_HUB: initialized")

    def load_presence(self) -> int:
        """Hydrate the presence directory from the store (all offline)."""
        return self.registry.load()

    def _register_handlers(self):
        """Register connection lifecycle handlers."""

        @self.socketio.on_error_default
        def default_error_handler(e):
            logger.error(f"WS error: {e}")

        # =====================================================================
        # Connection Events
        # =====================================================================

        @self.socketio.on('connect')
        def handle_connect(auth=None):
            """Accept the connection. It stays anonymous until it sends identify."""
            logger.debug(f"WS connect: sid={request.sid}, ip={request.remote_addr}")
            return True

        @self.socketio.on('disconnect')
        def handle_disconnect(*args):
            socket_id = request.sid
            record = self._chat_handler.on_disconnect(socket_id)
            if record is not None:
                logger.debug(f"WS offline: identity={record.identity_id}, sid={socket_id}")
            else:
                logger.debug(f"WS disconnect: sid={socket_id} (no live identity)")


def init_websocket_hub(app: Flask, socketio: SocketIO, repositories, storage=None) -> WebSocketHub:
    """Create a hub, attach it to ``app`` and register every event handler."""
    hub = WebSocketHub(socketio)
    hub.init_app(app, socketio, repositories, storage=storage)
    return hub


def get_websocket_hub(app: Optional[Flask] = None) -> WebSocketHub:
    """Return the hub attached to ``app`` (or the current app)."""
    app = app or current_app
    hub = app.extensions.get(EXTENSION_KEY)
    if hub is None:
        raise RuntimeError('WebSocket hub is not initialized for this app')
    return hub
