"""WebSocket module for real-time communication.

This module provides:
- Centralized WebSocket Hub (relay_server.websocket.hub)
- Routing engine for presence, message and receipt events
- Chat event handlers
"""

from relay_server.websocket.event_emitter import RoutingEngine

__all__ = ['RoutingEngine']
