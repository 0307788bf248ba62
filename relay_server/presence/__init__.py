from relay_server.presence.registry import PresenceRegistry

__all__ = ['PresenceRegistry']
