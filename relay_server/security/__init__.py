from relay_server.security.roles import Role, can_view, can_address, visible_roles

__all__ = ['Role', 'can_view', 'can_address', 'visible_roles']
