"""Role constants and the visibility policy between roles."""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class Role(str, Enum):
    """Participant roles in the support hierarchy."""
    USER = "user"
    SUB_ADMIN = "sub_admin"
    ADMIN = "admin"

    @classmethod
    def all_roles(cls) -> List[str]:
        """Get all role values."""
        return [r.value for r in cls]

    @classmethod
    def parse(cls, value) -> Optional['Role']:
        """Return the Role for a raw value, or None when it is not a known role."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# viewer role -> roles the viewer may see
VISIBLE_ROLES: Dict[Role, FrozenSet[Role]] = {
    Role.ADMIN: frozenset({Role.USER, Role.SUB_ADMIN, Role.ADMIN}),
    Role.SUB_ADMIN: frozenset({Role.USER}),
    Role.USER: frozenset({Role.ADMIN, Role.SUB_ADMIN}),
}


def visible_roles(viewer_role) -> FrozenSet[Role]:
    """Roles a viewer may observe in listings and presence broadcasts."""
    role = Role.parse(viewer_role)
    if role is None:
        return frozenset()
    return VISIBLE_ROLES[role]


def can_view(viewer_role, candidate_role) -> bool:
    """Whether a viewer may observe a candidate.

    admin sees everyone, sub_admin sees only users, users see only staff.
    """
    candidate = Role.parse(candidate_role)
    if candidate is None:
        return False
    return candidate in visible_roles(viewer_role)


def can_address(sender_role, receiver_role) -> bool:
    """Whether a sender may message a receiver.

    Addressing is symmetric: if either party may see the other, a
    conversation between them is allowed in both directions. Two users can
    never address each other, nor can two sub_admins.
    """
    return can_view(sender_role, receiver_role) or can_view(receiver_role, sender_role)
