import hashlib

from bson import ObjectId


def generate_message_id() -> str:
    """Return a new server-assigned message id.

    ObjectIds generated by one process increase monotonically, so sorting
    on ``_id`` reproduces creation order within a conversation.
    """
    return str(ObjectId())


def resolve_conversation_id(identity_a: str, identity_b: str) -> str:
    """Derive the conversation key shared by two participants.

    The pair is sorted first, so ``resolve_conversation_id(a, b)`` equals
    ``resolve_conversation_id(b, a)``. The lower id is length-prefixed
    before hashing, which keeps pairs like ("a:b", "c") and ("a", "b:c")
    apart.
    """
    if not identity_a or not identity_b:
        raise ValueError('both participant identities are required')
    low, high = sorted((str(identity_a), str(identity_b)))
    digest = hashlib.sha256(f'{len(low)}:{low}{high}'.encode('utf-8')).hexdigest()
    return f'dm_{digest[:32]}'
