"""Messaging data models for the support relay.

Collections:
- chat_messages: Individual messages between two participants
- user_presence: One presence record (and cached profile) per identity
"""
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from bson import ObjectId

from relay_server.exception import InvalidPayload
from relay_server.security.roles import Role
from relay_server.utils.time_utils import utc_now, to_iso


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"              # Pushed to the receiver's live connection
    QUEUED_FOR_PULL = "queued-for-pull"  # Receiver offline, fetched later via history


class AttachmentKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    PDF = "pdf"
    WORD = "word"
    OTHER = "other"


def _first(data: Dict[str, Any], *keys, default=None):
    """Return the first non-empty value among alternative payload keys."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != '':
            return value
    return default


class Identity:
    """External participant reference, trusted as supplied by the caller."""

    def __init__(self, identity_id: str, display_name: str, role: Role, email: Optional[str] = None):
        self.identity_id = identity_id
        self.display_name = display_name
        self.role = role
        self.email = email

    @classmethod
    def from_payload(cls, data: Any) -> 'Identity':
        """Build an identity from an inbound event or request body.

        Accepts both the camelCase names of the realtime channel and the
        userId/userName/userRole names older clients send.
        """
        if not isinstance(data, dict):
            raise InvalidPayload('identity payload must be an object')
        identity_id = _first(data, 'id', 'identityId', 'userId')
        if not identity_id or not isinstance(identity_id, str):
            raise InvalidPayload('identity id is required')
        role = Role.parse(_first(data, 'role', 'userRole'))
        if role is None:
            raise InvalidPayload(f"role must be one of {', '.join(Role.all_roles())}")
        display_name = _first(data, 'displayName', 'userName', 'name', default=identity_id)
        return cls(identity_id, str(display_name), role, _first(data, 'email'))


class PresenceRecord:
    """Online/offline status plus the cached profile of one identity."""

    def __init__(
        self,
        identity_id: str,
        display_name: str,
        role: Role,
        online: bool = False,
        last_seen_at: Optional[datetime] = None,
        connection_handle: Optional[str] = None,
        email: Optional[str] = None
    ):
        self.identity_id = identity_id
        self.display_name = display_name
        self.role = role
        self.online = online
        self.last_seen_at = last_seen_at or utc_now()
        # Only set while online
        self.connection_handle = connection_handle
        self.email = email

    @classmethod
    def for_identity(cls, identity: Identity) -> 'PresenceRecord':
        return cls(identity.identity_id, identity.display_name, identity.role, email=identity.email)

    def copy(self) -> 'PresenceRecord':
        return PresenceRecord(
            self.identity_id, self.display_name, self.role, self.online,
            self.last_seen_at, self.connection_handle, self.email
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'identityId': self.identity_id,
            'displayName': self.display_name,
            'role': self.role.value,
            'online': self.online,
            'lastSeenAt': to_iso(self.last_seen_at)
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            '_id': self.identity_id,
            'identity_id': self.identity_id,
            'display_name': self.display_name,
            'role': self.role.value,
            'email': self.email,
            'online': self.online,
            'last_seen_at': self.last_seen_at,
            'socket_id': self.connection_handle
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'PresenceRecord':
        return cls(
            identity_id=doc.get('identity_id') or str(doc.get('_id')),
            display_name=doc.get('display_name') or doc.get('identity_id'),
            role=Role.parse(doc.get('role')) or Role.USER,
            online=bool(doc.get('online', False)),
            last_seen_at=doc.get('last_seen_at'),
            connection_handle=doc.get('socket_id'),
            email=doc.get('email')
        )


class Attachment:
    """File or media stored in the object store and referenced by URL."""

    def __init__(
        self,
        url: str,
        name: Optional[str] = None,
        size: Optional[int] = None,
        kind: AttachmentKind = AttachmentKind.OTHER,
        mime_type: Optional[str] = None
    ):
        self.url = url
        self.name = name
        self.size = size
        self.kind = kind
        self.mime_type = mime_type

    @classmethod
    def from_payload(cls, data: Any) -> Optional['Attachment']:
        if not data:
            return None
        if not isinstance(data, dict):
            raise InvalidPayload('attachment must be an object')
        url = _first(data, 'url', 'fileUrl')
        if not url:
            raise InvalidPayload('attachment url is required')
        try:
            kind = AttachmentKind(_first(data, 'kind', 'fileType', default=AttachmentKind.OTHER.value))
        except ValueError:
            kind = AttachmentKind.OTHER
        size = _first(data, 'size', 'fileSize')
        if size is not None:
            try:
                size = int(size)
            except (TypeError, ValueError):
                raise InvalidPayload('attachment size must be an integer')
        return cls(
            url=url,
            name=_first(data, 'name', 'fileName'),
            size=size,
            kind=kind,
            mime_type=_first(data, 'mimeType')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'name': self.name,
            'size': self.size,
            'kind': self.kind.value,
            'mimeType': self.mime_type
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'name': self.name,
            'size': self.size,
            'kind': self.kind.value,
            'mime_type': self.mime_type
        }

    @classmethod
    def from_doc(cls, doc: Optional[Dict[str, Any]]) -> Optional['Attachment']:
        if not doc:
            return None
        try:
            kind = AttachmentKind(doc.get('kind', AttachmentKind.OTHER.value))
        except ValueError:
            kind = AttachmentKind.OTHER
        return cls(doc.get('url'), doc.get('name'), doc.get('size'), kind, doc.get('mime_type'))


class FileUpload:
    """Raw attachment bytes carried by a send event, uploaded before persisting."""

    def __init__(self, data: bytes, name: str, mime_type: str):
        self.data = data
        self.name = name
        self.mime_type = mime_type

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_payload(cls, data: Any) -> Optional['FileUpload']:
        if not data:
            return None
        if not isinstance(data, dict):
            raise InvalidPayload('file must be an object')
        content = data.get('data')
        if isinstance(content, bytearray):
            content = bytes(content)
        if not isinstance(content, bytes) or not content:
            raise InvalidPayload('file data must be non-empty binary')
        name = _first(data, 'name', 'fileName')
        mime_type = _first(data, 'mimeType', 'type')
        if not name or not mime_type:
            raise InvalidPayload('file name and mimeType are required')
        return cls(content, name, mime_type)


class MessageDraft:
    """A send request before validation, upload and persistence."""

    def __init__(
        self,
        receiver_id: str,
        body: Optional[str] = None,
        attachment: Optional[Attachment] = None,
        file: Optional[FileUpload] = None,
        receiver_role: Optional[Role] = None,
        receiver_name: Optional[str] = None
    ):
        self.receiver_id = receiver_id
        self.body = body
        self.attachment = attachment
        self.file = file
        self.receiver_role = receiver_role
        self.receiver_name = receiver_name

    @classmethod
    def from_payload(cls, data: Any) -> 'MessageDraft':
        if not isinstance(data, dict):
            raise InvalidPayload('send payload must be an object')
        receiver_id = _first(data, 'receiverId', 'receiver_id')
        if not receiver_id or not isinstance(receiver_id, str):
            raise InvalidPayload('receiverId is required')
        body = _first(data, 'body', 'message', 'content')
        if body is not None and not isinstance(body, str):
            raise InvalidPayload('body must be a string')
        attachment = Attachment.from_payload(data.get('attachment'))
        file = FileUpload.from_payload(data.get('file'))
        if not (body and body.strip()) and attachment is None and file is None:
            raise InvalidPayload('body or attachment is required')
        raw_role = _first(data, 'receiverRole')
        receiver_role = Role.parse(raw_role)
        if raw_role is not None and receiver_role is None:
            raise InvalidPayload(f"receiverRole must be one of {', '.join(Role.all_roles())}")
        return cls(
            receiver_id=receiver_id,
            body=body,
            attachment=attachment,
            file=file,
            receiver_role=receiver_role,
            receiver_name=_first(data, 'receiverName')
        )


class Message:
    """Message document structure.

    Immutable once persisted except for the delivered and read flags, which
    only ever move from False to True.
    """

    def __init__(
        self,
        message_id: str,
        conversation_id: str,
        sender_id: str,
        sender_role: Role,
        receiver_id: str,
        receiver_role: Role,
        body: Optional[str] = None,
        attachment: Optional[Attachment] = None,
        sender_name: Optional[str] = None,
        receiver_name: Optional[str] = None,
        created_at: Optional[datetime] = None,
        delivered: bool = False,
        read: bool = False
    ):
        self.message_id = message_id
        self.conversation_id = conversation_id
        self.sender_id = sender_id
        self.sender_role = sender_role
        self.receiver_id = receiver_id
        self.receiver_role = receiver_role
        self.body = body
        self.attachment = attachment
        # Denormalized display names for faster reads
        self.sender_name = sender_name
        self.receiver_name = receiver_name
        self.created_at = created_at or utc_now()
        self.delivered = delivered
        self.read = read

    def to_dict(self) -> Dict[str, Any]:
        return {
            'messageId': self.message_id,
            'conversationId': self.conversation_id,
            'senderId': self.sender_id,
            'senderName': self.sender_name,
            'senderRole': self.sender_role.value,
            'receiverId': self.receiver_id,
            'receiverName': self.receiver_name,
            'receiverRole': self.receiver_role.value,
            'body': self.body,
            'attachment': self.attachment.to_dict() if self.attachment else None,
            'createdAt': to_iso(self.created_at),
            'delivered': self.delivered,
            'read': self.read
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            '_id': ObjectId(self.message_id),
            'conversation_id': self.conversation_id,
            'sender_id': self.sender_id,
            'sender_name': self.sender_name,
            'sender_role': self.sender_role.value,
            'receiver_id': self.receiver_id,
            'receiver_name': self.receiver_name,
            'receiver_role': self.receiver_role.value,
            'body': self.body,
            'attachment': self.attachment.to_db_doc() if self.attachment else None,
            'created_at': self.created_at,
            'delivered': self.delivered,
            'read': self.read
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Message':
        return cls(
            message_id=str(doc.get('_id')),
            conversation_id=doc.get('conversation_id'),
            sender_id=doc.get('sender_id'),
            sender_role=Role.parse(doc.get('sender_role')) or Role.USER,
            receiver_id=doc.get('receiver_id'),
            receiver_role=Role.parse(doc.get('receiver_role')) or Role.USER,
            body=doc.get('body'),
            attachment=Attachment.from_doc(doc.get('attachment')),
            sender_name=doc.get('sender_name'),
            receiver_name=doc.get('receiver_name'),
            created_at=doc.get('created_at'),
            delivered=bool(doc.get('delivered', False)),
            read=bool(doc.get('read', False))
        )
