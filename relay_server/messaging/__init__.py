"""Messaging module for the support relay.

This module provides:
- Message, presence and attachment models
- The message lifecycle manager (relay_server.messaging.service)
- Symmetric conversation ids for participant pairs
"""

from relay_server.messaging.models import (
    Identity, PresenceRecord, Attachment, FileUpload, MessageDraft, Message,
    DeliveryOutcome, AttachmentKind
)

__all__ = [
    'Identity', 'PresenceRecord', 'Attachment', 'FileUpload', 'MessageDraft', 'Message',
    'DeliveryOutcome', 'AttachmentKind'
]
