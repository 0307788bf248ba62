"""Chat REST API routes.

These endpoints cover what does not need a live socket:
- POST /upload - store a file in object storage, returns its URL
- GET /api/chats - one page of a pair's history
- GET /api/online-users - identities visible to a role
- POST /api/update-status - upsert a profile and its online flag

Everything realtime (send, typing, read receipts, presence fan-out) goes
through the Socket.IO events in relay_server.websocket.handlers.chat_handler.
"""
import logging

from flask import Blueprint, request

from relay_server.exception import InvalidPayload, UploadFailed
from relay_server.messaging.models import FileUpload, Identity
from relay_server.utils.decorators import handle_errors, validate_json
from relay_server.utils.helpers import parse_bool, respond_success
from relay_server.websocket.hub import get_websocket_hub

logger = logging.getLogger(__name__)

chat_bp = Blueprint('chat', __name__)


# =============================================================================
# Uploads
# =============================================================================

@chat_bp.route('/upload', methods=['POST'])
@handle_errors
def upload_file():
    """Upload a multipart ``file`` field and return its public URL."""
    uploaded = request.files.get('file')
    if uploaded is None or not uploaded.filename:
        raise InvalidPayload('No file uploaded')

    storage = get_websocket_hub().storage
    if storage is None:
        raise UploadFailed('object storage is not configured')

    data = uploaded.read()
    attachment = storage.store_file(FileUpload(data, uploaded.filename, uploaded.mimetype or ''))
    logger.info(f"REST upload stored {attachment.name} at {attachment.url}")
    return respond_success({
        'message': 'File uploaded successfully',
        'fileUrl': attachment.url,
        'fileName': attachment.name,
        'fileType': attachment.kind.value,
        'fileSize': attachment.size,
        'attachment': attachment.to_dict()
    })


# =============================================================================
# History
# =============================================================================

@chat_bp.route('/api/chats', methods=['GET'])
@handle_errors
def get_chats():
    """Paged history between ``userId`` and ``otherUserId``.

    Query params: userId, otherUserId, page (default 1), limit (default 20)
    """
    user_id = request.args.get('userId')
    other_user_id = request.args.get('otherUserId')
    if not user_id or not other_user_id:
        raise InvalidPayload('userId and otherUserId are required')

    service = get_websocket_hub().service
    result = service.history_page(
        user_id,
        other_user_id,
        page=request.args.get('page', 1),
        limit=request.args.get('limit', 20)
    )
    return respond_success(result)


# =============================================================================
# Presence
# =============================================================================

@chat_bp.route('/api/online-users', methods=['GET'])
@handle_errors
def get_online_users():
    """Identities the given role may see.

    Query params: userRole (required), currentUserId, onlineOnly (default true)
    """
    user_role = request.args.get('userRole')
    if not user_role:
        raise InvalidPayload('userRole is required')

    service = get_websocket_hub().service
    records = service.list_online(
        user_role,
        request.args.get('currentUserId'),
        online_only=parse_bool(request.args.get('onlineOnly'), default=True)
    )
    users = [r.to_dict() for r in records]
    return respond_success({'onlineUsers': users, 'count': len(users)})


@chat_bp.route('/api/update-status', methods=['POST'])
@handle_errors
@validate_json('userId', 'userRole')
def update_status():
    """Upsert a profile and its online flag.

    A live socket connection stays authoritative: the identity remains
    online while it is connected, whatever ``isOnline`` says.
    """
    data = request.get_json()
    identity = Identity.from_payload(data)
    online = parse_bool(data.get('isOnline'), default=True)

    registry = get_websocket_hub().registry
    record = registry.update_status(identity, online)
    return respond_success({'message': 'Status updated', 'user': record.to_dict()})
