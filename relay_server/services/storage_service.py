"""Object storage gateway for chat attachments (Cloudinary).

Attachments are uploaded before a message is persisted; a failed upload
aborts the send and no message is created.
"""
import base64
import logging
import os
from typing import Any, Dict, Optional

import cloudinary
import cloudinary.api
import cloudinary.uploader

from config import config
from relay_server.exception import InvalidPayload, UploadFailed
from relay_server.messaging.models import Attachment, AttachmentKind, FileUpload

logger = logging.getLogger(__name__)

# Mime types whose subtype does not spell out the extension
_EXTRA_MIME_TYPES = {'video/quicktime', 'video/x-msvideo', 'application/msword'}


def classify_attachment(mime_type: Optional[str], file_name: Optional[str] = None) -> AttachmentKind:
    """Map a mime type (falling back to the extension) onto an attachment kind."""
    mime = (mime_type or '').lower()
    ext = os.path.splitext(file_name or '')[1].lower().lstrip('.')
    if mime.startswith('image/'):
        return AttachmentKind.IMAGE
    if mime.startswith('video/'):
        return AttachmentKind.VIDEO
    if mime == 'application/pdf' or ext == 'pdf':
        return AttachmentKind.PDF
    if 'msword' in mime or 'wordprocessingml' in mime or ext in ('doc', 'docx'):
        return AttachmentKind.WORD
    return AttachmentKind.OTHER


class ObjectStorageService:
    """Uploads byte buffers to Cloudinary and returns their public URL."""

    def __init__(self, folder: Optional[str] = None, max_bytes: Optional[int] = None, allowed_extensions=None):
        self.folder = folder or config.UPLOAD_FOLDER
        self.max_bytes = max_bytes or config.UPLOAD_MAX_BYTES
        self.allowed_extensions = [e.lower() for e in (allowed_extensions or config.UPLOAD_ALLOWED_EXTENSIONS)]

    @staticmethod
    def configure_from_config():
        """Apply Cloudinary credentials from the application config."""
        cloudinary.config(
            cloud_name=config.CLOUDINARY_CLOUD_NAME,
            api_key=config.CLOUDINARY_API_KEY,
            api_secret=config.CLOUDINARY_API_SECRET,
            secure=True
        )
        logger.info(f"Cloudinary configured (cloud={config.CLOUDINARY_CLOUD_NAME})")

    def validate(self, file_name: str, mime_type: str, size: int):
        """Reject files that are too large or of a type chat does not accept."""
        if size <= 0:
            raise InvalidPayload('file is empty')
        if size > self.max_bytes:
            raise InvalidPayload(f'file exceeds the {self.max_bytes} byte limit')
        ext = os.path.splitext(file_name or '')[1].lower().lstrip('.')
        mime = (mime_type or '').lower()
        mime_ok = mime in _EXTRA_MIME_TYPES or any(allowed in mime for allowed in self.allowed_extensions)
        if ext not in self.allowed_extensions or not mime_ok:
            raise InvalidPayload('only image, video, PDF and Word document files are allowed')

    def upload(self, data: bytes, mime_type: str, folder_hint: Optional[str] = None) -> Dict[str, Any]:
        """Upload raw bytes and return ``{'url', 'resourceKind'}``.

        Raises UploadFailed when the provider call fails for any reason.
        """
        data_uri = f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
        try:
            result = cloudinary.uploader.upload(
                data_uri,
                folder=folder_hint or self.folder,
                resource_type='auto'
            )
        except Exception as e:
            logger.error(f"Upload to object storage failed: {e}")
            raise UploadFailed('attachment upload failed') from e

        url = result.get('secure_url') or result.get('url')
        if not url:
            raise UploadFailed('object storage returned no URL')
        return {'url': url, 'resourceKind': result.get('resource_type')}

    def store_file(self, file: FileUpload, folder_hint: Optional[str] = None) -> Attachment:
        """Validate and upload a file, returning the attachment to store on the message."""
        self.validate(file.name, file.mime_type, file.size)
        uploaded = self.upload(file.data, file.mime_type, folder_hint)
        logger.info(f"Uploaded {file.name} ({file.size} bytes) as {uploaded.get('resourceKind')}")
        return Attachment(
            url=uploaded['url'],
            name=file.name,
            size=file.size,
            kind=classify_attachment(file.mime_type, file.name),
            mime_type=file.mime_type
        )

    def ping(self) -> Dict[str, Any]:
        """Check provider connectivity. Raises UploadFailed when unreachable."""
        try:
            return dict(cloudinary.api.ping())
        except Exception as e:
            logger.error(f"Object storage ping failed: {e}")
            raise UploadFailed('object storage unreachable') from e
