"""Route decorators for common patterns like error handling and payload checks.

This module provides reusable decorators to reduce boilerplate in route handlers.
"""
import functools
import logging
from typing import Callable

from flask import request

from relay_server.exception import (
    RelayError, InvalidPayload, PolicyViolation, UnknownIdentity, UploadFailed, PersistenceFailure
)
from relay_server.utils.helpers import respond_error

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidPayload: 400,
    PolicyViolation: 403,
    UnknownIdentity: 404,
    UploadFailed: 502,
    PersistenceFailure: 503,
}


def status_for(error: RelayError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 400


def handle_errors(func: Callable) -> Callable:
    """Decorator to translate relay errors into JSON error responses.

    Catches:
    - InvalidPayload -> 400
    - PolicyViolation -> 403
    - UnknownIdentity -> 404
    - UploadFailed -> 502
    - PersistenceFailure -> 503
    - Other exceptions -> 500

    Usage:
        @chat_bp.route('/example')
        @handle_errors
        def example_route():
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except RelayError as e:
            status = status_for(e)
            if status >= 500:
                logger.error(f"{func.__name__} failed: {e}")
            else:
                logger.warning(f"{func.__name__} rejected: {e}")
            return respond_error(e.message, status=status, code=e.code)
        except Exception:
            logger.exception(f"Unexpected error in {func.__name__}")
            return respond_error('Server error', status=500, code='INTERNAL_ERROR')
    return wrapper


def validate_json(*required_fields: str) -> Callable:
    """Decorator to validate that required JSON fields are present.

    Usage:
        @chat_bp.route('/create', methods=['POST'])
        @validate_json('userId', 'userRole')
        def create_item():
            data = request.get_json()
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            data = request.get_json(silent=True)

            if not data:
                return respond_error('Request body must be JSON', status=400, code=InvalidPayload.code)

            missing = [f for f in required_fields if f not in data or data[f] is None]
            if missing:
                return respond_error(f'Missing required fields: {", ".join(missing)}', status=400,
                                     code=InvalidPayload.code)

            return func(*args, **kwargs)
        return wrapper
    return decorator
