from flask import Blueprint

from config import config
from relay_server.exception import UploadFailed
from relay_server.utils.decorators import handle_errors
from relay_server.utils.helpers import respond_error, respond_success
from relay_server.websocket.hub import get_websocket_hub

public_bp = Blueprint('public', __name__)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@public_bp.route('/', methods=['GET'])
def index():
    """Liveness endpoint: the relay process is up and serving."""
    return respond_success({
        'status': 'ok',
        'app': config.APP_NAME,
        'version': config.APP_VERSION,
        'message': 'Support relay is running'
    })


@public_bp.route('/health/storage', methods=['GET'])
@handle_errors
def storage_health():
    """Check object storage connectivity without exposing credentials."""
    storage = get_websocket_hub().storage
    if storage is None:
        return respond_error({'status': 'degraded', 'reason': 'object storage not configured'}, status=503)
    try:
        storage.ping()
    except UploadFailed:
        return respond_error({'status': 'degraded', 'storage': 'unreachable'}, status=503)
    return respond_success({'status': 'ok', 'storage': 'reachable'})
