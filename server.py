import argparse
import logging

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

from config import config
from relay_server.repository.mongo_helper import MongoRepositorySingleton, wait_for_mongo
from relay_server.routes.chat import chat_bp
from relay_server.routes.public import public_bp
from relay_server.services.storage_service import ObjectStorageService
from relay_server.websocket.hub import init_websocket_hub, get_websocket_hub

logger = logging.getLogger(__name__)

# Multipart overhead allowed on top of the attachment size limit
UPLOAD_ENVELOPE_BYTES = 1024 * 1024


def configure_logging():
    """Configure root logging from the LOG_* settings."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format=config.LOG_FORMAT,
        datefmt=config.LOG_DATE_FORMAT
    )


def create_socketio(app: Flask) -> SocketIO:
    """Bind a Socket.IO server to ``app``; each event runs on its own thread."""
    return SocketIO(
        app,
        async_mode='threading',
        cors_allowed_origins='*' if config.CORS_ORIGINS == '*' else config.CORS_ORIGINS_LIST,
        max_http_buffer_size=config.UPLOAD_MAX_BYTES + UPLOAD_ENVELOPE_BYTES
    )


def create_app(repositories=None, storage=None) -> Flask:
    """Application factory used by server.py and tests.

    Builds the Flask app, its Socket.IO server (``app.extensions['socketio']``)
    and the relay hub (``app.extensions['relay_hub']``). Nothing here talks
    to MongoDB; the repositories only connect on first use.
    """
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = config.UPLOAD_MAX_BYTES + UPLOAD_ENVELOPE_BYTES
    CORS(app, origins=config.CORS_ORIGINS_LIST)

    socketio = create_socketio(app)

    if repositories is None:
        repositories = MongoRepositorySingleton.get_instance()
    if storage is None:
        ObjectStorageService.configure_from_config()
        storage = ObjectStorageService()

    init_websocket_hub(app, socketio, repositories, storage=storage)

    app.register_blueprint(public_bp)
    app.register_blueprint(chat_bp)
    return app


def parse_args():
    """Parse simple CLI arguments for running the server.

    Supports overriding the port and skipping the blocking MongoDB
    readiness wait in environments where the database is managed separately.
    """
    parser = argparse.ArgumentParser(description='Run the support chat relay server')
    parser.add_argument('--port', type=int, default=config.PORT, help=f'TCP port to bind (default: {config.PORT} or PORT env)')
    parser.add_argument('--skip-mongo-wait', action='store_true', help='Do not block on MongoDB before serving')
    return parser.parse_args()


def main():
    args = parse_args()
    configure_logging()
    logger.debug(f"Config ({config.CURRENT_ENV}): {config.to_dict()}")

    config.validate_required()

    if not args.skip_mongo_wait and not wait_for_mongo():
        raise SystemExit('MongoDB is unreachable, giving up')

    repositories = MongoRepositorySingleton.get_instance()
    repositories.ensure_indexes()

    app = create_app(repositories=repositories)
    hub = get_websocket_hub(app)
    hub.load_presence()

    logger.info(f'Starting {config.APP_NAME} with Socket.IO on port {args.port}')
    socketio = app.extensions['socketio']
    socketio.run(app, host='0.0.0.0', port=args.port, debug=config.DEBUG, allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()
