"""Shared pytest configuration and fixtures."""

import os

# Set environment variables before any imports
os.environ["APP_ENV"] = "development"
os.environ["CHAT_DB_NAME"] = "chat_db_test"
os.environ.pop("MONGO_URI", None)

import mongomock
import pytest

from relay_server.messaging.models import Attachment, Identity
from relay_server.messaging.service import MessagingService
from relay_server.presence.registry import PresenceRegistry
from relay_server.repository.mongo_helper import MongoRepositorySingleton
from relay_server.security.roles import Role
from relay_server.services.storage_service import classify_attachment
from relay_server.websocket.event_emitter import RoutingEngine


class RecordingSocketIO:
    """Stands in for flask_socketio.SocketIO and records every emit."""

    def __init__(self):
        self.emitted = []

    def emit(self, event, data=None, to=None, **kwargs):
        self.emitted.append((event, data, to))

    def events(self, event=None, to=None):
        return [
            (e, d, t) for (e, d, t) in self.emitted
            if (event is None or e == event) and (to is None or t == to)
        ]

    def payloads(self, event, to=None):
        return [d for (_, d, _) in self.events(event, to)]

    def clear(self):
        self.emitted = []


class FakeStorage:
    """Object storage double: records uploads, optionally fails."""

    def __init__(self, fail=False):
        self.fail = fail
        self.stored = []
        self.pinged = 0

    def store_file(self, file, folder_hint=None):
        from relay_server.exception import UploadFailed
        if self.fail:
            raise UploadFailed('attachment upload failed')
        self.stored.append(file)
        return Attachment(
            url=f'https://files.example.test/{file.name}',
            name=file.name,
            size=file.size,
            kind=classify_attachment(file.mime_type, file.name),
            mime_type=file.mime_type
        )

    def ping(self):
        from relay_server.exception import UploadFailed
        self.pinged += 1
        if self.fail:
            raise UploadFailed('object storage unreachable')
        return {'status': 'ok'}


def make_identity(identity_id, role, name=None):
    return Identity(identity_id, name or identity_id.title(), Role(role))


@pytest.fixture(autouse=True, scope="function")
def mongo_db():
    """Fresh in-memory MongoDB for each test function."""
    client = mongomock.MongoClient()
    db = client["chat_db_test"]
    MongoRepositorySingleton.use_db(db)
    yield db
    MongoRepositorySingleton.use_db(None)


@pytest.fixture
def repositories(mongo_db):
    return MongoRepositorySingleton.get_instance()


@pytest.fixture
def recorder():
    return RecordingSocketIO()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def registry(repositories):
    return PresenceRegistry(repositories.user_presence)


@pytest.fixture
def router(recorder, registry):
    engine = RoutingEngine(recorder, registry)
    registry.add_listener(engine.broadcast_presence)
    return engine


@pytest.fixture
def service(repositories, registry, router, storage):
    return MessagingService(repositories.chat_message, registry, router, storage=storage)


@pytest.fixture
def app(repositories, storage):
    from server import create_app
    application = create_app(repositories=repositories, storage=storage)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def socketio(app):
    return app.extensions["socketio"]


@pytest.fixture
def http(app):
    return app.test_client()
