import logging
import time

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from config import config

logger = logging.getLogger(__name__)


class MongoRepositorySingleton:
    """Process-wide MongoDB client and the chat repositories built on it."""
    _instance = None
    _client = None
    _db_instance = None

    @classmethod
    def get_client(cls):
        """Create the MongoClient lazily.

        The short server selection timeout makes calls fail fast while the
        database is unreachable instead of blocking connection handlers.
        """
        if cls._client is None:
            logger.info(f"Connecting to MongoDB, DB: {config.CHAT_DB_NAME}")
            cls._client = MongoClient(
                config.MONGO_URI,
                serverSelectionTimeoutMS=config.MONGO_SERVER_SELECTION_TIMEOUT_MS
            )
        return cls._client

    @classmethod
    def get_db(cls):
        if cls._db_instance is None:
            cls._db_instance = cls.get_client()[config.CHAT_DB_NAME]
        return cls._db_instance

    @classmethod
    def use_db(cls, db):
        """Point the singleton at an existing database object (tests, scripts)."""
        cls._db_instance = db
        cls._instance = None

    @classmethod
    def get_instance(cls):
        return cls.__new__(cls)

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._init_repositories()
        return cls._instance

    def _init_repositories(self):
        from relay_server.repository.media.chat_message_repository import ChatMessageRepository
        from relay_server.repository.media.user_presence_repository import UserPresenceRepository

        db = self.get_db()
        self.chat_message = ChatMessageRepository(db)
        self.user_presence = UserPresenceRepository(db)

    def ensure_indexes(self):
        """Create recommended indexes used by query paths (idempotent)."""
        for repo in (self.chat_message, self.user_presence):
            try:
                repo.ensure_indexes()
            except Exception as e:
                logger.exception(f'Error creating indexes on {repo.collection_name}: {e}')
        logger.info('Ensured recommended DB indexes')


def wait_for_mongo(max_attempts=None, initial_delay=None, max_delay=30.0, sleep=time.sleep):
    """Block until MongoDB answers a ping, retrying with exponential backoff.

    Returns True once connected. With ``max_attempts`` of 0 it retries
    forever; otherwise it returns False after the last failed attempt.
    """
    if max_attempts is None:
        max_attempts = config.MONGO_CONNECT_MAX_ATTEMPTS
    delay = initial_delay if initial_delay is not None else config.MONGO_CONNECT_RETRY_SECONDS
    attempt = 0
    while True:
        attempt += 1
        try:
            MongoRepositorySingleton.get_client().admin.command('ping')
            logger.info('MongoDB connected')
            return True
        except PyMongoError as e:
            if max_attempts and attempt >= max_attempts:
                logger.error(f'MongoDB unreachable after {attempt} attempts: {e}')
                return False
            logger.warning(f'MongoDB connect failed (attempt {attempt}), retrying in {delay:.1f}s: {e}')
            sleep(delay)
            delay = min(delay * 2, max_delay)
