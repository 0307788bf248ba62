import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from relay_server.exception import PersistenceFailure

logger = logging.getLogger(__name__)


class BaseRepository(ABC):
    """Persistence gateway over a single MongoDB collection.

    Driver errors never escape a repository: they are logged and re-raised
    as PersistenceFailure so callers can abort without partial routing.
    """

    def __init__(self, db, collection_name):
        self.db = db
        self.collection_name = collection_name
        self.collection = db[collection_name]

    @contextmanager
    def _guard(self, operation):
        try:
            yield
        except PyMongoError as e:
            logger.error(f"{self.collection_name}.{operation} failed: {e}")
            raise PersistenceFailure(f'{operation} on {self.collection_name} failed') from e

    def insert(self, record):
        """Insert a new document and return it with its _id."""
        with self._guard('insert'):
            result = self.collection.insert_one(record)
        record['_id'] = result.inserted_id
        return record

    def find(self, query=None, sort=None, limit=0, skip=0):
        """Find documents matching the query."""
        with self._guard('find'):
            cursor = self.collection.find(query or {})
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

    def update_many(self, query, patch):
        """Set the patch fields on every matching document, return the modified count."""
        with self._guard('update_many'):
            result = self.collection.update_many(query, {'$set': patch})
        return result.modified_count

    def update_one(self, query, patch, upsert=False):
        """Set the patch fields on one document and return it after the update."""
        with self._guard('update_one'):
            return self.collection.find_one_and_update(
                query, {'$set': patch}, upsert=upsert, return_document=ReturnDocument.AFTER
            )

    def count(self, query=None):
        """Count documents matching the query."""
        with self._guard('count'):
            return self.collection.count_documents(query or {})

    @abstractmethod
    def ensure_indexes(self):
        """Create the indexes this collection's query paths rely on (idempotent)."""
        pass
