"""User presence repository.

Durable copy of presence records and the identity profiles folded into
them. The in-memory PresenceRegistry is authoritative for reachability;
this collection only survives restarts and backs offline listings.
"""
import logging
from typing import Optional, List

from pymongo import ASCENDING

from relay_server.messaging.models import PresenceRecord
from relay_server.repository.base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserPresenceRepository(BaseRepository):
    """Repository for user presence status."""

    def __init__(self, db, collection_name="user_presence"):
        super().__init__(db=db, collection_name=collection_name)
        logger.info(f"Initializing {self.collection_name} collection")

    def save_record(self, record: PresenceRecord) -> PresenceRecord:
        """Upsert the record keyed by identity id."""
        doc = record.to_db_doc()
        doc.pop('_id')
        saved = self.update_one({'_id': record.identity_id}, doc, upsert=True)
        return PresenceRecord.from_doc(saved) if saved else record

    def get_record(self, identity_id: str) -> Optional[PresenceRecord]:
        docs = self.find({'_id': identity_id}, limit=1)
        return PresenceRecord.from_doc(docs[0]) if docs else None

    def list_records(self) -> List[PresenceRecord]:
        return [PresenceRecord.from_doc(d) for d in self.find(sort=[('identity_id', ASCENDING)])]

    def reset_online(self) -> int:
        """Mark every record offline. Used at boot, when no connection can be live."""
        return self.update_many({'online': True}, {'online': False, 'socket_id': None})

    def ensure_indexes(self):
        with self._guard('create_index'):
            self.collection.create_index([('role', ASCENDING), ('online', ASCENDING)], name='user_presence_role_online')
            self.collection.create_index(
                [('email', ASCENDING)], name='user_presence_email', unique=True,
                partialFilterExpression={'email': {'$type': 'string'}}
            )
