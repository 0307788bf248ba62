"""In-memory presence directory.

The registry maps each identity to its presence record and, while the
identity is online, to exactly one live connection handle (a Socket.IO
session id). It is the single source of truth for reachability: routing
reads it and never asks the database.

Locking:
- ``_lock`` guards the two directory maps and is held only for in-memory
  reads and writes.
- a per-identity lock serializes register/unregister/update_status for the
  same identity end to end (mutate, persist, notify), so the presence
  events of one identity are observed in the order their calls completed.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from relay_server.exception import PersistenceFailure
from relay_server.messaging.models import Identity, PresenceRecord
from relay_server.security.roles import Role, can_view
from relay_server.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

PresenceListener = Callable[[PresenceRecord], None]


class PresenceRegistry:
    """Lock-guarded identity -> connection directory."""

    def __init__(self, repository=None):
        self.repository = repository
        self._lock = threading.RLock()
        self._records: Dict[str, PresenceRecord] = {}
        self._handles: Dict[str, str] = {}  # live handle -> identity id
        self._identity_locks: Dict[str, threading.Lock] = {}
        self._listeners: List[PresenceListener] = []

    # =========================================================================
    # Wiring
    # =========================================================================

    def add_listener(self, listener: PresenceListener):
        """Call ``listener(record)`` after every presence change."""
        self._listeners.append(listener)

    def load(self) -> int:
        """Hydrate the directory from persisted records, all marked offline.

        Nothing can be connected at boot, so stale online flags left by a
        previous process are reset in the store as well.
        """
        if self.repository is None:
            return 0
        self.repository.reset_online()
        loaded = 0
        with self._lock:
            for record in self.repository.list_records():
                if record.identity_id in self._records:
                    continue
                record.online = False
                record.connection_handle = None
                self._records[record.identity_id] = record
                loaded += 1
        logger.info(f"Presence directory loaded {loaded} identities")
        return loaded

    # =========================================================================
    # Mutations
    # =========================================================================

    def register(self, identity: Identity, connection_handle: str) -> PresenceRecord:
        """Bind the identity to a live connection and mark it online.

        A prior handle for the same identity is orphaned: it stays open but is
        no longer targeted by routing, and its later unregister is a no-op.
        """
        with self._identity_lock(identity.identity_id):
            with self._lock:
                record = self._records.get(identity.identity_id)
                if record is None:
                    record = PresenceRecord.for_identity(identity)
                    self._records[identity.identity_id] = record
                previous = record.connection_handle
                if previous and previous != connection_handle:
                    self._handles.pop(previous, None)
                    logger.info(f"Presence: {identity.identity_id} superseded handle {previous} with {connection_handle}")
                self._apply_profile(record, identity)
                record.online = True
                record.last_seen_at = utc_now()
                record.connection_handle = connection_handle
                self._handles[connection_handle] = identity.identity_id
                snapshot = record.copy()

            self._persist(snapshot)
            logger.info(f"Presence: {identity.identity_id} ({identity.role.value}) online via {connection_handle}")
            self._notify(snapshot)
            return snapshot

    def unregister(self, connection_handle: str) -> Optional[PresenceRecord]:
        """Mark the identity owning this exact handle offline.

        Returns None, without touching any state, when the handle is unknown
        or was already superseded by a newer connection.
        """
        with self._lock:
            identity_id = self._handles.get(connection_handle)
        if identity_id is None:
            logger.debug(f"Presence: ignoring unregister of inactive handle {connection_handle}")
            return None

        with self._identity_lock(identity_id):
            with self._lock:
                record = self._records.get(identity_id)
                if (self._handles.get(connection_handle) != identity_id
                        or record is None or record.connection_handle != connection_handle):
                    logger.debug(f"Presence: handle {connection_handle} superseded before unregister")
                    return None
                del self._handles[connection_handle]
                record.online = False
                record.last_seen_at = utc_now()
                record.connection_handle = None
                snapshot = record.copy()

            self._persist(snapshot)
            logger.info(f"Presence: {identity_id} offline")
            self._notify(snapshot)
            return snapshot

    def update_status(self, identity: Identity, online: bool) -> PresenceRecord:
        """Upsert a profile and its online flag without a live connection.

        A live connection is authoritative: while one is bound, the identity
        stays online and only the cached profile is refreshed.
        """
        with self._identity_lock(identity.identity_id):
            with self._lock:
                record = self._records.get(identity.identity_id)
                if record is None:
                    record = PresenceRecord.for_identity(identity)
                    self._records[identity.identity_id] = record
                self._apply_profile(record, identity)
                changed = False
                if record.connection_handle is None:
                    changed = record.online != bool(online)
                    record.online = bool(online)
                record.last_seen_at = utc_now()
                snapshot = record.copy()

            self._persist(snapshot)
            if changed:
                self._notify(snapshot)
            return snapshot

    # =========================================================================
    # Reads
    # =========================================================================

    def lookup_live(self, identity_id: str) -> Optional[str]:
        """Return the live connection handle for an identity, if any."""
        with self._lock:
            record = self._records.get(identity_id)
            if record is None or not record.online:
                return None
            return record.connection_handle

    def identity_for(self, connection_handle: str) -> Optional[PresenceRecord]:
        """Return the record owning an active handle, None for stale or unknown handles."""
        with self._lock:
            identity_id = self._handles.get(connection_handle)
            if identity_id is None:
                return None
            return self._records[identity_id].copy()

    def get(self, identity_id: str) -> Optional[PresenceRecord]:
        with self._lock:
            record = self._records.get(identity_id)
            return record.copy() if record else None

    def list_visible(self, viewer_role, viewer_id: Optional[str], online_only: bool = True) -> List[PresenceRecord]:
        """Records the viewer may see, excluding the viewer itself."""
        with self._lock:
            records = [
                r.copy() for r in self._records.values()
                if r.identity_id != viewer_id
                and (r.online or not online_only)
                and can_view(viewer_role, r.role)
            ]
        records.sort(key=lambda r: (not r.online, r.display_name.lower(), r.identity_id))
        return records

    def live_connections(self) -> List[Tuple[str, str, Role]]:
        """Snapshot of (handle, identity id, role) for every live connection."""
        with self._lock:
            return [
                (handle, identity_id, self._records[identity_id].role)
                for handle, identity_id in self._handles.items()
            ]

    # =========================================================================
    # Internals
    # =========================================================================

    def _identity_lock(self, identity_id: str) -> threading.Lock:
        with self._lock:
            lock = self._identity_locks.get(identity_id)
            if lock is None:
                lock = threading.Lock()
                self._identity_locks[identity_id] = lock
            return lock

    @staticmethod
    def _apply_profile(record: PresenceRecord, identity: Identity):
        record.display_name = identity.display_name
        record.role = identity.role
        if identity.email:
            record.email = identity.email

    def _persist(self, snapshot: PresenceRecord):
        # Store failures leave the in-memory directory authoritative.
        if self.repository is None:
            return
        try:
            self.repository.save_record(snapshot)
        except PersistenceFailure as e:
            logger.warning(f"Presence: could not persist {snapshot.identity_id}: {e}")

    def _notify(self, snapshot: PresenceRecord):
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"Presence listener failed for {snapshot.identity_id}")
