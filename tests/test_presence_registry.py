"""Tests for the in-memory presence directory."""

import threading

from conftest import make_identity
from relay_server.exception import PersistenceFailure
from relay_server.presence.registry import PresenceRegistry
from relay_server.security.roles import Role


class TestRegister:
    """Binding identities to live connections."""

    def test_register_marks_online(self, registry):
        record = registry.register(make_identity("u1", "user"), "sid-1")

        assert record.online is True
        assert record.connection_handle == "sid-1"
        assert registry.lookup_live("u1") == "sid-1"
        assert registry.identity_for("sid-1").identity_id == "u1"

    def test_register_persists_record(self, registry, repositories):
        registry.register(make_identity("u1", "user", "Uma"), "sid-1")

        stored = repositories.user_presence.get_record("u1")
        assert stored is not None
        assert stored.online is True
        assert stored.display_name == "Uma"
        assert stored.role is Role.USER

    def test_reconnect_supersedes_previous_handle(self, registry):
        identity = make_identity("u1", "user")
        registry.register(identity, "sid-old")
        registry.register(identity, "sid-new")

        assert registry.lookup_live("u1") == "sid-new"
        assert registry.identity_for("sid-old") is None
        assert registry.identity_for("sid-new").identity_id == "u1"

    def test_reidentify_updates_profile(self, registry):
        registry.register(make_identity("a1", "admin", "Ann"), "sid-1")
        registry.register(make_identity("a1", "admin", "Ann Admin"), "sid-1")

        assert registry.get("a1").display_name == "Ann Admin"

    def test_listeners_receive_snapshots(self, repositories):
        registry = PresenceRegistry(repositories.user_presence)
        seen = []
        registry.add_listener(lambda record: seen.append((record.identity_id, record.online)))

        registry.register(make_identity("u1", "user"), "sid-1")
        registry.unregister("sid-1")

        assert seen == [("u1", True), ("u1", False)]

    def test_failing_listener_does_not_break_register(self, registry):
        def broken(record):
            raise RuntimeError("boom")

        registry.add_listener(broken)
        record = registry.register(make_identity("u1", "user"), "sid-1")

        assert record.online is True


class TestUnregister:
    """Dropping connections."""

    def test_unregister_marks_offline(self, registry, repositories):
        registry.register(make_identity("u1", "user"), "sid-1")

        record = registry.unregister("sid-1")

        assert record.online is False
        assert record.connection_handle is None
        assert registry.lookup_live("u1") is None
        assert repositories.user_presence.get_record("u1").online is False

    def test_stale_handle_is_ignored(self, registry):
        identity = make_identity("u1", "user")
        registry.register(identity, "sid-old")
        registry.register(identity, "sid-new")

        assert registry.unregister("sid-old") is None
        assert registry.lookup_live("u1") == "sid-new"
        assert registry.get("u1").online is True

    def test_unknown_handle_is_ignored(self, registry):
        assert registry.unregister("never-seen") is None

    def test_unregister_keeps_record_for_listings(self, registry):
        registry.register(make_identity("u1", "user"), "sid-1")
        registry.unregister("sid-1")

        offline = registry.list_visible(Role.ADMIN, "a1", online_only=False)
        assert [r.identity_id for r in offline] == ["u1"]
        assert registry.list_visible(Role.ADMIN, "a1") == []

    def test_concurrent_reconnects_leave_one_live_handle(self, registry):
        identity = make_identity("u1", "user")
        handles = [f"sid-{i}" for i in range(20)]
        threads = [threading.Thread(target=registry.register, args=(identity, h)) for h in handles]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        live = registry.lookup_live("u1")
        assert live in handles
        assert [h for h in handles if registry.identity_for(h) is not None] == [live]


class TestUpdateStatus:
    """Profile and flag updates without a socket."""

    def test_update_status_creates_offline_record(self, registry):
        record = registry.update_status(make_identity("a1", "admin"), online=False)

        assert record.online is False
        assert registry.get("a1").role is Role.ADMIN
        assert registry.lookup_live("a1") is None

    def test_live_connection_stays_authoritative(self, registry):
        registry.register(make_identity("a1", "admin"), "sid-1")

        record = registry.update_status(make_identity("a1", "admin", "Renamed"), online=False)

        assert record.online is True
        assert record.display_name == "Renamed"
        assert registry.lookup_live("a1") == "sid-1"

    def test_notifies_only_on_change(self, registry):
        seen = []
        registry.add_listener(lambda record: seen.append(record.online))

        registry.update_status(make_identity("a1", "admin"), online=True)
        registry.update_status(make_identity("a1", "admin"), online=True)
        registry.update_status(make_identity("a1", "admin"), online=False)

        assert seen == [True, False]


class TestListVisible:
    """Role-scoped listings."""

    def _populate(self, registry):
        registry.register(make_identity("a1", "admin", "Ann"), "sid-a1")
        registry.register(make_identity("s1", "sub_admin", "Sam"), "sid-s1")
        registry.register(make_identity("s2", "sub_admin", "Sue"), "sid-s2")
        registry.register(make_identity("u1", "user", "Uma"), "sid-u1")
        registry.register(make_identity("u2", "user", "Ugo"), "sid-u2")

    def test_admin_sees_everyone_but_self(self, registry):
        self._populate(registry)
        ids = {r.identity_id for r in registry.list_visible(Role.ADMIN, "a1")}
        assert ids == {"s1", "s2", "u1", "u2"}

    def test_sub_admin_sees_only_users(self, registry):
        self._populate(registry)
        ids = {r.identity_id for r in registry.list_visible(Role.SUB_ADMIN, "s1")}
        assert ids == {"u1", "u2"}

    def test_user_sees_only_staff(self, registry):
        self._populate(registry)
        ids = {r.identity_id for r in registry.list_visible(Role.USER, "u1")}
        assert ids == {"a1", "s1", "s2"}

    def test_online_first_then_by_name(self, registry):
        self._populate(registry)
        registry.unregister("sid-u2")
        names = [r.display_name for r in registry.list_visible(Role.ADMIN, "a1", online_only=False)]
        assert names == ["Sam", "Sue", "Uma", "Ugo"]


class TestLoad:
    """Hydrating the directory at boot."""

    def test_load_resets_online_flags(self, repositories):
        first = PresenceRegistry(repositories.user_presence)
        first.register(make_identity("a1", "admin"), "sid-a1")

        second = PresenceRegistry(repositories.user_presence)
        loaded = second.load()

        assert loaded == 1
        assert second.get("a1").online is False
        assert second.lookup_live("a1") is None
        assert repositories.user_presence.get_record("a1").online is False

    def test_persistence_failure_keeps_memory_state(self):
        class BrokenRepository:
            def save_record(self, record):
                raise PersistenceFailure("upsert on user_presence failed")

        registry = PresenceRegistry(BrokenRepository())
        record = registry.register(make_identity("u1", "user"), "sid-1")

        assert record.online is True
        assert registry.lookup_live("u1") == "sid-1"
