"""Tests for the REST endpoints."""

import io

from conftest import make_identity
from relay_server.messaging.models import MessageDraft
from relay_server.websocket.hub import get_websocket_hub


def _seed_conversation(app, count=3):
    hub = get_websocket_hub(app)
    hub.registry.register(make_identity("a1", "admin"), "sid-a1")
    user = hub.registry.register(make_identity("u1", "user"), "sid-u1")
    return [hub.service.send(user, MessageDraft.from_payload({"receiverId": "a1", "body": f"m{i}"})) for i in range(count)]


class TestIndex:

    def test_root_reports_running(self, http):
        response = http.get("/")
        assert response.status_code == 200
        assert response.get_json()["status"] == "ok"

    def test_storage_health(self, http, storage):
        response = http.get("/health/storage")
        assert response.status_code == 200
        assert storage.pinged == 1

    def test_storage_health_degraded(self, http, storage):
        storage.fail = True
        response = http.get("/health/storage")
        assert response.status_code == 503
        assert response.get_json()["success"] is False


class TestChats:

    def test_paged_history(self, app, http):
        _seed_conversation(app, count=5)

        response = http.get("/api/chats?userId=a1&otherUserId=u1&page=1&limit=2")

        assert response.status_code == 200
        body = response.get_json()
        assert body["total"] == 5
        assert body["pages"] == 3
        assert [c["body"] for c in body["chats"]] == ["m3", "m4"]

    def test_missing_params(self, http):
        response = http.get("/api/chats?userId=a1")
        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_PAYLOAD"

    def test_bad_page(self, http):
        response = http.get("/api/chats?userId=a1&otherUserId=u1&page=first")
        assert response.status_code == 400


class TestOnlineUsers:

    def test_role_scoped_listing(self, app, http):
        hub = get_websocket_hub(app)
        hub.registry.register(make_identity("a1", "admin", "Ann"), "sid-a1")
        hub.registry.register(make_identity("s1", "sub_admin", "Sam"), "sid-s1")
        hub.registry.register(make_identity("u1", "user", "Uma"), "sid-u1")
        hub.registry.register(make_identity("u2", "user", "Ugo"), "sid-u2")

        response = http.get("/api/online-users?userRole=sub_admin&currentUserId=s1")

        assert response.status_code == 200
        users = response.get_json()["onlineUsers"]
        assert [u["identityId"] for u in users] == ["u2", "u1"]

    def test_requires_role(self, http):
        assert http.get("/api/online-users").status_code == 400

    def test_unknown_role(self, http):
        assert http.get("/api/online-users?userRole=guest").status_code == 400


class TestUpdateStatus:

    def test_creates_offline_profile(self, app, http):
        response = http.post("/api/update-status", json={
            "userId": "a2", "userName": "Avery", "userRole": "admin", "isOnline": False
        })

        assert response.status_code == 200
        assert response.get_json()["user"]["online"] is False
        assert get_websocket_hub(app).registry.get("a2").display_name == "Avery"

    def test_missing_fields(self, http):
        response = http.post("/api/update-status", json={"userId": "a2"})
        assert response.status_code == 400

    def test_not_json(self, http):
        response = http.post("/api/update-status", data="userId=a2")
        assert response.status_code == 400


class TestUpload:

    def test_upload_returns_url(self, http, storage):
        response = http.post(
            "/upload",
            data={"file": (io.BytesIO(b"%PDF-1.4"), "invoice.pdf", "application/pdf")},
            content_type="multipart/form-data"
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["fileUrl"] == "https://files.example.test/invoice.pdf"
        assert body["fileType"] == "pdf"
        assert body["fileSize"] == 8
        assert storage.stored[0].mime_type == "application/pdf"

    def test_missing_file(self, http):
        response = http.post("/upload", data={}, content_type="multipart/form-data")
        assert response.status_code == 400

    def test_storage_failure(self, http, storage):
        storage.fail = True
        response = http.post(
            "/upload",
            data={"file": (io.BytesIO(b"\x89PNG"), "shot.png", "image/png")},
            content_type="multipart/form-data"
        )
        assert response.status_code == 502
        assert response.get_json()["code"] == "UPLOAD_FAILED"
