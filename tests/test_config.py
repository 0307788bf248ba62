"""Tests for layered configuration."""

import pytest

from config import Config, config, get_env, is_dev, is_prod


class TestConfig:

    def test_yaml_defaults(self):
        assert config.CHAT_DB_NAME == "chat_db_test"
        assert config.HISTORY_DEFAULT_LIMIT == 50
        assert config.HISTORY_MAX_LIMIT == 200
        assert config.UPLOAD_MAX_BYTES == 10 * 1024 * 1024
        assert "docx" in config.UPLOAD_ALLOWED_EXTENSIONS

    def test_env_overrides_yaml(self, monkeypatch):
        monkeypatch.setenv("PORT", "9100")
        monkeypatch.setenv("HISTORY_MAX_LIMIT", "25")
        assert config.PORT == 9100
        assert config.HISTORY_MAX_LIMIT == 25

    def test_cors_list(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
        assert config.CORS_ORIGINS_LIST == ["https://a.example", "https://b.example"]

    def test_log_level_from_debug_flag(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setenv("LOG_DEBUG", "true")
        assert config.LOG_LEVEL == "DEBUG"

    def test_production_requires_storage_credentials(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        for name in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET", "MONGO_URI"):
            monkeypatch.delenv(name, raising=False)
        try:
            prod = Config.reload()
            with pytest.raises(RuntimeError):
                prod.validate_required()
        finally:
            monkeypatch.setenv("APP_ENV", "development")
            Config.reload()

    def test_to_dict_masks_secrets(self, monkeypatch):
        monkeypatch.setenv("CLOUDINARY_API_SECRET", "s3cret")
        monkeypatch.setenv("MONGO_URI", "mongodb://user:pw@db.example:27017")
        exported = config.to_dict()
        assert exported["storage"]["api_secret_set"] is True
        assert exported["database"]["mongo_uri"] == "***"
        assert "s3cret" not in str(exported)

    def test_helpers(self):
        assert is_dev() is True
        assert is_prod() is False
        assert get_env() == "development"
