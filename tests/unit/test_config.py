"""
Unit tests for settings and logging setup.
"""

from pathlib import Path

import pytest
from loguru import logger
from pydantic import ValidationError

from linguaspark.config import Settings, get_settings
from linguaspark.extraction.session_manager import ExtractionSessionManager
from linguaspark.extraction.session_store import InMemorySessionStore
from linguaspark.logging_setup import configure_logging


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("EXTRACTION_MAX_RETRIES", "GENERATION_API_URL", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.extraction_max_retries == 3
        assert settings.extraction_session_timeout_hours == 24.0
        assert settings.session_timeout_seconds == 86400
        assert settings.extraction_max_history_entries == 50
        assert settings.extraction_max_event_entries == 100
        assert settings.generation_api_url == "http://localhost:3000"
        assert settings.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("EXTRACTION_MAX_RETRIES", "5")
        monkeypatch.setenv("EXTRACTION_STORE_DIR", str(tmp_path))
        monkeypatch.setenv("GENERATION_API_TOKEN", "tok")

        settings = Settings(_env_file=None)

        assert settings.extraction_max_retries == 5
        assert settings.extraction_store_dir == Path(tmp_path)
        assert settings.generation_api_token == "tok"

    def test_rejects_negative_retries(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, extraction_max_retries=-1)

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()

    def test_manager_from_settings(self):
        settings = Settings(
            _env_file=None,
            extraction_max_retries=1,
            extraction_session_timeout_hours=2,
            extraction_max_history_entries=7,
        )

        manager = ExtractionSessionManager.from_settings(InMemorySessionStore(), settings)

        assert manager.retry_policy.max_retries == 1
        assert manager.session_timeout.total_seconds() == 7200
        assert manager.max_history_entries == 7


class TestConfigureLogging:
    def test_file_sink(self, tmp_path):
        log_file = tmp_path / "pipeline.log"
        configure_logging("ERROR", str(log_file))
        try:
            logger.debug("debug line for {}", "file sink")
            logger.complete()
        finally:
            logger.remove()

        assert "debug line for file sink" in log_file.read_text(encoding="utf-8")
