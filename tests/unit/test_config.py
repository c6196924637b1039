"""Tests for settings and logging setup."""

import logging

import pytest

from agencycrm.core.config import Settings
from agencycrm.core.logger import setup_logger


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.rbac_max_hierarchy_depth == 32
        assert settings.rbac_cache_enabled is False
        assert settings.rbac_check_timeout_seconds > 0
        assert settings.database_url.startswith("postgresql://")

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("RBAC_MAX_HIERARCHY_DEPTH", "8")
        monkeypatch.setenv("RBAC_CACHE_ENABLED", "true")
        settings = Settings(_env_file=None)
        assert settings.rbac_max_hierarchy_depth == 8
        assert settings.rbac_cache_enabled is True

    def test_cors_origins_list(self):
        settings = Settings(_env_file=None, cors_origins="http://a.test, http://b.test,")
        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]


class TestSetupLogger:

    def test_file_and_console_handlers(self, tmp_path):
        logger = setup_logger("agencycrm-test-file", log_dir=str(tmp_path), level="debug")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "hello" in (tmp_path / "agencycrm-test-file.log").read_text()

    def test_no_duplicate_handlers(self):
        first = setup_logger("agencycrm-test-dup")
        second = setup_logger("agencycrm-test-dup")
        assert first is second
        assert len(second.handlers) == 1

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            setup_logger("agencycrm-test-bad", level="LOUD")
