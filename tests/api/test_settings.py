"""Tests for environment-driven API settings."""

import pytest
from pydantic import ValidationError

from care_api.settings import ApiSettings


class TestApiSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CARENOTES_PORT", raising=False)
        settings = ApiSettings(_env_file=None)
        assert settings.database_url == "sqlite://"
        assert settings.port == 8000
        assert settings.log_level == "INFO"

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("CARENOTES_PORT", "9100")
        monkeypatch.setenv("CARENOTES_LOG_LEVEL", "debug")
        monkeypatch.setenv("CARENOTES_PILOT_WORKER_ENABLED", "true")
        settings = ApiSettings(_env_file=None)
        assert settings.port == 9100
        assert settings.log_level == "DEBUG"
        assert settings.pilot_worker_enabled is True

    def test_rejects_unknown_log_level(self):
        with pytest.raises(ValidationError):
            ApiSettings(_env_file=None, log_level="chatty")

    def test_rejects_bad_port(self):
        with pytest.raises(ValidationError):
            ApiSettings(_env_file=None, port=0)
