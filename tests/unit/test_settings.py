"""Tests for Settings validation."""

import pytest
from pydantic import ValidationError

from finsight.config.settings import Settings


def test_log_level_is_normalised():
    assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"


def test_invalid_log_level():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="chatty")


def test_default_timeout_cannot_exceed_ceiling():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, sandbox_timeout=90, sandbox_max_timeout=60)


def test_non_positive_limits_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, sandbox_memory_limit_mb=0)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.setenv("SANDBOX_ALLOWED_MODULES", '["math", "json"]')
    settings = Settings(_env_file=None)
    assert settings.storage_backend == "memory"
    assert settings.sandbox_allowed_modules == ["math", "json"]
