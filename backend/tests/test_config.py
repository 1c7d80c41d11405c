"""
Tests for centralized configuration.
"""
import pytest
import os
from insight_chat.core.config import Settings, get_settings, reload_settings


def test_settings_defaults():
    """Defaults match the documented pipeline constants."""
    settings = Settings()

    assert settings.max_file_size_mb == 50
    assert settings.rate_limit_per_minute == 10
    assert settings.request_timeout_seconds == 300
    assert settings.log_level == "INFO"
    assert settings.ai_provider == "gemini"
    assert settings.max_retries == 3
    assert settings.retry_base_delay_seconds == 1.0
    assert settings.history_char_threshold == 4000
    assert settings.recent_turns_kept == 4
    assert settings.prompt_sample_lines == 200
    assert settings.quick_sample_lines == 20
    assert settings.storage_backend == "memory"


def test_settings_from_env(monkeypatch):
    """Test loading settings from environment variables."""
    monkeypatch.setenv("MAX_FILE_SIZE_MB", "100")
    monkeypatch.setenv("AI_PROVIDER", "GROQ")
    monkeypatch.setenv("HISTORY_CHAR_THRESHOLD", "8000")
    monkeypatch.setenv("RESPONSE_LANGUAGE", "Portuguese")

    try:
        settings = reload_settings()

        assert settings.max_file_size_mb == 100
        assert settings.ai_provider == "groq"
        assert settings.history_char_threshold == 8000
        assert settings.response_language == "Portuguese"
    finally:
        monkeypatch.undo()
        reload_settings()


def test_settings_validation():
    """Test that settings validate input ranges."""
    with pytest.raises(ValueError):
        Settings(max_file_size_mb=0)

    with pytest.raises(ValueError):
        Settings(max_file_size_mb=2000)

    with pytest.raises(ValueError):
        Settings(log_level="INVALID")

    with pytest.raises(ValueError):
        Settings(ai_provider="openai")

    with pytest.raises(ValueError):
        Settings(storage_backend="sqlite")

    with pytest.raises(ValueError):
        Settings(max_retries=0)


def test_settings_properties():
    """Test computed properties."""
    settings = Settings(max_file_size_mb=50, allowed_origins="http://a.test, ,http://b.test")

    assert settings.max_file_size_bytes == 50 * 1024 * 1024
    assert settings.allowed_origins_list == ["http://a.test", "http://b.test"]


def test_settings_singleton():
    """Test that get_settings returns singleton."""
    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2


def test_rate_limit_env_used_by_tests():
    """The test session raises the per-minute limit for the HTTP tests."""
    assert int(os.environ["RATE_LIMIT_PER_MINUTE"]) >= 100
