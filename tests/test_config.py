import pytest

from app.core.config import Settings


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example ,")
    monkeypatch.setenv("DOCUMENT_STORE", " MongoDB ")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("EXTRACTION_MAX_RETRIES", "5")

    settings = Settings()

    assert settings.allowed_origins == ["https://a.example", "https://b.example"]
    assert settings.document_store == "mongodb"
    assert settings.log_level == "DEBUG"
    assert settings.extraction_max_retries == 5


def test_settings_fall_back_to_defaults_for_non_positive_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_TIMEOUT_SECONDS", "0")
    monkeypatch.setenv("EXTRACTION_MAX_RETRIES", "-1")
    monkeypatch.setenv("EXTRACTION_BACKOFF_CAP_SECONDS", "0")
    monkeypatch.setenv("TRANSCRIPT_MAX_BYTES", "0")

    settings = Settings()

    assert settings.gemini_api_timeout_seconds == 30.0
    assert settings.extraction_max_retries == 3
    assert settings.extraction_backoff_cap_seconds == 4.0
    assert settings.transcript_max_bytes == 10 * 1024 * 1024
