from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_DEFAULT_TRANSCRIPT_MAX_BYTES = 10 * 1024 * 1024


class Settings(BaseSettings):
    app_name: str = "Meeting Action Items API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    log_level: str = "INFO"
    document_store: str = "memory"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "meeting_action_items"
    mongodb_connect_timeout_ms: int = 2000
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    gemini_api_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_api_timeout_seconds: float = 30.0
    extraction_max_retries: int = 3
    extraction_backoff_base_seconds: float = 0.5
    extraction_backoff_cap_seconds: float = 4.0
    transcript_max_bytes: int = _DEFAULT_TRANSCRIPT_MAX_BYTES

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("document_store", mode="before")
    @classmethod
    def normalize_document_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        normalized = str(value).strip().upper()
        return normalized or "INFO"

    @field_validator("gemini_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_gemini_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 30.0
        return parsed_value

    @field_validator("extraction_max_retries", mode="before")
    @classmethod
    def normalize_extraction_max_retries(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value < 0:
            return 3
        return parsed_value

    @field_validator("extraction_backoff_base_seconds", mode="before")
    @classmethod
    def normalize_backoff_base(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value < 0:
            return 0.5
        return parsed_value

    @field_validator("extraction_backoff_cap_seconds", mode="before")
    @classmethod
    def normalize_backoff_cap(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 4.0
        return parsed_value

    @field_validator("transcript_max_bytes", mode="before")
    @classmethod
    def normalize_transcript_max_bytes(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return _DEFAULT_TRANSCRIPT_MAX_BYTES
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
