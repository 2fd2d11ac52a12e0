from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_SUMMARY_PLACEHOLDER_TEXTS = [
    "processing",
    "no summary available",
    "meeting completed - processing",
    "meeting completed - processing insights",
]


class Settings(BaseSettings):
    app_name: str = "Meeting Sync API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    meetgeek_api_url: str = "https://api.meetgeek.ai"
    meetgeek_api_key: str = ""
    meetgeek_api_timeout_seconds: float = 10.0
    meetgeek_api_user_agent: str = "MeetingSyncBackend/1.0"
    meetings_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "meeting_sync"
    mongodb_connect_timeout_ms: int = 2000
    transcript_insert_batch_size: int = 100
    transcript_processor_webhook_url: str = "http://localhost:3003/webhooks/transcript-ready"
    transcript_processor_timeout_seconds: float = 10.0
    analysis_trigger_url: str = "http://localhost:3000/api/analyze-comprehensive"
    analysis_trigger_timeout_seconds: float = 30.0
    analysis_job_model: str = "gpt-4"
    summary_placeholder_texts: Annotated[list[str], NoDecode] = list(
        DEFAULT_SUMMARY_PLACEHOLDER_TEXTS,
    )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("summary_placeholder_texts", mode="before")
    @classmethod
    def parse_summary_placeholder_texts(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            value = value.split(",")
        return [text.strip().lower() for text in value if text and text.strip()]

    @field_validator("meetings_store", mode="before")
    @classmethod
    def normalize_meetings_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("meetgeek_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_meetgeek_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("transcript_processor_timeout_seconds", mode="before")
    @classmethod
    def normalize_transcript_processor_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("analysis_trigger_timeout_seconds", mode="before")
    @classmethod
    def normalize_analysis_trigger_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 30.0
        return parsed_value

    @field_validator("transcript_insert_batch_size", mode="before")
    @classmethod
    def normalize_transcript_insert_batch_size(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 100
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
