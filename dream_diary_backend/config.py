# dream_diary_backend/config.py
"""
Application settings.

Values come from the environment (or a local ``.env`` file).  The accessor is
cached; tests call ``settings.cache_clear()`` after patching the environment.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # runtime
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_origins: List[str] = Field(default=["*"])

    # provider credentials / models
    openai_api_key: Optional[str] = Field(default=None)
    transcription_model: str = Field(default="gpt-4o-transcribe")
    structuring_model: str = Field(default="gpt-5-mini")
    image_model: str = Field(default="dall-e-3")
    image_size: str = Field(default="1024x1024")
    image_quality: str = Field(default="standard")

    # provider call policy
    provider_timeout_s: float = Field(default=60.0)
    transcription_max_mb: float = Field(default=20.0)
    transcription_max_attempts: int = Field(default=3)
    transcription_backoff_s: float = Field(default=2.0)

    # files
    upload_dir: str = Field(default="uploads")
    max_upload_bytes: int = Field(default=50_000_000)
    generated_images_dir: str = Field(default="generated_images")

    # persistence
    store_backend: Literal["json", "sql"] = Field(default="json")
    data_file: str = Field(default="data/dreams.json")
    db_url: str = Field(default="sqlite+aiosqlite:///data/dreams.db")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def settings() -> Settings:
    return Settings()
