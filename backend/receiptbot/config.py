from functools import lru_cache
import json
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator

_ENV_CANDIDATES = (
    Path(__file__).resolve().parent.parent.parent / ".env",
    Path(__file__).resolve().parent.parent / ".env",
    Path.cwd() / ".env",
)

for env_path in _ENV_CANDIDATES:
    if env_path.is_file():
        load_dotenv(env_path, override=False)
        break


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    database_url: str = "sqlite:///./receipts.db"
    api_prefix: str = "/api"
    allow_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://localhost:8000",
        ]
    )
    telegram_bot_token: str | None = Field(default=None, alias="TELEGRAM_BOT")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    default_currency: str = "EUR"
    display_language: str = "English"
    default_category: str = "Misc"

    # Recognition models
    ai_model: str = "gpt-4o-mini"
    ai_fallback_model: str = "gpt-4o"
    vision_model: str = "gpt-4o-mini"
    extraction_max_attempts: int = Field(default=3, ge=1)
    extraction_backoff_seconds: float = Field(default=1.0, ge=0)
    tesseract_lang: str = "eng"

    # QR and receipt pages
    qr_external_api_url: str = "https://api.qrserver.com/v1/read-qr-code/"
    qr_external_enabled: bool = True
    page_timeout_ms: int = 30_000
    page_settle_ms: int = 2_000
    min_page_content_chars: int = 100

    # Dispatcher and confirmation flow
    dispatcher_interval_seconds: float = Field(default=5.0, gt=0)
    max_jobs_per_tick: int = Field(default=20, ge=1)
    itemwise_threshold: int = Field(default=5, ge=1)
    correction_tolerance: float = Field(default=0.01, ge=0)

    model_config = SettingsConfigDict(env_file=None, populate_by_name=True)

    @field_validator("allow_origins", mode="before")
    @classmethod
    def parse_allow_origins(cls, value: object) -> list[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    return json.loads(stripped)
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in stripped.split(",") if item.strip()]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise ValueError("Invalid allow_origins format.")

    @field_validator("default_currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.strip().upper()

    @model_validator(mode="after")
    def populate_from_env(self) -> "Settings":
        if not self.telegram_bot_token:
            self.telegram_bot_token = os.getenv("TELEGRAM_BOT")
        if not self.openai_api_key:
            self.openai_api_key = os.getenv("OPENAI_API_KEY")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""
    return Settings()
