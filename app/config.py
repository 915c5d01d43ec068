"""Application configuration models."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="VODHub", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    sites_config_path: Path | None = Field(default=None, alias="SITES_CONFIG")
    sites: Any = Field(default=None, alias="SITES")

    category_timeout_seconds: float = Field(
        default=10.0, alias="CATEGORY_TIMEOUT", gt=0, le=120
    )
    video_timeout_seconds: float = Field(
        default=15.0, alias="VIDEO_TIMEOUT", gt=0, le=120
    )
    search_max_pages: int = Field(default=1, alias="SEARCH_MAX_PAGES", ge=1, le=20)
    default_page_size: int = Field(default=20, alias="DEFAULT_PAGE_SIZE", ge=1, le=200)
    upstream_user_agent: str = Field(
        default=DEFAULT_USER_AGENT, alias="UPSTREAM_USER_AGENT"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./vodhub.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("sites", mode="before")
    @classmethod
    def _parse_inline_sites(cls, value: object) -> object:
        """Accept the inline site configuration as a JSON string."""

        if value is None:
            return None
        if isinstance(value, str):
            if not value.strip():
                return None
            try:
                return json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("SITES must be valid JSON") from exc
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        if value is None:
            return "INFO"
        text = str(value).strip().upper()
        return text or "INFO"

    def load_site_config(self) -> Any:
        """Return the raw site configuration, preferring inline ``SITES``."""

        if self.sites is not None:
            return self.sites
        if self.sites_config_path is None:
            return {}
        path = Path(self.sites_config_path)
        if not path.is_file():
            raise FileNotFoundError(f"Site configuration not found: {path}")
        with path.open(encoding="utf-8") as handle:
            return json.load(handle)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
