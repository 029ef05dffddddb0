from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "Task Time Tracker"
    environment: str = "development"
    host: str = os.getenv("TT_HOST", "127.0.0.1")
    port: int = int(os.getenv("TT_PORT", "3001"))

    storage_backend: str = os.getenv("TT_STORAGE", "sqlite")
    sqlite_path: Path = Path(os.getenv("TT_SQLITE_PATH", "./data/time_tracker.db"))

    # Persisted instants are always UTC; this zone is only used to decide
    # which calendar day an instant belongs to.
    timezone: str = os.getenv("TZ", "Pacific/Auckland")

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("TT_CORS_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173").split(",")
            if origin.strip()
        ]
    )
    log_level: str = os.getenv("TT_LOG_LEVEL", "INFO")

    # When set, the in-progress task list hides tasks assigned to other people.
    assignee: Optional[str] = os.getenv("TT_ASSIGNEE") or None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_cors_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
