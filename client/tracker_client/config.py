"""Configuration helpers for the timeline client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "http://127.0.0.1:3001"
DEFAULT_TIMEZONE = "Pacific/Auckland"
DEFAULT_START_HOUR = 5
DEFAULT_END_HOUR = 23
DEFAULT_PIXELS_PER_HOUR = 80
DEFAULT_SNAP_MINUTES = 5
DEFAULT_UNDO_SECONDS = 10


@dataclass(slots=True)
class AppConfig:
    """Settings for the API connection and the timeline geometry."""

    api_base_url: str = DEFAULT_API_BASE_URL
    timezone: str = DEFAULT_TIMEZONE
    start_hour: int = DEFAULT_START_HOUR
    end_hour: int = DEFAULT_END_HOUR
    pixels_per_hour: float = DEFAULT_PIXELS_PER_HOUR
    snap_minutes: int = DEFAULT_SNAP_MINUTES
    undo_seconds: float = DEFAULT_UNDO_SECONDS
    request_timeout: int = 15


def load_config(env_path: Path | None = None) -> AppConfig:
    """Load the configuration from an optional `.env` file and the environment."""

    env_path = env_path or Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return AppConfig(
        api_base_url=os.getenv("TRACKER_API_BASE_URL", DEFAULT_API_BASE_URL),
        timezone=os.getenv("TRACKER_TIMEZONE", DEFAULT_TIMEZONE),
        start_hour=int(os.getenv("TRACKER_TIMELINE_START_HOUR", DEFAULT_START_HOUR)),
        end_hour=int(os.getenv("TRACKER_TIMELINE_END_HOUR", DEFAULT_END_HOUR)),
        pixels_per_hour=float(os.getenv("TRACKER_PIXELS_PER_HOUR", DEFAULT_PIXELS_PER_HOUR)),
        snap_minutes=int(os.getenv("TRACKER_SNAP_MINUTES", DEFAULT_SNAP_MINUTES)),
        undo_seconds=float(os.getenv("TRACKER_UNDO_SECONDS", DEFAULT_UNDO_SECONDS)),
        request_timeout=int(os.getenv("TRACKER_REQUEST_TIMEOUT", 15)),
    )


__all__ = ["AppConfig", "load_config"]
