"""Application configuration utilities."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from config.json and the environment."""

    openai_api_key: Optional[str] = Field(default=None, alias="openai_api_key")
    openai_model: str = Field(default="gpt-4o-mini")
    voice_max_attempts: int = Field(default=3, ge=1)

    default_shift_minutes: int = Field(default=120, ge=1)
    handoff_min_minutes: int = Field(default=60, ge=0)
    extend_minutes: int = Field(default=30, ge=1)
    workload_window_hours: float = Field(default=12.0, gt=0)
    rest_adequacy_hours: float = Field(default=2.0, ge=0)
    standing_rest_reminder_minutes: int = Field(default=30, ge=0)

    invite_expiry_days: int = Field(default=7, ge=1)
    invite_code_length: int = Field(default=6, ge=4, le=12)

    webhook_secret: Optional[str] = None
    allow_unsigned_webhooks: bool = False

    log_level: str = Field(default="INFO")
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ]
    )


_ENV_OVERRIDES = {
    "OPENAI_API_KEY": "openai_api_key",
    "BABYSTEP_OPENAI_MODEL": "openai_model",
    "BABYSTEP_LOG_LEVEL": "log_level",
    "BABYSTEP_EXTEND_MINUTES": "extend_minutes",
    "BABYSTEP_REST_ADEQUACY_HOURS": "rest_adequacy_hours",
    "BABYSTEP_WEBHOOK_SECRET": "webhook_secret",
    "BABYSTEP_ALLOW_UNSIGNED_WEBHOOKS": "allow_unsigned_webhooks",
}


def _config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "config.json"


def load_config() -> AppConfig:
    """Load configuration from config.json (optional), then apply env overrides."""

    contents: Dict[str, Any] = {}
    config_file = _config_path()
    if config_file.exists():
        contents = json.loads(config_file.read_text())

    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            contents[field_name] = value

    extra_origins = os.getenv("BABYSTEP_CORS_EXTRA_ORIGINS", "")
    config = AppConfig(**contents)
    if extra_origins:
        config.cors_origins.extend(
            origin.strip() for origin in extra_origins.split(",") if origin.strip()
        )
    return config


CONFIG = load_config()
