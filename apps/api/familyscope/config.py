"""Application configuration utilities."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from config.json."""

    min_child_age: int = Field(default=1, ge=0)
    max_child_age: int = Field(default=25, ge=1)
    store_backend: Literal["memory", "sqlite"] = Field(default="sqlite")
    database_path: str = Field(default="./data/familyscope.db")
    transaction_max_attempts: int = Field(default=5, ge=1)
    transaction_backoff_seconds: float = Field(default=0.05, ge=0)
    transaction_backoff_max_seconds: float = Field(default=1.0, ge=0)
    openai_api_key: Optional[str] = Field(default=None)
    openai_model: str = Field(default="gpt-4o-mini")

    @model_validator(mode="after")
    def _check_age_bounds(self) -> "AppConfig":
        if self.min_child_age > self.max_child_age:
            raise ValueError("min_child_age must not exceed max_child_age")
        return self

    @property
    def resolved_database_path(self) -> Path:
        """Return the absolute path for the SQLite database file."""
        return (Path(__file__).resolve().parents[1] / self.database_path).resolve()


def _config_path() -> Path:
    override = os.getenv("FAMILYSCOPE_CONFIG")
    if override:
        return Path(override)
    return Path(__file__).resolve().parents[1] / "config.json"


def load_config() -> AppConfig:
    """Load configuration from config.json, falling back to defaults when absent."""

    config_file = _config_path()
    if not config_file.exists():
        if os.getenv("FAMILYSCOPE_CONFIG"):
            raise FileNotFoundError(f"FAMILYSCOPE_CONFIG points at a missing file: {config_file}")
        return AppConfig()

    contents: Dict[str, Any] = json.loads(config_file.read_text())
    return AppConfig(**contents)


CONFIG = load_config()
