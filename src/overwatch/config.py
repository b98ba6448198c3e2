"""
Configuration for Overwatch.

Defaults live on the ``Config`` model; any field can be overridden with an
``OVERWATCH_<FIELD>`` environment variable (lists are comma separated).
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, Field, model_validator

ENV_PREFIX = "OVERWATCH_"

DATA_DIR = Path(os.getenv("OVERWATCH_DATA_DIR", str(Path.home() / ".claude-overwatch")))
PROJECT_DIR = Path(__file__).resolve().parent.parent.parent


class Config(BaseModel):
    """Runtime settings for the server, engine and reconciler."""

    host: str = "0.0.0.0"
    port: int = 3142
    data_dir: Path = DATA_DIR
    db_path: Path | None = None
    projects_dir: Path = Field(
        default_factory=lambda: Path.home() / ".claude" / "projects"
    )

    active_threshold_seconds: float = 30
    idle_threshold_seconds: float = 300
    recent_file_threshold_seconds: float = 300

    reconcile_interval_seconds: float = 60
    heartbeat_interval_seconds: float = 30
    queue_maxsize: int = 1000

    process_names: List[str] = Field(default_factory=lambda: ["claude"])
    tool_input_max_length: int = 100

    event_retention_days: int = 30
    raw_event_retention_days: int = 7

    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Config":
        if self.active_threshold_seconds <= 0 or self.idle_threshold_seconds <= 0:
            raise ValueError("status thresholds must be positive")
        if self.idle_threshold_seconds <= self.active_threshold_seconds:
            raise ValueError("idle threshold must be greater than active threshold")
        if self.db_path is None:
            self.db_path = Path(self.data_dir) / "overwatch.db"
        return self

    @property
    def active_threshold(self) -> timedelta:
        return timedelta(seconds=self.active_threshold_seconds)

    @property
    def idle_threshold(self) -> timedelta:
        return timedelta(seconds=self.idle_threshold_seconds)

    @property
    def recent_file_threshold(self) -> timedelta:
        return timedelta(seconds=self.recent_file_threshold_seconds)

    @classmethod
    def from_env(cls, **overrides: Any) -> "Config":
        """Build a config from defaults, environment variables and overrides."""
        values: Dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or raw == "":
                continue
            if field.annotation == List[str]:
                values[name] = [item.strip() for item in raw.split(",") if item.strip()]
            else:
                values[name] = raw
        values.update(overrides)
        return cls(**values)

    def reload(self) -> None:
        """Re-read environment overrides in place."""
        fresh = Config.from_env()
        for name in Config.model_fields:
            setattr(self, name, getattr(fresh, name))


CONFIG = Config.from_env()
