from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClockSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FACECLOCK_",
        extra="ignore",
    )

    app_name: str = "FaceClock"
    api_prefix: str = "/api/v1"
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    data_dir: Path = Path("App_Data")
    log_dir: Path = Path("logs")

    tick_interval_seconds: float = Field(default=1.0, gt=0.0)
    perception_timeout_seconds: float = Field(default=2.0, gt=0.0)
    min_consecutive_samples: int = Field(default=3, ge=1)
    match_threshold: float = Field(default=0.42, ge=0.0, le=1.0)
    grace_period_seconds: float = Field(default=3.0, gt=0.0)
    embedding_dim: int = Field(default=512, ge=1)

    camera_index: int = 0
    frame_width: int = 1280
    frame_height: int = 720
    insightface_model: str = "buffalo_l"
    detection_size: int = 640
    prefer_gpu: bool = True

    @property
    def identities_path(self) -> Path:
        return self.data_dir / "identities.json"

    @property
    def events_path(self) -> Path:
        return self.data_dir / "attendance_events.json"

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> ClockSettings:
    return ClockSettings()
