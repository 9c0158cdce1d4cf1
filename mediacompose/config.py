import json
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_list(value: str) -> list[str]:
    """Parse a JSON array, pipe-separated or comma-separated string."""
    if value.startswith("["):
        try:
            return [str(item) for item in json.loads(value)]
        except json.JSONDecodeError:
            pass
    separator = "|" if "|" in value else ","
    return [item.strip() for item in value.split(separator) if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Media Compose API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True

    # Database (SQLite by default, PostgreSQL via postgresql+asyncpg:// in deployments)
    database_url: str = "sqlite+aiosqlite:///./data/compositions.db"
    database_echo: bool = False

    # Filesystem layout
    data_dir: str = "data"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"

    # Engine timeouts (seconds)
    overlay_timeout_s: float = 60.0
    concat_timeout_s: float = 120.0
    compose_timeout_s: float = 120.0
    convert_timeout_s: float = 60.0
    blank_video_timeout_s: float = 60.0

    # Default active video used when a sequence starts with narration.
    # If default_video_path points to an existing file it is used as-is,
    # otherwise a solid-color clip is synthesized.
    default_video_path: str = ""
    blank_video_duration_s: float = 300.0
    blank_video_width: int = 1280
    blank_video_height: int = 720
    blank_video_fps: int = 30
    blank_video_color: str = "black"

    # Artifact expiration and cleanup
    output_expiration_minutes: int = 60
    cleanup_interval_minutes: float = 15.0
    cleanup_enabled: bool = True

    # API keys - stored as string, parsed via computed property
    api_keys_raw: str = ""
    # With no API keys configured, dev mode lets every caller through
    dev_mode: bool = True

    # CORS
    cors_origins_raw: str = "*"

    @computed_field
    @property
    def api_keys(self) -> list[str]:
        return _split_list(self.api_keys_raw)

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        return _split_list(self.cors_origins_raw)

    @property
    def sequence_scratch_root(self) -> Path:
        return Path(self.data_dir) / "temp_single_api"

    @property
    def compose_scratch_root(self) -> Path:
        return Path(self.data_dir) / "composeVideo"

    @property
    def composed_videos_dir(self) -> Path:
        return Path(self.data_dir) / "composedVideos"


@lru_cache
def get_settings() -> Settings:
    return Settings()
