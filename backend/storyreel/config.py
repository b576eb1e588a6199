"""Configuration management with YAML and environment variable support."""

from functools import lru_cache
from pathlib import Path
from typing import ClassVar, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    yaml_path = Path("config.yaml")

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        if not self.yaml_path.exists():
            return {}

        with open(self.yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class ProvidersConfig(BaseModel):
    """Credentials and endpoints for third-party generation services."""

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com"
    wavespeed_api_key: Optional[str] = None
    wavespeed_base_url: str = "https://api.wavespeed.ai"
    ollama_endpoint: str = "http://localhost:11434"
    ollama_api_key: Optional[str] = None
    google_project_id: Optional[str] = None
    google_location: str = "us-central1"


class ModelsConfig(BaseModel):
    """AI model identifiers."""

    planner_llm: str = "gpt-5-mini"
    image_gen: str = "gpt-image-1"
    video_gen: str = "bytedance/seedance-v1-pro-i2v-480p"


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    default_scene_count: int = 3
    min_scenes: int = 1
    max_scenes: int = 99
    planner_max_attempts: int = 3
    planner_temperature: float = 0.7
    image_size: str = "1024x1024"
    image_quality: str = "auto"
    video_duration: int = 10
    video_seed: int = -1
    video_camera_fixed: bool = False
    video_poll_interval: float = 1.0
    video_poll_max: int = 120
    retry_max_attempts: int = 3
    http_timeout_seconds: float = 120.0


class TranscodeConfig(BaseModel):
    """Fixed encode parameters for the stitching ffmpeg run."""

    ffmpeg_binary: str = "ffmpeg"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    crf: int = Field(default=23, ge=0, le=51)
    preset: str = "veryfast"
    faststart: bool = True


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///storyreel.db"
    artifact_backend: Literal["local", "supabase"] = "local"
    bucket: str = "user_upload"
    local_root: Path = Path("artifacts")
    public_base_url: str = "http://localhost:8000/artifacts"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    tmp_dir: Optional[Path] = None

    @field_validator("local_root", "tmp_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: STORYREEL_, delimiter: __)
    2. .env file
    3. YAML file (config.yaml)
    4. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="STORYREEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    transcode: TranscodeConfig = Field(default_factory=TranscodeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Init settings (explicit keyword arguments)
        2. Environment variables
        3. .env file
        4. YAML file
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    return Settings()
