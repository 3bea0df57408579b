from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from minishelf.models.image import SizePreset

# Load environment variables from a .env file if present (local dev only)
load_dotenv()


DEFAULT_RESPONSIVE_SIZES: list[SizePreset] = [
    SizePreset(width=150, height=150, label="thumbnail"),
    SizePreset(width=800, height=600, label="medium"),
    SizePreset(width=1920, height=1080, label="large"),
]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables or .env file."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # General
    project_id: Optional[str] = Field(default=None, description="Firebase / GCP project ID")
    log_level: str = Field("INFO", description="Root log level for the service.")

    # Firebase
    firebase_credentials_json: Optional[str] = Field(
        default=None,
        validation_alias="GOOGLE_APPLICATION_CREDENTIALS",
        description="Path to service-account JSON file or JSON string itself.",
    )

    # Cloud Storage
    storage_bucket: Optional[str] = Field(default=None, description="Bucket name; defaults to <project>.appspot.com")
    use_storage_emulator: bool = Field(False, description="Talk to the Firebase Storage emulator instead of GCS.")
    storage_emulator_host: str = Field("localhost:9199", description="host:port of the storage emulator.")
    public_base_url: str = Field("https://storage.googleapis.com", description="Prefix for public object URLs.")

    # Upload limits (enforced at intake, before the pipeline runs)
    max_file_size: int = Field(10 * 1024 * 1024, ge=1, description="Maximum upload size in bytes.")
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/png", "image/webp", "image/gif"]
    )

    # Image processing
    image_quality: int = Field(80, ge=1, le=100, description="Default compression quality (1-100).")
    image_max_width: int = Field(2048, ge=1, description="Default max width for single-image uploads (pixels).")
    image_max_height: int = Field(2048, ge=1, description="Default max height for single-image uploads (pixels).")
    max_image_dimension: int = Field(10000, ge=1, description="Hard ceiling on source width/height.")
    responsive_sizes: list[SizePreset] = Field(default_factory=lambda: list(DEFAULT_RESPONSIVE_SIZES))

    # Transcode worker pool
    max_concurrent_transcodes: int = Field(2, ge=1)
    transcode_queue_timeout: float = Field(30.0, gt=0, description="Seconds to wait for a free transcode slot.")

    @property
    def bucket_name(self) -> str:
        if self.storage_bucket:
            return self.storage_bucket
        if self.use_storage_emulator:
            return "demo-project.appspot.com"
        return f"{self.project_id}.appspot.com"

    @property
    def max_file_size_mb(self) -> str:
        """Human readable size limit, e.g. ``"10"`` or ``"2.5"``."""
        return f"{self.max_file_size / 1024 / 1024:g}"


@lru_cache()
def get_settings() -> Settings:  # pragma: no cover
    """Return a cached Settings instance so it is only parsed once."""

    return Settings()
