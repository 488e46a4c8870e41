"""Environment-driven settings for the ingestion pipeline.

DATABASE_URL, AWS_REGION, S3_BUCKET and DEEPGRAM_API_KEY are required;
everything else has a production default.
"""

from __future__ import annotations

import os

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from hearing_ingest.utils.errors import ConfigurationError

MIB = 1024 * 1024


class Settings(BaseSettings):
    database_url: str
    aws_region: str
    s3_bucket: str
    deepgram_api_key: str
    s3_endpoint_url: str | None = None
    transcription_provider: str = "deepgram"
    deepgram_model: str = "nova-3"
    retry_ceiling: int = 5
    stuck_hours_threshold: float = 10.0
    queue_limit: int = 1000
    min_media_bytes: int = 5 * MIB
    part_size_bytes: int = Field(default=5 * MIB, ge=5 * MIB)
    ready_timeout_seconds: float = 120.0
    presigned_url_ttl_seconds: int = 6 * 60 * 60
    yt_dlp_binary: str = "yt-dlp"
    executor_name: str = Field(default_factory=lambda: f"worker-{os.getpid()}")
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )


def load_settings(**overrides: object) -> Settings:
    """Build Settings from the environment.

    Raises:
        ConfigurationError: If any required variable is missing or invalid.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        missing = [
            str(err["loc"][0]).upper()
            for err in exc.errors()
            if err.get("type") == "missing"
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            ) from exc
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
