"""Tests for hearing_ingest.config."""

import pytest

from hearing_ingest.config import MIB, load_settings
from hearing_ingest.utils.errors import ConfigurationError

REQUIRED = {
    "DATABASE_URL": "postgresql+psycopg://u:p@localhost/db",
    "AWS_REGION": "us-east-2",
    "S3_BUCKET": "hearings",
    "DEEPGRAM_API_KEY": "dg-key",
}


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in REQUIRED:
        monkeypatch.delenv(name, raising=False)
    for name in ("RETRY_CEILING", "S3_ENDPOINT_URL", "STUCK_HOURS_THRESHOLD", "PART_SIZE_BYTES"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:
    def test_reads_required_values_from_environment(self, clean_env):
        for name, value in REQUIRED.items():
            clean_env.setenv(name, value)

        settings = load_settings()

        assert settings.database_url == REQUIRED["DATABASE_URL"]
        assert settings.aws_region == "us-east-2"
        assert settings.s3_bucket == "hearings"
        assert settings.deepgram_api_key == "dg-key"

    def test_defaults(self, clean_env):
        for name, value in REQUIRED.items():
            clean_env.setenv(name, value)

        settings = load_settings()

        assert settings.retry_ceiling == 5
        assert settings.stuck_hours_threshold == 10.0
        assert settings.min_media_bytes == 5 * MIB
        assert settings.part_size_bytes == 5 * MIB
        assert settings.transcription_provider == "deepgram"
        assert settings.s3_endpoint_url is None
        assert settings.executor_name.startswith("worker-")

    def test_environment_overrides_default(self, clean_env):
        for name, value in REQUIRED.items():
            clean_env.setenv(name, value)
        clean_env.setenv("RETRY_CEILING", "3")

        assert load_settings().retry_ceiling == 3

    def test_missing_required_variables_named(self, clean_env):
        clean_env.setenv("DATABASE_URL", REQUIRED["DATABASE_URL"])

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()

        message = str(exc_info.value)
        assert "Missing required environment variables" in message
        assert "S3_BUCKET" in message
        assert "DEEPGRAM_API_KEY" in message
        assert "DATABASE_URL" not in message

    def test_invalid_value_raises_configuration_error(self, clean_env):
        for name, value in REQUIRED.items():
            clean_env.setenv(name, value)
        clean_env.setenv("RETRY_CEILING", "many")

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_settings()

    def test_part_size_below_s3_minimum_rejected(self, clean_env):
        for name, value in REQUIRED.items():
            clean_env.setenv(name, value)
        clean_env.setenv("PART_SIZE_BYTES", str(MIB))

        with pytest.raises(ConfigurationError, match="part_size_bytes"):
            load_settings()

    def test_larger_part_size_accepted(self, clean_env):
        for name, value in REQUIRED.items():
            clean_env.setenv(name, value)
        clean_env.setenv("PART_SIZE_BYTES", str(8 * MIB))

        assert load_settings().part_size_bytes == 8 * MIB
