"""Tests for configuration management module."""

import logging
import os
from unittest.mock import patch

import pytest
from pydantic import SecretStr

from sheet_cleaner.config import Settings, validate_settings_on_startup


class TestSettings:
    """Tests for the Settings class."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.max_file_size_mb == 50

        # Chunking defaults
        assert settings.chunk_size == 1000
        assert settings.parallel_batch_size == 3
        assert settings.analysis_batch_size == 5
        assert settings.retained_batches == 2
        assert settings.sample_rows == 5
        assert settings.max_issue_examples == 5

        # Recommendation defaults
        assert settings.max_recommendations == 12
        assert settings.recommendation_issue_batch_size == 3
        assert settings.get_openai_api_key() == ""
        assert settings.openai_model == "gpt-4o-mini"
        assert settings.openai_temperature == 0.2
        assert settings.openai_max_tokens == 4096

        # Session defaults
        assert settings.session_cache_size == 32
        assert settings.session_ttl_hours == 24

        assert settings.log_level == "INFO"
        assert settings.debug is False

    def test_environment_variable_prefix(self) -> None:
        """Test that environment variables use SC_ prefix."""
        env_vars = {
            "SC_CHUNK_SIZE": "250",
            "SC_OPENAI_MODEL": "gpt-4o",
            "SC_LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.chunk_size == 250
        assert settings.openai_model == "gpt-4o"
        assert settings.log_level == "DEBUG"

    def test_secret_str_for_api_key(self) -> None:
        """Test that API key uses SecretStr for security."""
        env_vars = {"SC_OPENAI_API_KEY": "sk-test-secret-key"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert isinstance(settings.openai_api_key, SecretStr)
        assert settings.get_openai_api_key() == "sk-test-secret-key"
        assert "sk-test-secret-key" not in str(settings.openai_api_key)

    def test_computed_properties(self) -> None:
        env_vars = {"SC_MAX_FILE_SIZE_MB": "10", "SC_SESSION_TTL_HOURS": "12"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.max_file_size_bytes == 10 * 1024 * 1024
        assert settings.session_ttl_seconds == 12 * 3600

    def test_log_level_int_property(self) -> None:
        """Test log_level_int computed property."""
        for level_str, expected_int in [
            ("DEBUG", logging.DEBUG),
            ("WARNING", logging.WARNING),
            ("CRITICAL", logging.CRITICAL),
        ]:
            with patch.dict(os.environ, {"SC_LOG_LEVEL": level_str}, clear=True):
                settings = Settings(_env_file=None)
            assert settings.log_level_int == expected_int, f"Failed for {level_str}"

    def test_to_safe_dict_masks_api_key(self) -> None:
        env_vars = {"SC_OPENAI_API_KEY": "sk-actual-secret-key"}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        safe_dict = settings.to_safe_dict()

        assert safe_dict["openai_api_key"] == "***"
        assert "sk-actual-secret-key" not in str(safe_dict)
        assert safe_dict["chunk_size"] == 1000

    def test_to_safe_dict_shows_not_set_for_empty_key(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.to_safe_dict()["openai_api_key"] == "(not set)"


class TestSettingsValidation:
    """Tests for settings validation."""

    def test_lowercase_log_level_normalized(self) -> None:
        with patch.dict(os.environ, {"SC_LOG_LEVEL": "debug"}, clear=True):
            settings = Settings(_env_file=None)
            assert settings.log_level == "DEBUG"

    def test_invalid_log_level_raises_error(self) -> None:
        with (
            patch.dict(os.environ, {"SC_LOG_LEVEL": "INVALID"}, clear=True),
            pytest.raises(ValueError, match="Invalid log level"),
        ):
            Settings(_env_file=None)

    def test_chunk_size_must_be_positive(self) -> None:
        with (
            patch.dict(os.environ, {"SC_CHUNK_SIZE": "0"}, clear=True),
            pytest.raises(ValueError, match="chunk_size must be at least 1"),
        ):
            Settings(_env_file=None)

    def test_parallel_batch_size_range(self) -> None:
        """Test batch sizes must be between 1 and 16."""
        for value in ("0", "17"):
            with (
                patch.dict(os.environ, {"SC_PARALLEL_BATCH_SIZE": value}, clear=True),
                pytest.raises(ValueError, match="between 1 and 16"),
            ):
                Settings(_env_file=None)

    def test_session_ttl_must_be_positive(self) -> None:
        with (
            patch.dict(os.environ, {"SC_SESSION_TTL_HOURS": "0"}, clear=True),
            pytest.raises(ValueError, match="at least 1"),
        ):
            Settings(_env_file=None)

    def test_file_size_must_be_between_1_and_1024(self) -> None:
        with (
            patch.dict(os.environ, {"SC_MAX_FILE_SIZE_MB": "2048"}, clear=True),
            pytest.raises(ValueError, match="between 1 and 1024"),
        ):
            Settings(_env_file=None)

    def test_temperature_range(self) -> None:
        with (
            patch.dict(os.environ, {"SC_OPENAI_TEMPERATURE": "2.5"}, clear=True),
            pytest.raises(ValueError, match="between 0.0 and 2.0"),
        ):
            Settings(_env_file=None)

    def test_sample_rows_cannot_exceed_chunk_size(self) -> None:
        env_vars = {"SC_CHUNK_SIZE": "3", "SC_SAMPLE_ROWS": "5"}
        with (
            patch.dict(os.environ, env_vars, clear=True),
            pytest.raises(ValueError, match="must not exceed"),
        ):
            Settings(_env_file=None)


class TestValidateSettingsOnStartup:
    """Tests for the validate_settings_on_startup function."""

    def test_warns_when_api_key_not_set(self, caplog: pytest.LogCaptureFixture) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.WARNING):
            validate_settings_on_startup(settings)

        assert "OPENAI_API_KEY is not configured" in caplog.text

    def test_no_warning_when_api_key_set(self, caplog: pytest.LogCaptureFixture) -> None:
        with patch.dict(os.environ, {"SC_OPENAI_API_KEY": "sk-test-key"}, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.WARNING):
            validate_settings_on_startup(settings)

        assert "OPENAI_API_KEY is not configured" not in caplog.text

    def test_logs_configuration_summary(self, caplog: pytest.LogCaptureFixture) -> None:
        with patch.dict(os.environ, {"SC_CHUNK_SIZE": "500"}, clear=True):
            settings = Settings(_env_file=None)

        with caplog.at_level(logging.INFO):
            validate_settings_on_startup(settings)

        assert "chunk_size=500" in caplog.text
