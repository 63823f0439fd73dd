"""Tests for configuration loading."""

import logging
import os
from unittest.mock import patch

import pytest

from mcrt_controller.config import (
    DEFAULT_CLOUD_TIMEOUT_SECONDS,
    SSL_CERTIFICATE_NAME_PREFIX,
    Config,
    ConfigurationError,
)


class TestConfig:
    """Tests for Config class."""

    def test_defaults(self) -> None:
        """Test that the default configuration is valid."""
        config = Config()

        assert config.project_id is None
        assert config.certificate_name_prefix == "mcrt-"
        assert config.cloud_timeout_seconds == DEFAULT_CLOUD_TIMEOUT_SECONDS == 30
        assert config.workers == 5
        assert config.log_level_number == logging.INFO

    def test_invalid_project_id(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(project_id="Not_A_Project")

        assert "GCP_PROJECT_ID" in str(exc_info.value)

    def test_invalid_prefix(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(certificate_name_prefix="1-bad")

        assert "SSL_CERTIFICATE_NAME_PREFIX" in str(exc_info.value)

    def test_endpoint_must_be_https(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(compute_endpoint="http://compute.example.com")

        assert "COMPUTE_ENDPOINT" in str(exc_info.value)

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(cloud_timeout_seconds=0)

        assert "CLOUD_TIMEOUT" in str(exc_info.value)

    def test_max_delay_below_base_delay(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(rate_limit_base_delay_seconds=2.0, rate_limit_max_delay_seconds=1.0)

        assert "RATE_LIMIT_MAX_DELAY" in str(exc_info.value)

    def test_all_errors_reported(self) -> None:
        """Test that every problem is listed, not just the first."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(workers=0, resync_interval_seconds=1, log_level="LOUD")

        message = str(exc_info.value)
        assert "WORKERS" in message
        assert "RESYNC_INTERVAL" in message
        assert "LOG_LEVEL" in message

    def test_from_env(self) -> None:
        """Test loading configuration from environment."""
        env = {
            "GCP_PROJECT_ID": "my-project-42",
            "CLOUD_TIMEOUT": "10",
            "WORKERS": "3",
            "RESYNC_INTERVAL": "60",
            "RATE_LIMIT_BASE_DELAY": "0.5",
            "ENABLE_JSON_LOGGING": "false",
            "LOG_LEVEL": "debug",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.project_id == "my-project-42"
        assert config.certificate_name_prefix == SSL_CERTIFICATE_NAME_PREFIX
        assert config.cloud_timeout_seconds == 10
        assert config.workers == 3
        assert config.resync_interval_seconds == 60
        assert config.rate_limit_base_delay_seconds == 0.5
        assert config.json_logging is False
        assert config.log_level == "DEBUG"

    def test_from_env_empty(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()

        assert config == Config()

    def test_from_env_non_integer(self) -> None:
        with patch.dict(os.environ, {"WORKERS": "many"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "WORKERS must be an integer" in str(exc_info.value)

    @pytest.mark.parametrize(
        ("variable", "value"),
        [
            ("RATE_LIMIT_BASE_DELAY", "nan"),
            ("RATE_LIMIT_MAX_DELAY", "nan"),
            ("RATE_LIMIT_MAX_DELAY", "inf"),
            ("RATE_LIMIT_QPS", "nan"),
        ],
    )
    def test_from_env_non_finite_rate_limit(self, variable: str, value: str) -> None:
        with patch.dict(os.environ, {variable: value}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert f"{variable} must be a finite number" in str(exc_info.value)
