"""Configuration management with validation.

Every field is validated at load time so a misconfigured controller fails
at startup instead of inside the reconciliation loop.
"""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Prefix carried by every SslCertificate the controller creates.
# External consumers identify controller-owned certificates by it.
SSL_CERTIFICATE_NAME_PREFIX = "mcrt-"

DEFAULT_COMPUTE_ENDPOINT = "https://compute.googleapis.com/compute/v1"

# Configuration constants with documented bounds
DEFAULT_CLOUD_TIMEOUT_SECONDS = 30
MIN_CLOUD_TIMEOUT_SECONDS = 1
MAX_CLOUD_TIMEOUT_SECONDS = 300

DEFAULT_WORKERS = 5
MIN_WORKERS = 1
MAX_WORKERS = 50

DEFAULT_RESYNC_INTERVAL_SECONDS = 600
MIN_RESYNC_INTERVAL_SECONDS = 10
MAX_RESYNC_INTERVAL_SECONDS = 86400

# Per-key exponential backoff and overall token bucket
DEFAULT_RATE_LIMIT_BASE_DELAY_SECONDS = 0.005
DEFAULT_RATE_LIMIT_MAX_DELAY_SECONDS = 1000.0
DEFAULT_RATE_LIMIT_QPS = 10.0
DEFAULT_RATE_LIMIT_BURST = 100

# Input validation patterns
VALID_PROJECT_ID_PATTERN = r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$"
VALID_NAME_PREFIX_PATTERN = r"^[a-z][a-z0-9-]{0,19}$"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # None means "use the project the credentials belong to"
    project_id: str | None = None
    certificate_name_prefix: str = SSL_CERTIFICATE_NAME_PREFIX
    compute_endpoint: str = DEFAULT_COMPUTE_ENDPOINT

    # Timing
    cloud_timeout_seconds: int = DEFAULT_CLOUD_TIMEOUT_SECONDS
    resync_interval_seconds: int = DEFAULT_RESYNC_INTERVAL_SECONDS

    # Scheduling
    workers: int = DEFAULT_WORKERS
    rate_limit_base_delay_seconds: float = DEFAULT_RATE_LIMIT_BASE_DELAY_SECONDS
    rate_limit_max_delay_seconds: float = DEFAULT_RATE_LIMIT_MAX_DELAY_SECONDS
    rate_limit_qps: float = DEFAULT_RATE_LIMIT_QPS
    rate_limit_burst: int = DEFAULT_RATE_LIMIT_BURST

    # Logging
    json_logging: bool = True
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.project_id is not None and not re.match(VALID_PROJECT_ID_PATTERN, self.project_id):
            errors.append(f"GCP_PROJECT_ID must be a valid project id: {self.project_id}")

        if not re.match(VALID_NAME_PREFIX_PATTERN, self.certificate_name_prefix):
            errors.append(
                f"SSL_CERTIFICATE_NAME_PREFIX must match pattern {VALID_NAME_PREFIX_PATTERN}: "
                f"{self.certificate_name_prefix}"
            )

        if not self.compute_endpoint.startswith("https://"):
            errors.append(f"COMPUTE_ENDPOINT must use https: {self.compute_endpoint}")

        if not (
            MIN_CLOUD_TIMEOUT_SECONDS <= self.cloud_timeout_seconds <= MAX_CLOUD_TIMEOUT_SECONDS
        ):
            errors.append(
                f"CLOUD_TIMEOUT must be between {MIN_CLOUD_TIMEOUT_SECONDS} "
                f"and {MAX_CLOUD_TIMEOUT_SECONDS} seconds"
            )

        if not (
            MIN_RESYNC_INTERVAL_SECONDS
            <= self.resync_interval_seconds
            <= MAX_RESYNC_INTERVAL_SECONDS
        ):
            errors.append(
                f"RESYNC_INTERVAL must be between {MIN_RESYNC_INTERVAL_SECONDS} "
                f"and {MAX_RESYNC_INTERVAL_SECONDS} seconds"
            )

        if not (MIN_WORKERS <= self.workers <= MAX_WORKERS):
            errors.append(f"WORKERS must be between {MIN_WORKERS} and {MAX_WORKERS}")

        for env_name, value in (
            ("RATE_LIMIT_BASE_DELAY", self.rate_limit_base_delay_seconds),
            ("RATE_LIMIT_MAX_DELAY", self.rate_limit_max_delay_seconds),
            ("RATE_LIMIT_QPS", self.rate_limit_qps),
        ):
            if not math.isfinite(value):
                errors.append(f"{env_name} must be a finite number: {value}")

        if self.rate_limit_base_delay_seconds <= 0:
            errors.append("RATE_LIMIT_BASE_DELAY must be positive")
        elif self.rate_limit_max_delay_seconds < self.rate_limit_base_delay_seconds:
            errors.append("RATE_LIMIT_MAX_DELAY must not be lower than RATE_LIMIT_BASE_DELAY")

        if self.rate_limit_qps <= 0:
            errors.append("RATE_LIMIT_QPS must be positive")

        if self.rate_limit_burst < 1:
            errors.append("RATE_LIMIT_BURST must be at least 1")

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_number(self) -> int:
        """Numeric logging level for the configured level name."""
        return logging.getLevelName(self.log_level)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            GCP_PROJECT_ID: Project owning the SslCertificates (default: from credentials)
            SSL_CERTIFICATE_NAME_PREFIX: Prefix of created certificates (default: mcrt-)
            COMPUTE_ENDPOINT: Compute API root (default: public v1 endpoint)
            CLOUD_TIMEOUT: Timeout of a single cloud call in seconds (default: 30)
            RESYNC_INTERVAL: Seconds between full resyncs (default: 600)
            WORKERS: Number of concurrent worker loops (default: 5)
            RATE_LIMIT_BASE_DELAY: Initial per-key retry delay in seconds (default: 0.005)
            RATE_LIMIT_MAX_DELAY: Cap of the per-key retry delay in seconds (default: 1000)
            RATE_LIMIT_QPS: Overall enqueue rate (default: 10)
            RATE_LIMIT_BURST: Overall enqueue burst (default: 100)
            ENABLE_JSON_LOGGING: JSON logs on stdout (default: true)
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            project_id=os.environ.get("GCP_PROJECT_ID") or None,
            certificate_name_prefix=os.environ.get(
                "SSL_CERTIFICATE_NAME_PREFIX", SSL_CERTIFICATE_NAME_PREFIX
            ),
            compute_endpoint=os.environ.get("COMPUTE_ENDPOINT", DEFAULT_COMPUTE_ENDPOINT),
            cloud_timeout_seconds=get_int("CLOUD_TIMEOUT", DEFAULT_CLOUD_TIMEOUT_SECONDS),
            resync_interval_seconds=get_int("RESYNC_INTERVAL", DEFAULT_RESYNC_INTERVAL_SECONDS),
            workers=get_int("WORKERS", DEFAULT_WORKERS),
            rate_limit_base_delay_seconds=get_float(
                "RATE_LIMIT_BASE_DELAY", DEFAULT_RATE_LIMIT_BASE_DELAY_SECONDS
            ),
            rate_limit_max_delay_seconds=get_float(
                "RATE_LIMIT_MAX_DELAY", DEFAULT_RATE_LIMIT_MAX_DELAY_SECONDS
            ),
            rate_limit_qps=get_float("RATE_LIMIT_QPS", DEFAULT_RATE_LIMIT_QPS),
            rate_limit_burst=get_int("RATE_LIMIT_BURST", DEFAULT_RATE_LIMIT_BURST),
            json_logging=get_bool("ENABLE_JSON_LOGGING", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
