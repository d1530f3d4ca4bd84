"""Configuration management with validation.

Polling cadence and wait budgets are validated at load time so a bad
value fails at startup instead of busy-looping or hanging a reconcile.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_POLL_INTERVAL_SECONDS = 10
MAX_POLL_INTERVAL_SECONDS = 300

DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_SLOW_TIMEOUT_SECONDS = 1800
MAX_TIMEOUT_SECONDS = 7200

DEFAULT_API_VERSION = "2023-07-01"

# Wait budgets for known-slow resource families
CLUSTER_TIMEOUT_SECONDS = 20 * 60
NODE_POOL_TIMEOUT_SECONDS = 30 * 60
CLUSTER_DELETE_TIMEOUT_SECONDS = 5 * 60
NODE_POOL_DELETE_TIMEOUT_SECONDS = 15 * 60

# Absence checks after a delete poll less often than operations
DELETE_CHECK_INTERVAL_SECONDS = 60

MAX_SNAPSHOT_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max snapshot file

VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class OperationTimeouts:
    """Wait budgets for each lifecycle operation of one resource type."""

    create: float = DEFAULT_TIMEOUT_SECONDS
    update: float = DEFAULT_TIMEOUT_SECONDS
    delete: float = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        for name in ("create", "update", "delete"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} timeout must be positive")


@dataclass(frozen=True)
class ProviderConfig:
    """Provider configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Polling
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    slow_timeout_seconds: float = DEFAULT_SLOW_TIMEOUT_SECONDS

    # Remote API
    subscription_id: str = ""
    api_version: str = DEFAULT_API_VERSION

    # Logging
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.poll_interval_seconds <= 0:
            errors.append("PROVIDER_POLL_INTERVAL must be positive")
        elif self.poll_interval_seconds > MAX_POLL_INTERVAL_SECONDS:
            errors.append(
                f"PROVIDER_POLL_INTERVAL cannot exceed {MAX_POLL_INTERVAL_SECONDS} seconds"
            )

        if not (self.poll_interval_seconds <= self.default_timeout_seconds <= MAX_TIMEOUT_SECONDS):
            errors.append(
                "PROVIDER_DEFAULT_TIMEOUT must be between the poll interval "
                f"and {MAX_TIMEOUT_SECONDS} seconds"
            )

        if not (self.default_timeout_seconds <= self.slow_timeout_seconds <= MAX_TIMEOUT_SECONDS):
            errors.append(
                "PROVIDER_SLOW_TIMEOUT must be between the default timeout "
                f"and {MAX_TIMEOUT_SECONDS} seconds"
            )

        if self.subscription_id and not re.match(
            VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()
        ):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not self.api_version:
            errors.append("PROVIDER_API_VERSION cannot be empty")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"PROVIDER_LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_value(self) -> int:
        """Numeric logging level."""
        return logging.getLevelName(self.log_level.upper())

    def timeouts_for(self, slow: bool = False) -> OperationTimeouts:
        """Build the wait budgets for a resource family.

        Args:
            slow: True for families whose operations take minutes
                  (clusters, node pools).
        """
        budget = self.slow_timeout_seconds if slow else self.default_timeout_seconds
        return OperationTimeouts(create=budget, update=budget, delete=budget)

    @classmethod
    def from_env(cls) -> ProviderConfig:
        """Load configuration from environment variables.

        Environment Variables:
            PROVIDER_POLL_INTERVAL: Seconds between operation polls (default: 10)
            PROVIDER_DEFAULT_TIMEOUT: Wait budget when a caller names none (default: 60)
            PROVIDER_SLOW_TIMEOUT: Wait budget for slow families (default: 1800)
            PROVIDER_LOG_LEVEL: Logging level name (default: INFO)
            PROVIDER_API_VERSION: ARM API version for generic resources
            AZURE_SUBSCRIPTION_ID: Target subscription for the ARM client
        """

        def get_number(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return float(value) if "." in value else int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        return cls(
            poll_interval_seconds=get_number(
                "PROVIDER_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS
            ),
            default_timeout_seconds=get_number("PROVIDER_DEFAULT_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
            slow_timeout_seconds=get_number("PROVIDER_SLOW_TIMEOUT", DEFAULT_SLOW_TIMEOUT_SECONDS),
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            api_version=os.environ.get("PROVIDER_API_VERSION", DEFAULT_API_VERSION),
            log_level=os.environ.get("PROVIDER_LOG_LEVEL", "INFO"),
        )
