# src/kinesis_reader/config.py
"""
Configuration for the kinesis-reader tool.

This module centralizes all configuration, loading connection values from
environment variables and providing typed dataclasses for use throughout
the application.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from kinesis_reader.exceptions import ConfigError


def _get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Retrieves a required environment variable.

    Args:
        name (str): The name of the environment variable.
        default (str, optional): The default value if the variable is not set.

    Returns:
        str: The value of the environment variable.
    """
    value: Optional[str] = os.environ.get(name, default)
    if not value:
        raise ConfigError(f"Environment variable '{name}' must be set.")
    return value


def _get_optional_env_var(name: str) -> Optional[str]:
    """Returns the variable's value, treating an empty string as unset."""
    return os.environ.get(name) or None


@dataclass(frozen=True)
class KinesisConfig:
    """
    Represents the connection settings for the Kinesis endpoint.

    Attributes:
        region (str): The AWS region of the stream.
        endpoint_url (str, optional): Override endpoint, e.g. for LocalStack.
        profile (str, optional): A named profile from the AWS shared config.
        client_max_attempts (int): Attempts made by botocore itself for each
            call. Kept at 1 so the reader's own retry logic is in charge.
        max_pool_connections (int): Size of the HTTP connection pool shared
            by all shards.
    """

    region: str = field(
        default_factory=lambda: _get_env_var(
            "KINESIS_READER_REGION", os.environ.get("AWS_DEFAULT_REGION")
        )
    )
    endpoint_url: Optional[str] = field(
        default_factory=lambda: _get_optional_env_var("KINESIS_READER_ENDPOINT_URL")
    )
    profile: Optional[str] = field(
        default_factory=lambda: _get_optional_env_var("KINESIS_READER_PROFILE")
    )
    client_max_attempts: int = 1
    max_pool_connections: int = 50

    def as_boto_dict(self) -> Dict[str, Any]:
        """
        Returns the configuration as a dictionary suitable for aiobotocore clients.

        Returns:
            Dict[str, Any]: A dictionary of client parameters.
        """
        params: Dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            params["endpoint_url"] = self.endpoint_url
        return params


@dataclass(frozen=True)
class ReaderConfig:
    """
    Defines the reader's operational parameters.

    Attributes:
        max_retries (int): Retries allowed after the first failed attempt.
        initial_backoff_ms (int): Wait before the first retry, in milliseconds.
        backoff_dither_factor (float): Maximum jitter as a fraction of the
            current backoff.
        min_batch_size (int): Smallest `Limit` ever requested from GetRecords.
        max_batch_size (int): Largest `Limit` ever requested from GetRecords.
        batch_size_increase_multiple (float): Growth applied after a success.
        batch_size_decrease_multiple (float): Shrink applied after throttling.
        poll_interval_s (float): Pause after an empty, caught-up batch when
            following a shard.
    """

    max_retries: int = 10
    initial_backoff_ms: int = 10
    backoff_dither_factor: float = 1.0
    min_batch_size: int = 1
    max_batch_size: int = 10000
    batch_size_increase_multiple: float = 1.5
    batch_size_decrease_multiple: float = 0.5
    poll_interval_s: float = 1.0

    @property
    def initial_batch_size(self) -> int:
        """One quarter of the maximum batch size."""
        return self.max_batch_size // 4


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container for the entire application.

    Attributes:
        kinesis (KinesisConfig): Connection settings for Kinesis.
        reader (ReaderConfig): General reader settings.
    """

    kinesis: KinesisConfig = field(default_factory=KinesisConfig)
    reader: ReaderConfig = field(default_factory=ReaderConfig)
