# tests/unit/test_config.py
"""Unit tests for environment-driven configuration."""

import os
from typing import Dict
from unittest.mock import patch

import pytest

from kinesis_reader.config import Config, KinesisConfig, ReaderConfig
from kinesis_reader.exceptions import ConfigError, FailureKind


def clean_env(**values: str) -> Dict[str, str]:
    """Environment without any kinesis-reader or AWS region variables."""
    env: Dict[str, str] = {
        key: value
        for key, value in os.environ.items()
        if not key.startswith("KINESIS_READER_") and key != "AWS_DEFAULT_REGION"
    }
    env.update(values)
    return env


def test_region_from_env() -> None:
    with patch.dict(os.environ, clean_env(KINESIS_READER_REGION="eu-west-1"), clear=True):
        config: KinesisConfig = KinesisConfig()

    assert config.region == "eu-west-1"
    assert config.endpoint_url is None
    assert config.profile is None


def test_region_falls_back_to_aws_default_region() -> None:
    with patch.dict(os.environ, clean_env(AWS_DEFAULT_REGION="ap-south-1"), clear=True):
        assert KinesisConfig().region == "ap-south-1"


def test_missing_region_is_a_config_error() -> None:
    with patch.dict(os.environ, clean_env(), clear=True):
        with pytest.raises(ConfigError) as exc_info:
            KinesisConfig()

    assert exc_info.value.kind is FailureKind.CALLER
    assert "KINESIS_READER_REGION" in str(exc_info.value)


def test_explicit_values_skip_the_environment() -> None:
    with patch.dict(os.environ, clean_env(), clear=True):
        config: KinesisConfig = KinesisConfig(
            region="us-east-1", endpoint_url="http://localhost:4566"
        )

    assert config.as_boto_dict() == {
        "region_name": "us-east-1",
        "endpoint_url": "http://localhost:4566",
    }


def test_empty_endpoint_is_unset() -> None:
    env: Dict[str, str] = clean_env(
        KINESIS_READER_REGION="us-east-1", KINESIS_READER_ENDPOINT_URL=""
    )
    with patch.dict(os.environ, env, clear=True):
        config: KinesisConfig = KinesisConfig()

    assert config.as_boto_dict() == {"region_name": "us-east-1"}


def test_reader_defaults() -> None:
    """
    Tests the documented defaults for retries and batch sizing.
    """
    reader: ReaderConfig = Config(kinesis=KinesisConfig(region="us-east-1")).reader

    assert reader.max_retries == 10
    assert reader.initial_backoff_ms == 10
    assert (reader.min_batch_size, reader.max_batch_size) == (1, 10_000)
    assert reader.initial_batch_size == 2500
