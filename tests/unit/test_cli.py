# tests/unit/test_cli.py
"""Unit tests for the command-line interface."""

import json
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List
from unittest.mock import patch

import pytest
from click.testing import CliRunner, Result

from kinesis_reader.cli import cli

SHARD_ID: str = "shardId-000000000000"


@asynccontextmanager
async def serving(service: Any) -> AsyncIterator[Any]:
    yield service


def patch_service(target: str, service: Any) -> Any:
    """
    Replaces `open_kinesis_service` in `target` with one yielding `service`.

    Args:
        target (str): The module that opens the service.
        service (Any): The stand-in service to yield.
    """
    return patch(
        f"kinesis_reader.{target}.open_kinesis_service",
        lambda config: serving(service),
    )


def json_lines(output: str) -> List[Dict[str, Any]]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


def test_cli_config_error_on_missing_region(caplog: pytest.LogCaptureFixture) -> None:
    """
    Tests that the CLI exits with a status code of 1 on a `ConfigError`.

    Arrange:
        - Ensure no region is configured in the environment.
        - Use a `CliRunner` to invoke the command.
    Act:
        - Run the `list-shards` command without `--region`.
    Assert:
        - The exit code is 1.
        - The log contains the expected error message about the missing variable.

    Args:
        caplog (pytest.LogCaptureFixture): Pytest fixture to capture log output.
    """
    # Arrange
    runner: CliRunner = CliRunner()
    with patch.dict(os.environ):
        for name in ("KINESIS_READER_REGION", "AWS_DEFAULT_REGION"):
            os.environ.pop(name, None)

        # Act
        result: Result = runner.invoke(cli, ["list-shards", "my-stream"])

    # Assert
    assert result.exit_code == 1
    assert (
        "A critical application error occurred (ConfigError): Environment variable "
        "'KINESIS_READER_REGION' must be set." in caplog.text
    )


@pytest.mark.parametrize(
    "args",
    [
        ["dump", "my-stream", "--all", "-s", SHARD_ID],
        ["dump", "my-stream", "--all", "--json", "--jsonl"],
        ["dump", "my-stream", "--all", "-d", "yaml"],
    ],
)
def test_dump_usage_errors(args: List[str]) -> None:
    """
    Tests option combinations that are rejected before anything is read.

    Args:
        args (List[str]): The command-line arguments.
    """
    result: Result = CliRunner().invoke(cli, args)
    assert result.exit_code == 2


def test_dump_without_shards_fails(caplog: pytest.LogCaptureFixture, fake_kinesis: Any) -> None:
    with patch_service("pipeline", fake_kinesis):
        result: Result = CliRunner().invoke(
            cli, ["dump", fake_kinesis.stream_name, "-r", "us-east-1"]
        )

    assert result.exit_code == 1
    assert "No shard IDs specified" in caplog.text


def test_list_shards(fake_kinesis: Any) -> None:
    fake_kinesis.add_shard("shardId-000000000000", [])
    fake_kinesis.add_shard("shardId-000000000001", [])

    with patch_service("cli", fake_kinesis):
        result: Result = CliRunner().invoke(
            cli, ["list-shards", fake_kinesis.stream_name, "-r", "us-east-1"]
        )

    assert result.exit_code == 0
    assert result.output.splitlines() == [
        "shardId-000000000000",
        "shardId-000000000001",
    ]


def test_check_iterator_reports_lag(
    fake_kinesis: Any, record_factory: Callable[..., List[Any]]
) -> None:
    fake_kinesis.add_shard(SHARD_ID, record_factory(3))

    with patch_service("cli", fake_kinesis):
        result: Result = CliRunner().invoke(
            cli, ["check-iterator", f"{SHARD_ID}:1:0", "-r", "us-east-1"]
        )

    assert result.exit_code == 0
    assert "1000ms behind latest" in result.output


def test_check_iterator_expired(
    fake_kinesis: Any, record_factory: Callable[..., List[Any]]
) -> None:
    fake_kinesis.add_shard(SHARD_ID, record_factory(3))
    fake_kinesis.expire_all_iterators()

    with patch_service("cli", fake_kinesis):
        result: Result = CliRunner().invoke(
            cli, ["check-iterator", f"{SHARD_ID}:1:0", "-r", "us-east-1"]
        )

    assert result.exit_code == 1
    assert "Iterator is not usable: expired" in result.output


def test_dump_jsonl_and_resume(
    tmp_path: Path, fake_kinesis: Any, record_factory: Callable[..., List[Any]]
) -> None:
    """
    Tests two `dump` runs sharing a checkpoint file.

    Arrange:
        - An open shard with three records.
    Act:
        - Dump it as JSON lines with a checkpoint file.
        - Add two records and dump again with the same file.
    Assert:
        - The first run prints the three records, the second only the new
          two, and both runs append to the checkpoint file.
    """
    # Arrange
    records: List[Any] = record_factory(5)
    fake_kinesis.add_shard(SHARD_ID, records[:3], closed=False)
    checkpoint_file: Path = tmp_path / "checkpoints.jsonl"
    args: List[str] = [
        "dump",
        fake_kinesis.stream_name,
        "-s",
        SHARD_ID,
        "--jsonl",
        "-c",
        str(checkpoint_file),
        "-r",
        "us-east-1",
    ]
    runner: CliRunner = CliRunner()

    # Act
    with patch_service("pipeline", fake_kinesis):
        first: Result = runner.invoke(cli, args)
        fake_kinesis.shards[SHARD_ID].extend(records[3:])
        second: Result = runner.invoke(cli, args)

    # Assert
    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert [r["_data"] for r in json_lines(first.output)] == [
        "record-0-0",
        "record-0-1",
        "record-0-2",
    ]
    assert [r["SequenceNumber"] for r in json_lines(second.output)] == [
        r["SequenceNumber"] for r in records[3:]
    ]
    assert all(r["_shardId"] == SHARD_ID for r in json_lines(first.output))
    assert len(checkpoint_file.read_text().splitlines()) == 2


def test_dump_hex_payloads(
    fake_kinesis: Any, record_factory: Callable[..., List[Any]]
) -> None:
    fake_kinesis.add_shard(SHARD_ID, record_factory(1))

    with patch_service("pipeline", fake_kinesis):
        result: Result = CliRunner().invoke(
            cli,
            [
                "dump",
                fake_kinesis.stream_name,
                "--all",
                "--jsonl",
                "-d",
                "hex",
                "-r",
                "us-east-1",
            ],
        )

    assert result.exit_code == 0, result.output
    assert json_lines(result.output)[0]["_data"] == b"record-0-0".hex()
