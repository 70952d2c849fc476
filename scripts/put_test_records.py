# scripts/put_test_records.py
"""
Puts synthetic records into a Kinesis stream.

This script is a development aid for trying out `kinesis-reader` against a
local Kinesis endpoint (LocalStack, kinesalite) or a scratch stream. It
creates the stream if asked to, then writes numbered JSON payloads in
PutRecords chunks, spreading them across shards with random partition keys.
"""

import asyncio
import json
import logging
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterator, List

import click
from aiobotocore.session import AioSession, get_session
from dotenv import load_dotenv
from rich.logging import RichHandler

from kinesis_reader.config import KinesisConfig
from kinesis_reader.exceptions import KinesisReaderError

if TYPE_CHECKING:
    from types_aiobotocore_kinesis.client import KinesisClient
    from types_aiobotocore_kinesis.type_defs import (
        PutRecordsOutputTypeDef,
        PutRecordsRequestEntryTypeDef,
    )

logger: logging.Logger = logging.getLogger(__name__)

# PutRecords accepts at most 500 entries per call.
MAX_RECORDS_PER_CALL: int = 500


@dataclass(frozen=True)
class ScriptConfig:
    """
    Top-level configuration for the record producer script.

    Attributes:
        stream_name (str): The stream to write to.
        count (int): Number of records to write.
        shard_count (int): Shards to create the stream with.
        create_stream (bool): Create the stream before writing.
        kinesis (KinesisConfig): Kinesis client configuration.
    """

    stream_name: str
    count: int
    shard_count: int
    create_stream: bool
    kinesis: KinesisConfig


def setup_logging(level: str) -> None:
    """
    Configure rich-based logging for the script.

    Args:
        level (str): The desired logging level (e.g., "INFO", "DEBUG").
    """
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    for logger_name in ["botocore", "aiobotocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def generate_entries(count: int) -> Iterator["PutRecordsRequestEntryTypeDef"]:
    """
    Yields PutRecords entries with numbered JSON payloads.

    Args:
        count (int): The number of entries to generate.
    """
    for index in range(count):
        payload: Dict[str, Any] = {
            "index": index,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        yield {
            "Data": json.dumps(payload).encode("utf-8"),
            "PartitionKey": str(uuid.uuid4()),
        }


async def _ensure_stream(client: "KinesisClient", config: ScriptConfig) -> None:
    """Creates the stream and waits until it is active."""
    logger.info(
        f"Creating stream '{config.stream_name}' with {config.shard_count} shard(s)..."
    )
    await client.create_stream(
        StreamName=config.stream_name, ShardCount=config.shard_count
    )
    waiter = client.get_waiter("stream_exists")
    await waiter.wait(StreamName=config.stream_name)
    logger.info(f"Stream '{config.stream_name}' is active.")


async def _put_chunk(
    client: "KinesisClient",
    stream_name: str,
    entries: List["PutRecordsRequestEntryTypeDef"],
) -> int:
    """
    Writes one chunk of entries, resubmitting any the service rejected.

    Returns:
        int: The number of entries written.
    """
    pending: List["PutRecordsRequestEntryTypeDef"] = entries
    while pending:
        response: "PutRecordsOutputTypeDef" = await client.put_records(
            StreamName=stream_name, Records=pending
        )
        failed_count: int = response.get("FailedRecordCount", 0)
        if not failed_count:
            break
        logger.warning(f"{failed_count} record(s) rejected; resubmitting.")
        pending = [
            entry
            for entry, result in zip(pending, response["Records"])
            if "ErrorCode" in result
        ]
        await asyncio.sleep(0.5)
    return len(entries)


async def put_records(config: ScriptConfig) -> None:
    """
    Writes `config.count` synthetic records to the stream.

    Args:
        config (ScriptConfig): The script's configuration object.
    """
    session: AioSession = get_session()
    async with session.create_client(
        "kinesis", **config.kinesis.as_boto_dict()
    ) as client:
        if config.create_stream:
            await _ensure_stream(client, config)

        written: int = 0
        chunk: List["PutRecordsRequestEntryTypeDef"] = []
        for entry in generate_entries(config.count):
            chunk.append(entry)
            if len(chunk) == MAX_RECORDS_PER_CALL:
                written += await _put_chunk(client, config.stream_name, chunk)
                chunk = []
        if chunk:
            written += await _put_chunk(client, config.stream_name, chunk)

    logger.info(f"Finished. Wrote {written:,} record(s) to '{config.stream_name}'.")


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.argument("stream_name")
@click.option(
    "--count",
    default=1000,
    show_default=True,
    type=click.IntRange(min=1),
    help="Number of records to write.",
)
@click.option(
    "--create",
    "create_stream",
    is_flag=True,
    help="Create the stream before writing to it.",
)
@click.option(
    "--shard-count",
    default=2,
    show_default=True,
    type=click.IntRange(min=1),
    help="Shards to create the stream with, when used with --create.",
)
@click.option("-r", "--region", default=None, help="The AWS region of the stream.")
@click.option("--endpoint-url", default=None, help="Override the Kinesis endpoint.")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
def cli(**kwargs: Any) -> None:
    """
    Write synthetic JSON records to a Kinesis stream.

    Connection settings fall back to the same environment variables as
    kinesis-reader (KINESIS_READER_REGION, KINESIS_READER_ENDPOINT_URL).
    """
    load_dotenv()
    setup_logging(kwargs["log_level"])

    try:
        overrides: Dict[str, Any] = {
            key: kwargs[key]
            for key in ("region", "endpoint_url")
            if kwargs[key] is not None
        }
        config: ScriptConfig = ScriptConfig(
            stream_name=kwargs["stream_name"],
            count=kwargs["count"],
            shard_count=kwargs["shard_count"],
            create_stream=kwargs["create_stream"],
            kinesis=KinesisConfig(**overrides),
        )
        asyncio.run(put_records(config))
    except KinesisReaderError as e:
        logger.critical(f"Error: {e}")
        sys.exit(1)
    except Exception:
        logger.critical("An unexpected error occurred:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
