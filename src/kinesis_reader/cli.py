# src/kinesis_reader/cli.py
"""Command-line interface for the kinesis-reader tool."""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from kinesis_reader.config import Config, KinesisConfig, ReaderConfig
from kinesis_reader.exceptions import KinesisReaderError
from kinesis_reader.formatter import (
    OutputFormat,
    RecordWriter,
    get_formatter,
    get_formatter_options,
)
from kinesis_reader.kinesis import IteratorStatus, open_kinesis_service
from kinesis_reader.signals import GracefulShutdown

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")


def setup_logging(level: str) -> None:
    """Configure rich-based logging on stderr, leaving stdout for records."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True), rich_tracebacks=True, show_path=False
            )
        ],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def _kinesis_config(
    region: Optional[str], endpoint_url: Optional[str], profile: Optional[str]
) -> KinesisConfig:
    """Builds the connection config, letting unset options fall back to env vars."""
    overrides: Dict[str, Any] = {
        key: value
        for key, value in (
            ("region", region),
            ("endpoint_url", endpoint_url),
            ("profile", profile),
        )
        if value is not None
    }
    return KinesisConfig(**overrides)


def _run(ctx: click.Context, main: Callable[[], Awaitable[T]]) -> T:
    """
    Runs an async command, turning failures into a logged message and exit code 1.

    Args:
        ctx (click.Context): The invoking context; `--debug` adds tracebacks.
        main (Callable[[], Awaitable[T]]): The command body.

    Returns:
        T: Whatever the command body returns.
    """
    debug: bool = ctx.obj.get("debug", False) if ctx.obj else False
    try:
        return asyncio.run(main())
    except KinesisReaderError as e:
        logger.critical(
            f"A critical application error occurred ({type(e).__name__}): {e}",
            exc_info=debug,
        )
        sys.exit(1)
    except asyncio.CancelledError:
        logger.warning("Shutdown signal received. Exiting.")
        sys.exit(1)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)


def connection_options(f: Callable[..., Any]) -> Callable[..., Any]:
    """Adds the options shared by every command that talks to Kinesis."""
    f = click.option(
        "--profile",
        default=None,
        help="AWS shared-config profile to use. [env: KINESIS_READER_PROFILE]",
    )(f)
    f = click.option(
        "--endpoint-url",
        default=None,
        help="Override the Kinesis endpoint. [env: KINESIS_READER_ENDPOINT_URL]",
    )(f)
    f = click.option(
        "-r",
        "--region",
        default=None,
        help="The AWS region of the stream. [env: KINESIS_READER_REGION]",
    )(f)
    return f


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
@click.option("--debug", is_flag=True, hidden=True, help="Show full tracebacks.")
@click.pass_context
def cli(ctx: click.Context, log_level: str, debug: bool) -> None:
    """
    Read records from an AWS Kinesis data stream.

    Connection settings can also be given through environment variables,
    or a .env file in the working directory.
    """
    load_dotenv()
    setup_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("stream_name")
@connection_options
@click.option(
    "-s",
    "--shard",
    "shards",
    multiple=True,
    help="A shard to read from. Give this option multiple times to read "
    "from multiple shards.",
)
@click.option(
    "-a", "--all", "all_shards", is_flag=True, help="Read from all shards."
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Output the records as pretty-printed JSON.",
)
@click.option(
    "--jsonl",
    "--json-lines",
    "as_jsonl",
    is_flag=True,
    help="Output the records in JSON lines, one line per record.",
)
@click.option(
    "-c",
    "--checkpoint-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Read initial checkpoints from this file, if present, and write "
    "the new checkpoints to it when done.",
)
@click.option(
    "--replace-checkpoints",
    is_flag=True,
    help="Rewrite the checkpoint file instead of appending to it.",
)
@click.option(
    "-d",
    "--data-format",
    type=click.Choice(get_formatter_options()),
    default="utf-8",
    help="How to render the data payload of each record.",
    show_default=True,
)
@click.option(
    "--since",
    type=click.DateTime(),
    default=None,
    help="Start shards without a checkpoint at this time instead of the "
    "trim horizon.",
)
@click.option(
    "--until",
    type=click.DateTime(),
    default=None,
    help="Stop each shard at the first record that arrived at or after this time.",
)
@click.option(
    "--follow/--no-follow",
    default=False,
    help="Keep reading open shards after catching up, until they are closed.",
    show_default=True,
)
@click.option(
    "--poll-interval",
    type=click.FloatRange(min=0),
    default=1.0,
    help="Seconds to wait after an empty batch while following.",
    show_default=True,
)
@click.pass_context
def dump(
    ctx: click.Context,
    stream_name: str,
    region: Optional[str],
    endpoint_url: Optional[str],
    profile: Optional[str],
    shards: Tuple[str, ...],
    all_shards: bool,
    as_json: bool,
    as_jsonl: bool,
    checkpoint_file: Optional[Path],
    replace_checkpoints: bool,
    data_format: str,
    since: Optional[datetime],
    until: Optional[datetime],
    follow: bool,
    poll_interval: float,
) -> None:
    """
    Dump records from the specified stream.

    Records are written to standard output. With a checkpoint file, a later
    run picks up each shard where this one stopped, including shards that
    failed part-way.
    """
    if all_shards and shards:
        raise click.UsageError("--all and --shard are mutually exclusive.")
    if as_json and as_jsonl:
        raise click.UsageError("--json and --jsonl are mutually exclusive.")

    # Lazily import to keep the CLI fast
    from kinesis_reader.pipeline import DumpOptions, KinesisReaderPipeline

    output_format: OutputFormat = (
        OutputFormat.JSON
        if as_json
        else OutputFormat.JSONL if as_jsonl else OutputFormat.PRETTY
    )
    options: DumpOptions = DumpOptions(
        stream_name=stream_name,
        shard_ids=shards,
        all_shards=all_shards,
        checkpoint_file=checkpoint_file,
        replace_checkpoints=replace_checkpoints,
        since=since,
        until=until,
        follow=follow,
    )

    async def main() -> None:
        config: Config = Config(
            kinesis=_kinesis_config(region, endpoint_url, profile),
            reader=ReaderConfig(poll_interval_s=poll_interval),
        )
        writer: RecordWriter = RecordWriter(output_format, get_formatter(data_format))
        async with GracefulShutdown() as shutdown_event:
            pipeline: KinesisReaderPipeline = KinesisReaderPipeline(
                config, options, writer, shutdown_event
            )
            await pipeline.run()

    _run(ctx, main)


@cli.command("list-shards")
@click.argument("stream_name")
@connection_options
@click.pass_context
def list_shards(
    ctx: click.Context,
    stream_name: str,
    region: Optional[str],
    endpoint_url: Optional[str],
    profile: Optional[str],
) -> None:
    """List the shard IDs of a stream, one per line."""

    async def main() -> None:
        async with open_kinesis_service(
            _kinesis_config(region, endpoint_url, profile)
        ) as service:
            for shard_id in await service.list_shards(stream_name):
                click.echo(shard_id)

    _run(ctx, main)


@cli.command("check-iterator")
@click.argument("shard_iterator")
@connection_options
@click.pass_context
def check_iterator(
    ctx: click.Context,
    shard_iterator: str,
    region: Optional[str],
    endpoint_url: Optional[str],
    profile: Optional[str],
) -> None:
    """
    Report how far a shard iterator is behind the tip of its shard.

    Exits with status 1 if the iterator has expired or is invalid.
    """

    async def main() -> IteratorStatus:
        async with open_kinesis_service(
            _kinesis_config(region, endpoint_url, profile)
        ) as service:
            return await service.check_iterator(shard_iterator)

    status: IteratorStatus = _run(ctx, main)
    if not status.valid:
        click.echo(f"Iterator is not usable: {status.reason}")
        sys.exit(1)
    click.echo(f"{status.millis_behind_latest}ms behind latest")


if __name__ == "__main__":
    cli()
