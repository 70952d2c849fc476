# src/kinesis_reader/pipeline.py
"""Core orchestration logic for the `dump` command."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from kinesis_reader.checkpoints import CheckpointStore, ShardCheckpoint, ShardKey
from kinesis_reader.config import Config
from kinesis_reader.controller import AdaptiveBatchSize
from kinesis_reader.cursor import ShardCursor, ShardReadResult, read_from_shard
from kinesis_reader.exceptions import CallerError, ShardReadError
from kinesis_reader.formatter import RecordWriter
from kinesis_reader.kinesis import KinesisService, open_kinesis_service
from kinesis_reader.retry import RetryPolicy, Sleep
from kinesis_reader.shard import Checkpoint

if TYPE_CHECKING:
    from types_aiobotocore_kinesis.type_defs import RecordTypeDef

logger: logging.Logger = logging.getLogger(__name__)


def _as_aware(value: datetime) -> datetime:
    """Interprets naive datetimes as local time."""
    return value if value.tzinfo is not None else value.astimezone()


@dataclass(frozen=True)
class DumpOptions:
    """
    What to read in one `dump` run.

    Attributes:
        stream_name (str): The stream to read.
        shard_ids (Tuple[str, ...]): Shards to read, unless `all_shards`.
        all_shards (bool): Read every shard in the stream.
        checkpoint_file (Path, optional): Where checkpoints are loaded from
            and saved to.
        replace_checkpoints (bool): Rewrite the checkpoint file instead of
            appending to it.
        since (datetime, optional): Start time for shards without a
            checkpoint. Defaults to the trim horizon.
        until (datetime, optional): Stop each shard at the first record
            that arrived at or after this time.
        follow (bool): Keep reading past the tip of open shards until they
            are closed, instead of stopping once caught up.
    """

    stream_name: str
    shard_ids: Tuple[str, ...] = ()
    all_shards: bool = False
    checkpoint_file: Optional[Path] = None
    replace_checkpoints: bool = False
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    follow: bool = False


@dataclass(frozen=True)
class ShardOutcome:
    """
    How the read of one shard ended.

    Attributes:
        shard_id (str): The shard.
        checkpoint (Checkpoint): The last checkpoint reached.
        records_read (int): Records written for this shard.
        error (BaseException, optional): Why the read stopped early, if it
            failed.
    """

    shard_id: str
    checkpoint: Checkpoint
    records_read: int = 0
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class KinesisReaderPipeline:
    """Reads the requested shards of a stream and writes their records."""

    def __init__(
        self,
        config: Config,
        options: DumpOptions,
        writer: RecordWriter,
        shutdown_event: Optional[asyncio.Event] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Initializes the pipeline with the given configuration.

        Args:
            config (Config): The application configuration.
            options (DumpOptions): What to read.
            writer (RecordWriter): Where records are written.
            shutdown_event (asyncio.Event, optional): Set to stop reading
                after the current batches.
            sleep (Sleep): Used for poll pauses while following shards.
        """
        self._config: Config = config
        self._options: DumpOptions = options
        self._writer: RecordWriter = writer
        self._shutdown_event: asyncio.Event = shutdown_event or asyncio.Event()
        self._sleep: Sleep = sleep
        self._since: Optional[datetime] = (
            _as_aware(options.since) if options.since else None
        )
        self._until: Optional[datetime] = (
            _as_aware(options.until) if options.until else None
        )

    async def run(self) -> List[ShardOutcome]:
        """
        Connects to Kinesis and performs the dump.

        Returns:
            List[ShardOutcome]: One outcome per shard read.
        """
        async with open_kinesis_service(self._config.kinesis) as service:
            return await self.dump(service)

    async def dump(self, service: KinesisService) -> List[ShardOutcome]:
        """
        Reads every requested shard concurrently, then saves checkpoints.

        Checkpoints are saved for every shard, including those that failed,
        so a later run resumes each shard from the last batch it completed.

        Args:
            service (KinesisService): The Kinesis service to read through.

        Returns:
            List[ShardOutcome]: One outcome per shard read.

        Raises:
            CallerError: No shards were specified or found.
            ShardReadError: One or more shards failed.
        """
        logger.info(f"Starting dump of stream '{self._options.stream_name}'.")
        shard_ids: List[str] = await self._resolve_shard_ids(service)
        if not shard_ids:
            raise CallerError("No shard IDs specified")

        store: Optional[CheckpointStore] = (
            CheckpointStore(self._options.checkpoint_file)
            if self._options.checkpoint_file
            else None
        )
        saved: Dict[ShardKey, Checkpoint] = store.load() if store else {}

        batch_size: AdaptiveBatchSize = AdaptiveBatchSize.from_config(
            self._config.reader
        )
        retry_policy: RetryPolicy = RetryPolicy.from_config(self._config.reader)

        outcomes: List[ShardOutcome] = await asyncio.gather(
            *(
                self._dump_shard(
                    read_from_shard(
                        service,
                        self._options.stream_name,
                        shard_id,
                        self._initial_checkpoint(saved, shard_id),
                        batch_size=batch_size,
                        retry_policy=retry_policy,
                    )
                )
                for shard_id in shard_ids
            )
        )

        if store:
            store.save(
                (
                    ShardCheckpoint(
                        self._options.stream_name, outcome.shard_id, outcome.checkpoint
                    )
                    for outcome in outcomes
                ),
                replace=self._options.replace_checkpoints,
            )

        total: int = sum(outcome.records_read for outcome in outcomes)
        failures: Dict[str, BaseException] = {
            outcome.shard_id: outcome.error
            for outcome in outcomes
            if outcome.error is not None
        }
        if failures:
            raise ShardReadError(failures)
        logger.info(f"Read {total} record(s) from {len(outcomes)} shard(s).")
        return outcomes

    async def _resolve_shard_ids(self, service: KinesisService) -> List[str]:
        if self._options.all_shards:
            return await service.list_shards(self._options.stream_name)
        return list(self._options.shard_ids)

    def _initial_checkpoint(
        self, saved: Dict[ShardKey, Checkpoint], shard_id: str
    ) -> Checkpoint:
        checkpoint: Optional[Checkpoint] = saved.get(
            (self._options.stream_name, shard_id)
        )
        if checkpoint is not None:
            return checkpoint
        return Checkpoint(timestamp=self._since)

    def _split_at_cutoff(
        self, records: List["RecordTypeDef"]
    ) -> Tuple[List["RecordTypeDef"], bool]:
        """
        Drops records at or after the `until` cutoff.

        Returns:
            Tuple[List[RecordTypeDef], bool]: The records before the cutoff,
                and whether the cutoff was reached.
        """
        if self._until is None:
            return records, False
        for index, record in enumerate(records):
            arrival: datetime = _as_aware(record["ApproximateArrivalTimestamp"])
            if arrival >= self._until:
                return records[:index], True
        return records, False

    async def _dump_shard(self, cursor: ShardCursor) -> ShardOutcome:
        """
        Reads one shard, batch by batch, until a stopping condition.

        A failure ends this shard only; it is reported in the outcome along
        with the last checkpoint reached.

        Args:
            cursor (ShardCursor): Where to start reading.

        Returns:
            ShardOutcome: How the read ended.
        """
        shard_id: str = cursor.shard.shard_id
        stream_name: str = self._options.stream_name
        checkpoint: Checkpoint = cursor.checkpoint
        records_read: int = 0
        current: Optional[ShardCursor] = cursor

        try:
            while current is not None:
                if self._shutdown_event.is_set():
                    logger.warning(f"Shutdown requested; stopping {shard_id}.")
                    break

                result: ShardReadResult = await current.advance()
                records, cutoff_reached = self._split_at_cutoff(result.records)
                self._writer.write_all(stream_name, shard_id, records)
                records_read += len(records)

                if cutoff_reached:
                    # Resume right before the first record past the cutoff.
                    checkpoint = Checkpoint(
                        last_read_sequence_number=(
                            records[-1]["SequenceNumber"]
                            if records
                            else current.checkpoint.last_read_sequence_number
                        ),
                        timestamp=current.checkpoint.timestamp,
                    )
                    logger.info(f"Reached the cutoff time on {shard_id}.")
                    break

                checkpoint = result.checkpoint
                caught_up: bool = result.millis_behind_latest == 0
                if caught_up and not self._options.follow:
                    logger.debug(f"Caught up with the tip of {shard_id}.")
                    break
                if caught_up and not result.records and result.has_more:
                    await self._sleep(self._config.reader.poll_interval_s)
                current = result.next
            else:
                logger.info(f"Shard {shard_id} has been read to its end.")
        except Exception as e:
            logger.error(f"Failed reading {shard_id}: {type(e).__name__}: {e}")
            return ShardOutcome(shard_id, checkpoint, records_read, error=e)

        return ShardOutcome(shard_id, checkpoint, records_read)
