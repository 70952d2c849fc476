# src/kinesis_reader/cursor.py
"""
Pull-based, resumable iteration over a single shard.

A `ShardCursor` is an immutable value: the shard plus the checkpoint to read
from next. Advancing it reads exactly one batch and returns a
`ShardReadResult` carrying the records, the checkpoint after them, and the
cursor for the following batch (or None once the shard is exhausted).
Nothing is fetched until the caller asks for it.

    cursor = read_from_shard(service, "my-stream", "shardId-000000000000")
    while cursor is not None:
        result = await cursor.advance()
        process(result.records)
        save(result.checkpoint)
        cursor = result.next
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator, List, Optional

from kinesis_reader.controller import AdaptiveBatchSize
from kinesis_reader.kinesis import GetRecordsResult, KinesisService
from kinesis_reader.retry import RetryPolicy
from kinesis_reader.shard import Checkpoint, KinesisShard

if TYPE_CHECKING:
    from types_aiobotocore_kinesis.type_defs import RecordTypeDef

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShardReadResult:
    """
    One batch read from a shard.

    Attributes:
        records (List[RecordTypeDef]): The records read, possibly none.
        checkpoint (Checkpoint): The position right after these records.
        next (ShardCursor, optional): Reads the following batch. None once
            the shard has been read to its end.
        millis_behind_latest (int): The lag reported with this batch.
    """

    records: List["RecordTypeDef"]
    checkpoint: Checkpoint
    next: Optional["ShardCursor"] = None
    millis_behind_latest: int = 0

    @property
    def has_more(self) -> bool:
        return self.next is not None


@dataclass(frozen=True)
class ShardCursor:
    """
    A position in a shard that can be advanced by one batch.

    Attributes:
        shard (KinesisShard): The shard to read.
        checkpoint (Checkpoint): Where the next batch starts.
    """

    shard: KinesisShard
    checkpoint: Checkpoint = field(default_factory=Checkpoint)

    async def advance(self) -> ShardReadResult:
        """
        Reads the next batch of records.

        Returns:
            ShardReadResult: The batch, its checkpoint, and the next cursor.
        """
        shard_iterator: str = await self.shard.shard_iterator_from_checkpoint(
            self.checkpoint
        )
        response: GetRecordsResult = await self.shard.get_one_batch_of_records(
            shard_iterator, self.checkpoint
        )
        next_checkpoint: Checkpoint = next_checkpoint_from(response, self.checkpoint)
        logger.debug(
            f"Read {len(response.records)} record(s) from {self.shard.shard_id}, "
            f"{response.millis_behind_latest}ms behind latest."
        )
        return ShardReadResult(
            records=response.records,
            checkpoint=next_checkpoint,
            next=(
                ShardCursor(self.shard, next_checkpoint)
                if more_to_read(response)
                else None
            ),
            millis_behind_latest=response.millis_behind_latest,
        )


def more_to_read(response: GetRecordsResult) -> bool:
    """
    Whether a shard may still have records beyond `response`.

    A shard is only considered exhausted once Kinesis reports it is fully
    caught up and hands back no further iterator.
    """
    return bool(response.millis_behind_latest) or response.next_shard_iterator is not None


def next_checkpoint_from(
    response: GetRecordsResult, last_checkpoint: Checkpoint
) -> Checkpoint:
    """
    Computes the checkpoint that follows a fetched batch.

    Args:
        response (GetRecordsResult): The batch just fetched.
        last_checkpoint (Checkpoint): The checkpoint the batch was read from.

    Returns:
        Checkpoint: The server's next iterator, and the sequence number of
            the batch's last record, or the previous one for an empty batch.
    """
    last_sequence_number: Optional[str] = (
        response.records[-1]["SequenceNumber"]
        if response.records
        else last_checkpoint.last_read_sequence_number
    )
    return Checkpoint(
        shard_iterator=response.next_shard_iterator,
        last_read_sequence_number=last_sequence_number,
    )


def read_from_shard(
    service: KinesisService,
    stream_name: str,
    shard_id: str,
    checkpoint: Optional[Checkpoint] = None,
    batch_size: Optional[AdaptiveBatchSize] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> ShardCursor:
    """
    Creates a cursor at the start of a read.

    Args:
        service (KinesisService): The Kinesis service to read through.
        stream_name (str): The stream to read.
        shard_id (str): The shard to read.
        checkpoint (Checkpoint, optional): Where to resume. Defaults to the
            trim horizon.
        batch_size (AdaptiveBatchSize, optional): The shared batch size.
        retry_policy (RetryPolicy, optional): Budget for remote calls.

    Returns:
        ShardCursor: A cursor whose first `advance` reads the first batch.
    """
    shard: KinesisShard = KinesisShard(
        service,
        stream_name,
        shard_id,
        batch_size=batch_size,
        retry_policy=retry_policy,
    )
    return ShardCursor(shard, checkpoint or Checkpoint())


async def iter_shard(cursor: ShardCursor) -> AsyncIterator[ShardReadResult]:
    """
    Yields every batch from `cursor` until the shard is exhausted.

    Stopping early is safe: the generator never reads past what has been
    consumed.
    """
    current: Optional[ShardCursor] = cursor
    while current is not None:
        result: ShardReadResult = await current.advance()
        yield result
        current = result.next
