# src/kinesis_reader/shard.py
"""
Reading from a single Kinesis shard.

This module holds the `Checkpoint` value and the `KinesisShard` client that
acquires shard iterators and fetches pages of records. Generic fault
handling is delegated to `with_retry`; the shard client adds the two
shard-specific recoveries on top of it: refreshing an expired iterator, and
shrinking the request size when throughput is exceeded.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional, Union

from kinesis_reader.config import ReaderConfig
from kinesis_reader.controller import AdaptiveBatchSize
from kinesis_reader.exceptions import (
    CheckpointError,
    ExpiredIteratorError,
    ThroughputExceededError,
)
from kinesis_reader.kinesis import GetRecordsResult, KinesisService
from kinesis_reader.retry import RetryPolicy, Sleep, with_retry

logger: logging.Logger = logging.getLogger(__name__)

# Shared by every shard client that isn't handed its own instance.
shared_batch_size: AdaptiveBatchSize = AdaptiveBatchSize.from_config(ReaderConfig())


class IteratorType(str, enum.Enum):
    """The ways a new shard iterator can be positioned."""

    TRIM_HORIZON = "TRIM_HORIZON"
    AFTER_SEQUENCE_NUMBER = "AFTER_SEQUENCE_NUMBER"
    AT_TIMESTAMP = "AT_TIMESTAMP"


@dataclass(frozen=True)
class Checkpoint:
    """
    A resumable position within one shard.

    The `last_read_sequence_number` names a specific record, while the
    `shard_iterator` may have advanced past it through empty stretches of
    the shard (but never past another record). A still-valid iterator
    should be read from directly; once it expires, a new iterator can be
    requested right after the last read sequence number.

    Attributes:
        shard_iterator (str, optional): Server-issued, time-limited cursor.
        last_read_sequence_number (str, optional): The last record consumed.
        timestamp (datetime, optional): Where to start when nothing else is
            known.
    """

    shard_iterator: Optional[str] = None
    last_read_sequence_number: Optional[str] = None
    timestamp: Optional[datetime] = None

    def without_iterator(self) -> "Checkpoint":
        """The same position, minus the (possibly expired) shard iterator."""
        return replace(self, shard_iterator=None)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "shard_iterator": self.shard_iterator,
            "last_read_sequence_number": self.last_read_sequence_number,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        """
        Rebuilds a checkpoint from its `to_dict` form.

        Args:
            data (Dict[str, Any]): The serialized checkpoint. Unknown keys
                are ignored.

        Returns:
            Checkpoint: The deserialized checkpoint.
        """
        raw_timestamp: Optional[str] = data.get("timestamp")
        try:
            timestamp: Optional[datetime] = (
                datetime.fromisoformat(raw_timestamp) if raw_timestamp else None
            )
        except (TypeError, ValueError) as e:
            raise CheckpointError(
                f"Invalid checkpoint timestamp: {raw_timestamp!r}"
            ) from e
        return cls(
            shard_iterator=data.get("shard_iterator") or None,
            last_read_sequence_number=data.get("last_read_sequence_number") or None,
            timestamp=timestamp,
        )


class _IteratorExpired:
    """Marks a fetch attempt that hit an expired shard iterator."""


_EXPIRED = _IteratorExpired()


class KinesisShard:
    """
    One shard of one stream, plus what is needed to read it.

    The service handle and the batch size are shared with every other shard
    being read; only the shard identity is owned by this instance.
    """

    def __init__(
        self,
        service: KinesisService,
        stream_name: str,
        shard_id: str,
        batch_size: Optional[AdaptiveBatchSize] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Args:
            service (KinesisService): The shared Kinesis service.
            stream_name (str): The stream the shard belongs to.
            shard_id (str): The shard to read.
            batch_size (AdaptiveBatchSize, optional): The shared batch size.
                Defaults to the module-wide instance.
            retry_policy (RetryPolicy, optional): Budget for remote calls.
            sleep (Sleep): Used for retry backoff waits.
        """
        self.service: KinesisService = service
        self.stream_name: str = stream_name
        self.shard_id: str = shard_id
        self.batch_size: AdaptiveBatchSize = batch_size or shared_batch_size
        self.retry_policy: RetryPolicy = retry_policy or RetryPolicy()
        self._sleep: Sleep = sleep

    def __repr__(self) -> str:
        return f"KinesisShard({self.stream_name!r}, {self.shard_id!r})"

    async def request_shard_iterator(
        self,
        iterator_type: IteratorType,
        sequence_number: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        """
        Requests a new shard iterator from Kinesis.

        Args:
            iterator_type (IteratorType): How to position the iterator.
            sequence_number (str, optional): For `AFTER_SEQUENCE_NUMBER`.
            timestamp (datetime, optional): For `AT_TIMESTAMP`.

        Returns:
            str: The new shard iterator.
        """
        logger.debug(f"Requesting {iterator_type.value} iterator for {self.shard_id}.")
        return await with_retry(
            lambda: self.service.get_shard_iterator(
                self.stream_name,
                self.shard_id,
                iterator_type.value,
                sequence_number=sequence_number,
                timestamp=timestamp,
            ),
            self.retry_policy,
            sleep=self._sleep,
        )

    async def shard_iterator_from_checkpoint(self, checkpoint: Checkpoint) -> str:
        """
        Resolves the shard iterator to read from for a checkpoint.

        An existing iterator is reused; otherwise a new one is requested
        right after the last read sequence number, else at the timestamp,
        else at the trim horizon.

        Args:
            checkpoint (Checkpoint): Where the read should continue.

        Returns:
            str: A shard iterator.
        """
        if checkpoint.shard_iterator:
            return checkpoint.shard_iterator
        if checkpoint.last_read_sequence_number:
            return await self.request_shard_iterator(
                IteratorType.AFTER_SEQUENCE_NUMBER,
                sequence_number=checkpoint.last_read_sequence_number,
            )
        if checkpoint.timestamp:
            return await self.request_shard_iterator(
                IteratorType.AT_TIMESTAMP, timestamp=checkpoint.timestamp
            )
        return await self.request_shard_iterator(IteratorType.TRIM_HORIZON)

    async def _fetch_attempt(
        self, shard_iterator: str
    ) -> Union[GetRecordsResult, _IteratorExpired]:
        """
        A single GetRecords attempt, sized by the shared batch size.

        Returns `_EXPIRED` instead of raising when the iterator has expired,
        so that the retry loop treats the attempt as finished.
        """
        used_size: int = self.batch_size.value
        try:
            result: GetRecordsResult = await self.service.get_records(
                shard_iterator, used_size
            )
        except ExpiredIteratorError:
            return _EXPIRED
        except ThroughputExceededError:
            self.batch_size.record_throttle(used_size)
            raise
        self.batch_size.record_success(used_size)
        return result

    async def get_one_batch_of_records(
        self, shard_iterator: str, checkpoint: Optional[Checkpoint] = None
    ) -> GetRecordsResult:
        """
        Fetches one page of records, recovering from iterator expiry.

        There are two ways to go round again. Retryable errors go through
        `with_retry` and spend its budget. An expired iterator instead ends
        the retry loop, a fresh iterator is derived from `checkpoint` (never
        from the expired iterator), and the fetch starts over with a full
        budget.

        Args:
            shard_iterator (str): The iterator to read from.
            checkpoint (Checkpoint, optional): The position the iterator
                belongs to, used to derive a replacement on expiry.

        Returns:
            GetRecordsResult: The fetched page.
        """
        fallback: Checkpoint = (checkpoint or Checkpoint()).without_iterator()
        current_iterator: str = shard_iterator
        while True:
            outcome: Union[GetRecordsResult, _IteratorExpired] = await with_retry(
                lambda: self._fetch_attempt(current_iterator),
                self.retry_policy,
                sleep=self._sleep,
            )
            if isinstance(outcome, GetRecordsResult):
                return outcome
            logger.info(
                f"Shard iterator for {self.shard_id} expired; requesting a new one "
                f"from the last checkpoint ({fallback.last_read_sequence_number})."
            )
            current_iterator = await self.shard_iterator_from_checkpoint(fallback)
