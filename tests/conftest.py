# tests/conftest.py
"""
Pytest configuration and fixtures for the kinesis-reader tests.

This module provides:
- An in-memory stand-in for the Kinesis service, modelling shards, shard
  iterators (including expiry), lag and injected failures.
- A scripted service that replays a fixed list of GetRecords responses.
- Factories for test records and an isolated application configuration.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generator, List, Optional, Set, Tuple, Union

import pytest

from kinesis_reader.config import Config, KinesisConfig, ReaderConfig
from kinesis_reader.exceptions import ExpiredIteratorError, RemoteError, RemoteErrorKind
from kinesis_reader.formatter import RecordWriter
from kinesis_reader.kinesis import GetRecordsResult, IteratorStatus

Record = Dict[str, Any]

BASE_TIME: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _record(shard_index: int, index: int, arrival: datetime) -> Record:
    return {
        "SequenceNumber": f"{shard_index:04d}{index:08d}",
        "ApproximateArrivalTimestamp": arrival,
        "Data": f"record-{shard_index}-{index}".encode("utf-8"),
        "PartitionKey": f"pk-{index}",
    }


class FakeKinesisService:
    """
    An in-memory Kinesis stream.

    Shard iterators encode `shard_id:position:serial`. Each shard's records
    are served in order; lag is one second per unread record. A closed
    shard stops returning a next iterator once it has been read to the end.
    """

    def __init__(self, stream_name: str = "test-stream") -> None:
        self.stream_name: str = stream_name
        self.shards: Dict[str, List[Record]] = {}
        self.closed: Dict[str, bool] = {}
        self.expired: Set[str] = set()
        self.failures: Dict[str, List[Exception]] = {}
        self.iterator_requests: List[Tuple[str, str, Optional[str], Any]] = []
        self.limits: List[int] = []
        self._serial: int = 0

    def add_shard(
        self, shard_id: str, records: List[Record], closed: bool = True
    ) -> None:
        self.shards[shard_id] = list(records)
        self.closed[shard_id] = closed

    def fail_next_fetches(self, shard_id: str, *errors: Exception) -> None:
        """Makes the next GetRecords calls on `shard_id` raise `errors`, in order."""
        self.failures.setdefault(shard_id, []).extend(errors)

    def expire_all_iterators(self) -> None:
        self.expired.add("*")

    def _make_iterator(self, shard_id: str, position: int) -> str:
        self._serial += 1
        return f"{shard_id}:{position}:{self._serial}"

    def _parse_iterator(self, shard_iterator: str) -> Tuple[str, int, int]:
        shard_id, position, serial = shard_iterator.rsplit(":", 2)
        return shard_id, int(position), int(serial)

    async def list_shards(self, stream_name: str) -> List[str]:
        if stream_name != self.stream_name:
            raise RemoteError(
                f"Stream {stream_name} not found.", RemoteErrorKind.RESOURCE_NOT_FOUND
            )
        return list(self.shards)

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        iterator_type: str,
        sequence_number: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        self.iterator_requests.append(
            (shard_id, iterator_type, sequence_number, timestamp)
        )
        if stream_name != self.stream_name or shard_id not in self.shards:
            raise RemoteError(
                f"Shard {shard_id} not found.", RemoteErrorKind.RESOURCE_NOT_FOUND
            )
        # Iterators issued from here on are fresh.
        self.expired.discard("*")
        records: List[Record] = self.shards[shard_id]
        if iterator_type == "TRIM_HORIZON":
            position: int = 0
        elif iterator_type == "AFTER_SEQUENCE_NUMBER":
            position = next(
                i + 1
                for i, record in enumerate(records)
                if record["SequenceNumber"] == sequence_number
            )
        elif iterator_type == "AT_TIMESTAMP":
            assert timestamp is not None
            position = next(
                (
                    i
                    for i, record in enumerate(records)
                    if record["ApproximateArrivalTimestamp"] >= timestamp
                ),
                len(records),
            )
        else:
            raise RemoteError(
                f"Unsupported iterator type {iterator_type}.",
                RemoteErrorKind.INVALID_ARGUMENT,
            )
        return self._make_iterator(shard_id, position)

    async def get_records(self, shard_iterator: str, limit: int) -> GetRecordsResult:
        self.limits.append(limit)
        shard_id, position, serial = self._parse_iterator(shard_iterator)
        pending: List[Exception] = self.failures.get(shard_id, [])
        if pending:
            raise pending.pop(0)
        if "*" in self.expired:
            raise ExpiredIteratorError()

        records: List[Record] = self.shards[shard_id]
        page: List[Record] = records[position : position + limit]
        new_position: int = position + len(page)
        remaining: int = len(records) - new_position
        next_iterator: Optional[str] = (
            None
            if self.closed[shard_id] and remaining == 0
            else self._make_iterator(shard_id, new_position)
        )
        return GetRecordsResult(
            records=page,
            next_shard_iterator=next_iterator,
            millis_behind_latest=remaining * 1000,
        )

    async def check_iterator(self, shard_iterator: str) -> IteratorStatus:
        if "*" in self.expired:
            return IteratorStatus(valid=False, reason="expired")
        result: GetRecordsResult = await self.get_records(shard_iterator, 1)
        return IteratorStatus(valid=True, millis_behind_latest=result.millis_behind_latest)


class ScriptedKinesisService:
    """
    Replays a fixed sequence of GetRecords outcomes.

    Each item is either a `GetRecordsResult` to return or an exception to
    raise. Shard iterator requests are recorded and answered with `it-N`.
    """

    def __init__(self, responses: List[Union[GetRecordsResult, Exception]]) -> None:
        self.responses: List[Union[GetRecordsResult, Exception]] = list(responses)
        self.iterator_requests: List[Tuple[str, Optional[str], Any]] = []
        self.fetches: List[Tuple[str, int]] = []

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        iterator_type: str,
        sequence_number: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        self.iterator_requests.append((iterator_type, sequence_number, timestamp))
        return f"it-{len(self.iterator_requests)}"

    async def get_records(self, shard_iterator: str, limit: int) -> GetRecordsResult:
        self.fetches.append((shard_iterator, limit))
        outcome: Union[GetRecordsResult, Exception] = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class CollectingWriter(RecordWriter):
    """
    A `RecordWriter` that keeps output records in memory.

    Args:
        on_write (Callable[[], None], optional): Called after every record.
    """

    def __init__(self, on_write: Optional[Callable[[], None]] = None) -> None:
        super().__init__()
        self.written: List[Dict[str, Any]] = []
        self._on_write: Optional[Callable[[], None]] = on_write

    def write(self, stream_name: str, shard_id: str, record: Any) -> None:
        self.written.append(self.to_output(stream_name, shard_id, record))
        self.records_written += 1
        if self._on_write is not None:
            self._on_write()


@pytest.fixture(scope="function")
def record_factory() -> Generator[Callable[..., List[Record]], None, None]:
    """
    Provide a factory for lists of Kinesis-shaped records.

    Yields:
        A factory accepting a record count, a shard index, and the arrival
        time of the first record; records arrive one minute apart.
    """

    def _creator(
        count: int, shard_index: int = 0, start: datetime = BASE_TIME
    ) -> List[Record]:
        return [
            _record(shard_index, i, start + timedelta(minutes=i)) for i in range(count)
        ]

    yield _creator


@pytest.fixture(scope="function")
def fake_kinesis() -> FakeKinesisService:
    """Provide an empty in-memory stream named `test-stream`."""
    return FakeKinesisService()


@pytest.fixture(scope="function")
def collecting_writer() -> CollectingWriter:
    return CollectingWriter()


@pytest.fixture(scope="function")
def test_config() -> Config:
    """
    Provide a Config with no backoff or poll waits, for fast tests.

    Returns:
        Config: A Config instance for use in tests.
    """
    return Config(
        kinesis=KinesisConfig(region="us-east-1"),
        reader=ReaderConfig(initial_backoff_ms=0, poll_interval_s=0),
    )


@pytest.fixture(scope="function")
def scripted_kinesis() -> Callable[..., ScriptedKinesisService]:
    """Provide a factory for services that replay fixed GetRecords outcomes."""
    return ScriptedKinesisService


@pytest.fixture(scope="function")
def writer_factory() -> Callable[..., CollectingWriter]:
    """Provide a factory for additional collecting writers."""
    return CollectingWriter


@pytest.fixture(scope="function")
def base_time() -> datetime:
    """The arrival time of the first record made by `record_factory`."""
    return BASE_TIME
