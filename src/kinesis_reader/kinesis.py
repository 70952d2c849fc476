# src/kinesis_reader/kinesis.py
"""
Thin async adapter over the aiobotocore Kinesis client.

`KinesisService` exposes exactly the calls the reader needs and translates
botocore failures into the application's typed `RemoteError` hierarchy. The
`retryable` flag on those errors is decided here, at the service boundary,
and is the only thing the Retry Executor looks at.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from kinesis_reader.config import KinesisConfig
from kinesis_reader.exceptions import (
    ExpiredIteratorError,
    RemoteError,
    RemoteErrorKind,
    ThroughputExceededError,
)

if TYPE_CHECKING:
    from types_aiobotocore_kinesis.client import KinesisClient
    from types_aiobotocore_kinesis.type_defs import (
        GetRecordsOutputTypeDef,
        ListShardsOutputTypeDef,
        RecordTypeDef,
    )

logger: logging.Logger = logging.getLogger(__name__)

_TRANSIENT_CODES = frozenset(
    {
        "LimitExceededException",
        "KMSThrottlingException",
        "InternalFailure",
        "ServiceUnavailable",
        "ThrottlingException",
    }
)

_CONNECTION_ERRORS = (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


@dataclass(frozen=True)
class GetRecordsResult:
    """
    One page of records as returned by GetRecords.

    Attributes:
        records (List[RecordTypeDef]): The records, in shard order.
        next_shard_iterator (str, optional): Where to continue reading, or
            None if the shard is closed and fully read.
        millis_behind_latest (int): How far behind the tip of the shard the
            response is, in milliseconds.
    """

    records: List["RecordTypeDef"] = field(default_factory=list)
    next_shard_iterator: Optional[str] = None
    millis_behind_latest: int = 0


@dataclass(frozen=True)
class IteratorStatus:
    """
    The outcome of probing a shard iterator.

    Attributes:
        valid (bool): Whether the iterator can still be read from.
        millis_behind_latest (int, optional): Remaining lag when valid.
        reason (str, optional): Why the iterator is unusable when invalid.
    """

    valid: bool
    millis_behind_latest: Optional[int] = None
    reason: Optional[str] = None


def translate_client_error(error: ClientError) -> RemoteError:
    """
    Maps a botocore `ClientError` onto the typed remote error hierarchy.

    Args:
        error (ClientError): The error raised by the Kinesis client.

    Returns:
        RemoteError: The equivalent application error.
    """
    details: Dict[str, Any] = error.response.get("Error", {})
    code: str = details.get("Code", "Unknown")
    message: str = details.get("Message") or str(error)
    status: int = error.response.get("ResponseMetadata", {}).get(
        "HTTPStatusCode", 0
    )

    if code == RemoteErrorKind.EXPIRED_ITERATOR.value:
        return ExpiredIteratorError(message)
    if code == RemoteErrorKind.THROUGHPUT_EXCEEDED.value:
        return ThroughputExceededError(message)
    if code == RemoteErrorKind.RESOURCE_NOT_FOUND.value:
        return RemoteError(message, RemoteErrorKind.RESOURCE_NOT_FOUND, code)
    if code == RemoteErrorKind.INVALID_ARGUMENT.value:
        return RemoteError(message, RemoteErrorKind.INVALID_ARGUMENT, code)
    if code in _TRANSIENT_CODES or status >= 500:
        return RemoteError(message, RemoteErrorKind.TRANSIENT, code, retryable=True)
    return RemoteError(message, RemoteErrorKind.OTHER, code)


class KinesisService:
    """
    The operations the reader performs against Kinesis.

    One instance wraps one client and is shared, read-only, by every shard
    being read.
    """

    def __init__(self, client: "KinesisClient") -> None:
        """
        Args:
            client (KinesisClient): An initialized aiobotocore Kinesis client.
        """
        self._client: "KinesisClient" = client

    async def list_shards(self, stream_name: str) -> List[str]:
        """
        Lists the IDs of every shard in a stream.

        Args:
            stream_name (str): The stream to list.

        Returns:
            List[str]: Shard IDs in the order Kinesis reports them.
        """
        shard_ids: List[str] = []
        params: Dict[str, Any] = {"StreamName": stream_name}
        while True:
            try:
                response: "ListShardsOutputTypeDef" = await self._client.list_shards(
                    **params
                )
            except ClientError as e:
                raise translate_client_error(e) from e
            except _CONNECTION_ERRORS as e:
                raise RemoteError(
                    str(e), RemoteErrorKind.TRANSIENT, retryable=True
                ) from e
            shard_ids.extend(shard["ShardId"] for shard in response.get("Shards", []))
            next_token: Optional[str] = response.get("NextToken")
            if not next_token:
                break
            # StreamName and NextToken are mutually exclusive.
            params = {"NextToken": next_token}
        logger.debug(f"Stream '{stream_name}' has {len(shard_ids)} shard(s).")
        return shard_ids

    async def get_shard_iterator(
        self,
        stream_name: str,
        shard_id: str,
        iterator_type: str,
        sequence_number: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        """
        Acquires a new shard iterator.

        Args:
            stream_name (str): The stream the shard belongs to.
            shard_id (str): The shard to position in.
            iterator_type (str): A Kinesis `ShardIteratorType`.
            sequence_number (str, optional): Starting sequence number, for
                the sequence-number iterator types.
            timestamp (datetime, optional): Starting time, for `AT_TIMESTAMP`.

        Returns:
            str: The shard iterator.
        """
        params: Dict[str, Any] = {
            "StreamName": stream_name,
            "ShardId": shard_id,
            "ShardIteratorType": iterator_type,
        }
        if sequence_number is not None:
            params["StartingSequenceNumber"] = sequence_number
        if timestamp is not None:
            params["Timestamp"] = timestamp
        try:
            response = await self._client.get_shard_iterator(**params)
        except ClientError as e:
            raise translate_client_error(e) from e
        except _CONNECTION_ERRORS as e:
            raise RemoteError(str(e), RemoteErrorKind.TRANSIENT, retryable=True) from e
        return response["ShardIterator"]

    async def get_records(self, shard_iterator: str, limit: int) -> GetRecordsResult:
        """
        Fetches one page of records.

        Args:
            shard_iterator (str): Where to read from.
            limit (int): Maximum number of records to return.

        Returns:
            GetRecordsResult: The page of records and where to continue.
        """
        try:
            response: "GetRecordsOutputTypeDef" = await self._client.get_records(
                ShardIterator=shard_iterator, Limit=limit
            )
        except ClientError as e:
            raise translate_client_error(e) from e
        except _CONNECTION_ERRORS as e:
            raise RemoteError(str(e), RemoteErrorKind.TRANSIENT, retryable=True) from e
        return GetRecordsResult(
            records=list(response.get("Records", [])),
            next_shard_iterator=response.get("NextShardIterator"),
            millis_behind_latest=response.get("MillisBehindLatest", 0),
        )

    async def check_iterator(self, shard_iterator: str) -> IteratorStatus:
        """
        Probes a shard iterator without raising for expired or invalid ones.

        Args:
            shard_iterator (str): The iterator to probe.

        Returns:
            IteratorStatus: The remaining lag, or why the iterator is unusable.
        """
        try:
            result: GetRecordsResult = await self.get_records(shard_iterator, 1)
        except ExpiredIteratorError as e:
            return IteratorStatus(valid=False, reason=f"expired: {e}")
        except RemoteError as e:
            if e.remote_kind in (
                RemoteErrorKind.INVALID_ARGUMENT,
                RemoteErrorKind.RESOURCE_NOT_FOUND,
            ):
                return IteratorStatus(valid=False, reason=f"invalid: {e}")
            raise
        return IteratorStatus(valid=True, millis_behind_latest=result.millis_behind_latest)


@asynccontextmanager
async def open_kinesis_service(config: KinesisConfig) -> AsyncIterator[KinesisService]:
    """
    Creates a Kinesis client for the duration of a `with` block.

    Args:
        config (KinesisConfig): Region, endpoint and profile to connect with.

    Yields:
        KinesisService: A service wrapping the open client.
    """
    session: AioSession = get_session()
    if config.profile:
        session.set_config_variable("profile", config.profile)
    # botocore's own retries are kept to a minimum; `with_retry` owns them.
    boto_config: BotoConfig = BotoConfig(
        max_pool_connections=config.max_pool_connections,
        retries={"max_attempts": config.client_max_attempts, "mode": "standard"},
    )
    async with session.create_client(
        "kinesis", **config.as_boto_dict(), config=boto_config
    ) as client:
        yield KinesisService(client)
