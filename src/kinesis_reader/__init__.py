# src/kinesis_reader/__init__.py
"""
kinesis-reader: A resumable, self-tuning reader for AWS Kinesis streams.

This package reads records from the shards of a Kinesis data stream,
checkpointing its progress so a later run can pick up where the last one
stopped. Reads adapt their batch size to the shard's throughput limits and
retry transient failures with exponential backoff.

The primary entry points for programmatic use are `read_from_shard`, which
returns a pull-based `ShardCursor` for one shard, and the
`KinesisReaderPipeline` class, which reads many shards concurrently.
"""

from typing import List

from kinesis_reader.cursor import ShardCursor, ShardReadResult, read_from_shard
from kinesis_reader.pipeline import KinesisReaderPipeline
from kinesis_reader.shard import Checkpoint

__all__: List[str] = [
    "Checkpoint",
    "KinesisReaderPipeline",
    "ShardCursor",
    "ShardReadResult",
    "read_from_shard",
]
