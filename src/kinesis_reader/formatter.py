# src/kinesis_reader/formatter.py
"""Formatting of record payloads and writing of records to the output sink."""

import base64
import json
import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import click
from rich.console import Console

from kinesis_reader.exceptions import CallerError

if TYPE_CHECKING:
    from types_aiobotocore_kinesis.type_defs import RecordTypeDef

logger: logging.Logger = logging.getLogger(__name__)

DataFormatter = Callable[[bytes], Any]


def binary_formatter(data: bytes) -> bytes:
    return data


def hex_formatter(data: bytes) -> str:
    return data.hex()


def base64_formatter(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def utf8_formatter(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def json_formatter(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"))


_FORMATTERS: Dict[str, DataFormatter] = {
    "binary": binary_formatter,
    "bin": binary_formatter,
    "buf": binary_formatter,
    "buffer": binary_formatter,
    "hex": hex_formatter,
    "base-64": base64_formatter,
    "base64": base64_formatter,
    "b64": base64_formatter,
    "utf-8": utf8_formatter,
    "utf8": utf8_formatter,
    "json": json_formatter,
}


def get_formatter_options() -> List[str]:
    """The names accepted by `get_formatter`."""
    return list(_FORMATTERS)


def get_formatter(name: str) -> DataFormatter:
    """
    Looks up a payload formatter by name.

    Args:
        name (str): One of `get_formatter_options()`.

    Returns:
        DataFormatter: A function turning payload bytes into a displayable value.
    """
    formatter: Optional[DataFormatter] = _FORMATTERS.get(name)
    if formatter is None:
        raise CallerError(f"Invalid format name specified: {name}")
    return formatter


class OutputFormat(str, Enum):
    """How each record is written to standard output."""

    PRETTY = "pretty"
    JSON = "json"
    JSONL = "jsonl"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class RecordWriter:
    """
    Writes Kinesis records to standard output.

    Each record is annotated with the stream and shard it came from, and its
    `Data` payload is replaced by the formatted `_data` value.
    """

    def __init__(
        self,
        output_format: OutputFormat = OutputFormat.PRETTY,
        data_formatter: DataFormatter = utf8_formatter,
        console: Optional[Console] = None,
    ) -> None:
        """
        Args:
            output_format (OutputFormat): The encoding for each record.
            data_formatter (DataFormatter): Applied to every record payload.
            console (Console, optional): Console for pretty output.
        """
        self._output_format: OutputFormat = output_format
        self._data_formatter: DataFormatter = data_formatter
        self._console: Console = console or Console(soft_wrap=True)
        self.records_written: int = 0

    def to_output(
        self, stream_name: str, shard_id: str, record: "RecordTypeDef"
    ) -> Dict[str, Any]:
        """Builds the dictionary written for `record`."""
        output: Dict[str, Any] = {
            "_shardId": shard_id,
            "_streamName": stream_name,
            **record,
        }
        output["_data"] = self._data_formatter(output.pop("Data", b""))
        return output

    def write(self, stream_name: str, shard_id: str, record: "RecordTypeDef") -> None:
        """Writes one record in the configured output format."""
        output: Dict[str, Any] = self.to_output(stream_name, shard_id, record)
        if self._output_format is OutputFormat.JSON:
            click.echo(json.dumps(output, indent=4, default=_json_default))
        elif self._output_format is OutputFormat.JSONL:
            click.echo(json.dumps(output, default=_json_default))
        else:
            self._console.print(output)
        self.records_written += 1

    def write_all(
        self, stream_name: str, shard_id: str, records: List["RecordTypeDef"]
    ) -> None:
        for record in records:
            self.write(stream_name, shard_id, record)
