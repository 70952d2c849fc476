# src/kinesis_reader/checkpoints.py
"""
Persistent checkpoints in a JSON-lines file.

Each line records the checkpoint of one shard of one stream, stamped with
the time it was written. Files are appended to on every run, so the last
line for a given stream and shard is the one that counts.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from kinesis_reader.exceptions import CheckpointError
from kinesis_reader.shard import Checkpoint

logger: logging.Logger = logging.getLogger(__name__)

ShardKey = Tuple[str, str]


@dataclass(frozen=True)
class ShardCheckpoint:
    """
    A checkpoint together with the shard it belongs to.

    Attributes:
        stream_name (str): The stream the shard belongs to.
        shard_id (str): The shard.
        checkpoint (Checkpoint): The position within the shard.
    """

    stream_name: str
    shard_id: str
    checkpoint: Checkpoint

    @property
    def key(self) -> ShardKey:
        return (self.stream_name, self.shard_id)

    def to_line(self, written_at: datetime) -> str:
        return json.dumps(
            {
                "time": written_at.isoformat(),
                "stream_name": self.stream_name,
                "shard_id": self.shard_id,
                **self.checkpoint.to_dict(),
            }
        )


class CheckpointStore:
    """Reads and writes the checkpoint file for the `dump` command."""

    def __init__(self, path: Path) -> None:
        """
        Args:
            path (Path): Location of the JSON-lines checkpoint file.
        """
        self._path: Path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Dict[ShardKey, Checkpoint]:
        """
        Reads the latest checkpoint for every shard in the file.

        Returns:
            Dict[ShardKey, Checkpoint]: Checkpoints keyed by
                `(stream_name, shard_id)`. Empty if the file does not exist.
        """
        try:
            content: str = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"No checkpoint file at '{self._path}'; starting fresh.")
            return {}

        checkpoints: Dict[ShardKey, Checkpoint] = {}
        for line_number, line in enumerate(content.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entry: Dict[str, Any] = json.loads(line)
                key: ShardKey = (entry["stream_name"], entry["shard_id"])
                checkpoints[key] = Checkpoint.from_dict(entry)
            except (ValueError, KeyError, TypeError) as e:
                raise CheckpointError(
                    f"Malformed checkpoint on line {line_number} of "
                    f"'{self._path}': {e}"
                ) from e
        logger.info(f"Loaded {len(checkpoints)} checkpoint(s) from '{self._path}'.")
        return checkpoints

    def save(
        self,
        shard_checkpoints: Iterable[ShardCheckpoint],
        replace: bool = False,
        written_at: Optional[datetime] = None,
    ) -> None:
        """
        Writes checkpoints to the file.

        Args:
            shard_checkpoints (Iterable[ShardCheckpoint]): The checkpoints to
                write, one line each.
            replace (bool): Rewrite the file with only these checkpoints
                instead of appending to it. The new file is moved into place
                atomically.
            written_at (datetime, optional): The time stamped on every line.
                Defaults to now, in UTC.
        """
        written_at = written_at or datetime.now(timezone.utc)
        lines: List[str] = [f"{cp.to_line(written_at)}\n" for cp in shard_checkpoints]
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if replace:
            tmp_path: Path = self._path.with_name(f".{self._path.name}.tmp")
            tmp_path.write_text("".join(lines), encoding="utf-8")
            os.replace(tmp_path, self._path)
        else:
            with self._path.open("a", encoding="utf-8") as f:
                f.writelines(lines)
        logger.info(f"Wrote {len(lines)} checkpoint(s) to '{self._path}'.")
