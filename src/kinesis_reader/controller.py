# src/kinesis_reader/controller.py
"""
Adaptive request sizing for GetRecords.

This module implements the flow-control signal that tunes the `Limit` sent
with every GetRecords call: successful fetches grow it multiplicatively,
throttled fetches shrink it.
"""

import logging
import math

from kinesis_reader.config import ReaderConfig

logger: logging.Logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class AdaptiveBatchSize:
    """
    A batch size shared by every shard read in one run.

    All shard clients consult and update the same instance. Updates are not
    synchronized: two shards may interleave their adjustments, so the value
    is an approximate, best-effort signal rather than a strict control loop.
    Each adjustment is computed from the size that the finished attempt
    actually used, never from the current value, so a stale attempt cannot
    compound another shard's change.
    """

    def __init__(
        self,
        initial_value: int,
        min_value: int,
        max_value: int,
        increase_multiple: float = 1.5,
        decrease_multiple: float = 0.5,
    ) -> None:
        """
        Initialize the batch size.

        Args:
            initial_value (int): The starting batch size.
            min_value (int): The absolute minimum batch size.
            max_value (int): The absolute maximum batch size.
            increase_multiple (float): Growth factor applied on success.
            decrease_multiple (float): Shrink factor applied on throttling.
        """
        self._min_value: int = min_value
        self._max_value: int = max_value
        self._increase_multiple: float = increase_multiple
        self._decrease_multiple: float = decrease_multiple
        self._value: int = self._clamp(initial_value)

    @classmethod
    def from_config(cls, reader_config: ReaderConfig) -> "AdaptiveBatchSize":
        return cls(
            reader_config.initial_batch_size,
            reader_config.min_batch_size,
            reader_config.max_batch_size,
            reader_config.batch_size_increase_multiple,
            reader_config.batch_size_decrease_multiple,
        )

    @property
    def value(self) -> int:
        """
        Get the current batch size.

        Returns:
            int: The size to request for the next fetch.
        """
        return self._value

    def _clamp(self, value: int) -> int:
        return max(self._min_value, min(self._max_value, value))

    def record_success(self, used_size: int) -> None:
        """
        Grows the batch size after a successful fetch.

        Args:
            used_size (int): The `Limit` the successful fetch was issued with.
        """
        new_value: int = self._clamp(
            max(self._value, _round_half_up(used_size * self._increase_multiple))
        )
        if new_value != self._value:
            logger.debug(f"Batch size increased: {self._value} -> {new_value}")
        self._value = new_value

    def record_throttle(self, used_size: int) -> None:
        """
        Shrinks the batch size after a throughput-exceeded failure.

        Args:
            used_size (int): The `Limit` the throttled fetch was issued with.
        """
        new_value: int = self._clamp(
            min(self._value, _round_half_up(used_size * self._decrease_multiple))
        )
        if new_value != self._value:
            logger.debug(f"Batch size decreased: {self._value} -> {new_value}")
        self._value = new_value
