# src/kinesis_reader/signals.py
"""
Graceful shutdown for the `dump` command.

SIGINT and SIGTERM are turned into an `asyncio.Event`. Shard loops check it
between batches and stop advancing, which lets the run finish by writing
checkpoints for everything read so far.
"""

import asyncio
import logging
import os
import signal
from types import FrameType
from typing import Any, Dict, Optional, Tuple

logger: logging.Logger = logging.getLogger(__name__)

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """
    Turns stop signals into a stop request for the duration of a run.

    The first signal sets the event returned on entry. A second one exits
    the process at once, without writing checkpoints. The handlers that were
    installed before entry are put back on exit.
    """

    def __init__(self, signals: Tuple[signal.Signals, ...] = HANDLED_SIGNALS) -> None:
        """
        Args:
            signals (Tuple[signal.Signals, ...]): The signals to intercept.
        """
        self._signals: Tuple[signal.Signals, ...] = signals
        self._event: asyncio.Event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous: Dict[signal.Signals, Any] = {}

    def _on_signal(self, signum: int, _: Optional[FrameType]) -> None:
        if self._event.is_set():
            logger.critical(
                "Received second stop signal. Exiting without saving checkpoints."
            )
            os._exit(1)
        logger.warning(
            f"Received {signal.strsignal(signum)}. Finishing the current batches "
            "and saving checkpoints; signal again to exit immediately."
        )
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._event.set)

    async def __aenter__(self) -> asyncio.Event:
        """
        Installs the signal handlers.

        Returns:
            asyncio.Event: Set once a stop has been requested.
        """
        self._loop = asyncio.get_running_loop()
        for sig in self._signals:
            try:
                self._previous[sig] = signal.signal(sig, self._on_signal)
            except (ValueError, OSError) as e:
                # Handlers can only be installed from the main thread.
                logger.warning(f"Could not set handler for {sig.name}: {e}")
        return self._event

    async def __aexit__(self, *args: Any) -> None:
        """Puts back the handlers that were installed before entry."""
        for sig, previous in self._previous.items():
            try:
                signal.signal(sig, previous)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
        self._previous.clear()
        self._loop = None
