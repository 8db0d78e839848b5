"""
Best-effort "data changed" broadcast.

After any local mutation the data layer calls ``ChangeNotifier.notify``.
In-process subscribers (open views holding cached snapshots) are called
directly; other processes watch the marker file, which is rewritten
with the time and reason of the last change. This is advisory only and
never a synchronization primitive.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from ..exceptions import StorageIOError
from ..ids import now_ms
from .file_ops import write_json_atomic

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], Awaitable[None] | None]


class ChangeNotifier:
    """Fan out change signals to subscribers and a marker file."""

    def __init__(self, marker_path: Path | None = None):
        self.marker_path = marker_path
        self._subscribers: list[ChangeCallback] = []
        self.sequence = 0

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def notify(self, reason: str = "changed") -> None:
        """Signal that local data changed.

        Subscriber and marker failures are logged; the mutation that
        triggered the signal has already been committed.
        """
        self.sequence += 1
        for callback in list(self._subscribers):
            try:
                result = callback(reason)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Change subscriber failed for {reason}: {e}")

        if self.marker_path is not None:
            try:
                await write_json_atomic(
                    self.marker_path,
                    {"at": now_ms(), "reason": reason, "sequence": self.sequence},
                    indent=None,
                )
            except StorageIOError as e:
                logger.warning(f"Could not touch change marker {self.marker_path}: {e}")
