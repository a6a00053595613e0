"""
Frame Buffer
=============

Latest-frame hand-off between a capture producer and the frame scheduler.

Design Rules:
    - Holds at most one frame; a new frame replaces an unread one
    - Must only be touched from the event loop thread; producers on other
      threads go through loop.call_soon_threadsafe(buffer.put_nowait, ...)
    - Does NOT process or modify frames
"""

import asyncio
import logging
from typing import Optional

from flashcam.models.frame import Frame


logger = logging.getLogger(__name__)


class FrameBuffer:
    """
    Single-slot buffer with latest-frame-wins semantics.

    A slow consumer always receives the most recent frame instead of a
    stale backlog.

    Attributes:
        dropped_count: Unread frames replaced by newer ones
        total_put: Frames ever delivered

    Example:
        buffer = FrameBuffer()

        # Producer (event loop thread)
        buffer.put_nowait(frame)

        # Consumer
        frame = await buffer.get(timeout=5.0)
    """

    def __init__(self) -> None:
        self._frame: Optional[Frame] = None
        self._ready = asyncio.Event()
        self.dropped_count: int = 0
        self.total_put: int = 0

    @property
    def size(self) -> int:
        """1 if an unread frame is waiting, else 0."""
        return 0 if self._frame is None else 1

    def put_nowait(self, frame: Frame) -> bool:
        """
        Store frame, replacing any unread one.

        Returns:
            True if the slot was empty, False if an unread frame was dropped.
        """
        self.total_put += 1
        replaced = self._frame is not None
        if replaced:
            self.dropped_count += 1
            logger.debug(f"Replaced unread frame. Total dropped: {self.dropped_count}")

        self._frame = frame
        self._ready.set()
        return not replaced

    async def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Take the newest frame, waiting for one if the slot is empty.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            The frame, or None if timeout occurred.
        """
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self._take()

    def _take(self) -> Optional[Frame]:
        frame, self._frame = self._frame, None
        self._ready.clear()
        return frame

    def clear(self) -> int:
        """
        Drop any unread frame.

        Returns:
            Number of frames cleared (0 or 1).
        """
        return 0 if self._take() is None else 1

    def metrics(self) -> dict:
        """Buffer counters for observability."""
        return {
            "size": self.size,
            "dropped_count": self.dropped_count,
            "total_put": self.total_put,
        }
