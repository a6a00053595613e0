"""
Presentation
============

Consumers of finished frames and the refresh signal that paces the loop.

Components:
    - Presenter: Protocol the scheduler presents to
    - RefreshClock: Display refresh signal (ticks at k / refresh_hz)
    - LatestFramePresenter: Keeps the newest frame for HTTP clients
    - WindowPresenter: OpenCV desktop window

Design Rules:
    - present() receives a frame only after the flash stage
    - next_refresh() waits for the next display tick, not a fixed delay
      after the cycle; a slow cycle lands on the following tick
"""

import asyncio
import logging
import math
import time
from typing import Callable, Optional, Protocol

import cv2

from flashcam.models.frame import Frame


logger = logging.getLogger(__name__)


class Presenter(Protocol):
    """Protocol for frame consumers."""

    async def present(self, frame: Frame) -> None:
        """Accept a completed frame."""
        ...

    async def next_refresh(self) -> None:
        """Suspend until the display is ready for the next frame."""
        ...


class RefreshClock:
    """
    Display refresh signal on the monotonic clock.

    Ticks are anchored at construction time and spaced 1 / refresh_hz
    apart, like a vsync signal. wait() always sleeps until the next tick
    strictly after now.

    Attributes:
        refresh_hz: Display refresh rate
        ticks: Number of ticks waited for
    """

    def __init__(
        self,
        refresh_hz: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if refresh_hz <= 0:
            raise ValueError("refresh_hz must be positive")
        self.refresh_hz = refresh_hz
        self.interval = 1.0 / refresh_hz
        self._clock = clock
        self._origin = clock()
        self.ticks: int = 0

    def time_to_next_tick(self) -> float:
        elapsed = self._clock() - self._origin
        next_index = math.floor(elapsed / self.interval) + 1
        return max(0.0, next_index * self.interval - elapsed)

    async def wait(self) -> None:
        await asyncio.sleep(self.time_to_next_tick())
        self.ticks += 1


class LatestFramePresenter:
    """
    Keeps the most recent presented frame.

    Used by the HTTP service: /frame returns the newest frame as JPEG.

    Attributes:
        clock: Refresh signal pacing the pipeline
        jpeg_quality: JPEG quality for encode_jpeg()
        presented_count: Frames presented so far
    """

    def __init__(self, clock: Optional[RefreshClock] = None, jpeg_quality: int = 85) -> None:
        self.clock = clock or RefreshClock()
        self.jpeg_quality = jpeg_quality
        self._latest: Optional[Frame] = None
        self.presented_count: int = 0

    @property
    def latest(self) -> Optional[Frame]:
        return self._latest

    async def present(self, frame: Frame) -> None:
        # Frames are fresh per cycle; holding the reference is safe
        self._latest = frame
        self.presented_count += 1

    async def next_refresh(self) -> None:
        await self.clock.wait()

    def encode_jpeg(self) -> Optional[bytes]:
        """Encode the latest frame, or None if nothing was presented."""
        frame = self._latest
        if frame is None:
            return None
        bgr = cv2.cvtColor(frame.pixels, cv2.COLOR_RGBA2BGR)
        ok, buf = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not ok:
            logger.error(f"JPEG encode failed for frame {frame.frame_id}")
            return None
        return buf.tobytes()

    def clear(self) -> None:
        self._latest = None


class WindowPresenter:
    """
    OpenCV window presenter.

    Must run on the thread that owns the GUI (the main thread on most
    platforms). Pressing q or ESC calls on_quit.

    Attributes:
        window_name: Title of the preview window
        clock: Refresh signal pacing the pipeline
        on_quit: Called once when the user asks to quit
    """

    def __init__(
        self,
        window_name: str = "FlashCam",
        clock: Optional[RefreshClock] = None,
        on_quit: Optional[Callable[[], None]] = None,
    ) -> None:
        self.window_name = window_name
        self.clock = clock or RefreshClock()
        self.on_quit = on_quit
        self.quit_requested: bool = False
        self._window_open = False

    async def present(self, frame: Frame) -> None:
        if not self._window_open:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            self._window_open = True
        cv2.imshow(self.window_name, cv2.cvtColor(frame.pixels, cv2.COLOR_RGBA2BGR))

    async def next_refresh(self) -> None:
        await self.clock.wait()
        key = cv2.waitKey(1) & 0xFF
        if key in (ord("q"), 27) and not self.quit_requested:
            self.quit_requested = True
            logger.info("Quit requested from preview window")
            if self.on_quit is not None:
                self.on_quit()

    def close(self) -> None:
        if self._window_open:
            cv2.destroyWindow(self.window_name)
            self._window_open = False
