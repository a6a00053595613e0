"""
Capture Source
==============

Live video device abstraction.

This module provides:
    - CaptureSource: Protocol every capture backend implements
    - CaptureStream: Handle for one opened device
    - OpenCVCaptureSource: cv2.VideoCapture with a reader thread
    - SyntheticCaptureSource: Deterministic RGBA test patterns

Design Rules:
    - next_frame is latest-frame-wins: stale frames are dropped, never queued
    - close() is idempotent and safe while a cycle is in flight
    - Frame dimensions come from the device on every frame
    - Open failures are raised as CaptureError subclasses
"""

import asyncio
import logging
import os
import re
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Set, Tuple

import cv2
import numpy as np

from flashcam.capture.buffer import FrameBuffer
from flashcam.errors import DeviceUnavailable, PermissionDenied, Unsupported
from flashcam.models.device import Device
from flashcam.models.frame import Frame


logger = logging.getLogger(__name__)


DEFAULT_DEVICE = "default"

_DEV_VIDEO_RE = re.compile(r"^/dev/video(\d+)$")


class CaptureStream:
    """
    Handle for one opened capture device.

    Owned by the session that opened it. All fields except the reader
    thread are touched from the event loop only.

    Attributes:
        device_id: Identifier the stream was opened with
        buffer: Latest-frame hand-off between producer and scheduler
        closed: Set once close() has started
        frames_produced: Frames delivered by the producer
    """

    def __init__(self, device_id: str, buffer: Optional[FrameBuffer] = None) -> None:
        self.device_id = device_id
        self.buffer = buffer or FrameBuffer()
        self.closed: bool = False
        self.frames_produced: int = 0

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"{type(self).__name__}(device_id={self.device_id!r}, {state})"


class CaptureSource(Protocol):
    """
    Protocol for capture backends.

    Implemented by:
        - OpenCVCaptureSource (webcams)
        - SyntheticCaptureSource (tests, mock backend)
    """

    async def open(self, device_id: str) -> CaptureStream:
        """
        Open a device and start producing frames.

        Raises:
            PermissionDenied, DeviceUnavailable, Unsupported
        """
        ...

    async def next_frame(self, stream: CaptureStream) -> Frame:
        """Suspend until the newest frame is available."""
        ...

    async def close(self, stream: CaptureStream) -> None:
        """Release device resources. Idempotent."""
        ...

    async def enumerate_devices(self) -> List[Device]:
        """List devices this source can open."""
        ...


# =============================================================================
# OpenCV backend
# =============================================================================

class OpenCVStream(CaptureStream):
    """Stream backed by cv2.VideoCapture and a daemon reader thread."""

    def __init__(
        self,
        device_id: str,
        index: int,
        capture: "cv2.VideoCapture",
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__(device_id)
        self.index = index
        self.capture = capture
        self.loop = loop
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None
        self.read_failures: int = 0


class OpenCVCaptureSource:
    """
    Webcam capture through OpenCV.

    A reader thread pulls BGR frames from cv2.VideoCapture, converts them
    to RGBA and hands them to the event loop through a single-slot FrameBuffer.
    The scheduler therefore always gets the newest frame.

    Device ids:
        - "default": index 0
        - "2": index 2
        - "/dev/video2": index 2 (permission-checked)

    Example:
        source = OpenCVCaptureSource(width=720, height=1280)
        stream = await source.open("default")
        frame = await source.next_frame(stream)
        await source.close(stream)
    """

    def __init__(
        self,
        width: int = 720,
        height: int = 1280,
        fps: int = 30,
        frame_timeout: float = 5.0,
        max_probe_index: int = 8,
    ) -> None:
        self.width = width
        self.height = height
        self.fps = fps
        self.frame_timeout = frame_timeout
        self.max_probe_index = max_probe_index

        self._open_indices: Set[int] = set()

        logger.info(
            f"OpenCVCaptureSource initialized: ideal={width}x{height}@{fps}fps, "
            f"frame_timeout={frame_timeout}s"
        )

    async def open(self, device_id: str) -> CaptureStream:
        index = self._resolve_index(device_id)
        self._check_permissions(device_id, index)

        capture = await asyncio.to_thread(self._open_capture, device_id, index)

        stream = OpenCVStream(
            device_id=device_id,
            index=index,
            capture=capture,
            loop=asyncio.get_running_loop(),
        )
        stream.thread = threading.Thread(
            target=self._reader,
            args=(stream,),
            name=f"capture-{index}",
            daemon=True,
        )
        stream.thread.start()
        self._open_indices.add(index)

        logger.info(f"Opened capture device {device_id!r} (index {index})")
        return stream

    async def next_frame(self, stream: CaptureStream) -> Frame:
        if stream.closed:
            raise DeviceUnavailable("Stream is closed", device_id=stream.device_id)

        frame = await stream.buffer.get(timeout=self.frame_timeout)

        if frame is None:
            raise DeviceUnavailable(
                f"No frame from {stream.device_id!r} within {self.frame_timeout:.1f}s",
                device_id=stream.device_id,
            )
        return frame

    async def close(self, stream: CaptureStream) -> None:
        if stream.closed:
            return
        stream.closed = True

        if isinstance(stream, OpenCVStream):
            stream.stop_event.set()
            await asyncio.to_thread(self._release, stream)
            self._open_indices.discard(stream.index)

        cleared = stream.buffer.clear()
        logger.info(
            f"Closed capture device {stream.device_id!r} "
            f"(produced={stream.frames_produced}, discarded={cleared})"
        )

    async def enumerate_devices(self) -> List[Device]:
        return await asyncio.to_thread(self._probe_devices)

    # -------------------------------------------------------------------------
    # Blocking helpers (worker threads)
    # -------------------------------------------------------------------------

    def _open_capture(self, device_id: str, index: int) -> "cv2.VideoCapture":
        capture = cv2.VideoCapture(index)

        if not capture.isOpened():
            capture.release()
            raise DeviceUnavailable(
                f"Failed to open capture device {device_id!r}",
                device_id=device_id,
            )

        self._set_property(capture, cv2.CAP_PROP_FRAME_WIDTH, self.width, "width")
        self._set_property(capture, cv2.CAP_PROP_FRAME_HEIGHT, self.height, "height")
        self._set_property(capture, cv2.CAP_PROP_FPS, self.fps, "fps")
        return capture

    @staticmethod
    def _set_property(capture: "cv2.VideoCapture", prop: int, value, name: str) -> None:
        # Requested sizes are "ideal", not mandatory
        if not capture.set(prop, value):
            logger.warning(
                f"Cannot set capture property {name}={value}, "
                f"keeping device default"
            )

    def _reader(self, stream: OpenCVStream) -> None:
        """Reader thread: device -> RGBA Frame -> event loop."""
        frame_id = 0

        while not stream.stop_event.is_set():
            ok, bgr = stream.capture.read()
            if not ok or bgr is None:
                stream.read_failures += 1
                time.sleep(0.01)
                continue

            rgba = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGBA)
            frame = Frame(
                frame_id=frame_id,
                timestamp=time.monotonic(),
                device_id=stream.device_id,
                pixels=rgba,
            )
            frame_id += 1

            try:
                stream.loop.call_soon_threadsafe(self._deliver, stream, frame)
            except RuntimeError:
                # Event loop closed underneath us
                break

        logger.debug(f"Reader thread for {stream.device_id!r} exiting")

    @staticmethod
    def _deliver(stream: CaptureStream, frame: Frame) -> None:
        if stream.closed:
            return
        stream.buffer.put_nowait(frame)
        stream.frames_produced += 1

    @staticmethod
    def _release(stream: OpenCVStream) -> None:
        if stream.thread is not None:
            stream.thread.join(timeout=2.0)
            if stream.thread.is_alive():
                logger.warning(f"Reader thread for {stream.device_id!r} did not exit")
        stream.capture.release()

    def _probe_devices(self) -> List[Device]:
        devices: List[Device] = []
        for index in range(self.max_probe_index):
            # Probing an index we hold open would fail on most backends
            if index not in self._open_indices:
                capture = cv2.VideoCapture(index)
                ok = capture.isOpened()
                capture.release()
                if not ok:
                    continue
            devices.append(Device(device_id=str(index), label=_device_label(index)))

        logger.info(f"Enumerated {len(devices)} capture device(s)")
        return devices

    # -------------------------------------------------------------------------
    # Device id handling
    # -------------------------------------------------------------------------

    @staticmethod
    def _resolve_index(device_id: str) -> int:
        if device_id == DEFAULT_DEVICE:
            return 0
        if device_id.isdigit():
            return int(device_id)
        if match := _DEV_VIDEO_RE.match(device_id):
            return int(match.group(1))
        raise Unsupported(
            f"Unsupported device id {device_id!r}",
            device_id=device_id,
        )

    @staticmethod
    def _check_permissions(device_id: str, index: int) -> None:
        node = f"/dev/video{index}"
        if os.path.exists(node) and not os.access(node, os.R_OK | os.W_OK):
            raise PermissionDenied(
                f"Permission denied for {node}",
                device_id=device_id,
            )


def _device_label(index: int) -> str:
    """Read the V4L2 device name when available."""
    name_file = Path(f"/sys/class/video4linux/video{index}/name")
    try:
        return name_file.read_text().strip() or f"Camera {index}"
    except OSError:
        return f"Camera {index}"


# =============================================================================
# Synthetic backend
# =============================================================================

class SyntheticCaptureSource:
    """
    Deterministic synthetic capture source.

    Produces RGBA frames without hardware. Each device can have its own
    size and fill so that device switches are observable in tests.

    Patterns:
        - rgb given: every pixel is that colour
        - otherwise: horizontal red ramp, vertical green ramp, blue = device
          ordinal * 40

    Attributes:
        devices: Device ids this source can open, in enumeration order
        sizes: Optional per-device (width, height)
        frame_interval: Seconds between frames (0 = as fast as asked)
    """

    def __init__(
        self,
        width: int = 64,
        height: int = 48,
        devices: Sequence[str] = ("synthetic:0", "synthetic:1"),
        sizes: Optional[Dict[str, Tuple[int, int]]] = None,
        rgb: Optional[Tuple[int, int, int]] = None,
        frame_interval: float = 0.0,
    ) -> None:
        self.width = width
        self.height = height
        self.devices = list(devices)
        self.sizes = dict(sizes or {})
        self.rgb = rgb
        self.frame_interval = frame_interval

        self.open_count: int = 0
        self.close_count: int = 0

    async def open(self, device_id: str) -> CaptureStream:
        if device_id == DEFAULT_DEVICE and self.devices:
            device_id = self.devices[0]
        if device_id not in self.devices:
            raise DeviceUnavailable(
                f"Unknown synthetic device {device_id!r}",
                device_id=device_id,
            )

        self.open_count += 1
        logger.info(f"Opened synthetic device {device_id!r}")
        return CaptureStream(device_id)

    async def next_frame(self, stream: CaptureStream) -> Frame:
        if stream.closed:
            raise DeviceUnavailable("Stream is closed", device_id=stream.device_id)

        if self.frame_interval > 0:
            await asyncio.sleep(self.frame_interval)

        width, height = self.sizes.get(stream.device_id, (self.width, self.height))
        frame = Frame(
            frame_id=stream.frames_produced,
            timestamp=time.monotonic(),
            device_id=stream.device_id,
            pixels=self._render(stream.device_id, width, height),
        )
        stream.frames_produced += 1
        return frame

    async def close(self, stream: CaptureStream) -> None:
        if stream.closed:
            return
        stream.closed = True
        self.close_count += 1
        logger.info(f"Closed synthetic device {stream.device_id!r}")

    async def enumerate_devices(self) -> List[Device]:
        return [
            Device(device_id=d, label=f"Synthetic camera {i}")
            for i, d in enumerate(self.devices)
        ]

    def _render(self, device_id: str, width: int, height: int) -> np.ndarray:
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[..., 3] = 255

        if self.rgb is not None:
            pixels[..., :3] = np.asarray(self.rgb, dtype=np.uint8)
            return pixels

        ordinal = self.devices.index(device_id) if device_id in self.devices else 0
        xs = np.linspace(0, 255, width, dtype=np.float64)
        ys = np.linspace(0, 255, height, dtype=np.float64)
        pixels[..., 0] = np.rint(xs)[np.newaxis, :].astype(np.uint8)
        pixels[..., 1] = np.rint(ys)[:, np.newaxis].astype(np.uint8)
        pixels[..., 2] = min(255, ordinal * 40)
        return pixels
