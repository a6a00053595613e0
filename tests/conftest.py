"""
Test Configuration
==================

Pytest fixtures and test doubles for FlashCam.
"""

import asyncio
from typing import List, Optional, Sequence, Set, Tuple

import numpy as np
import pytest

from flashcam.capture import CaptureStream, SyntheticCaptureSource
from flashcam.errors import DeviceUnavailable
from flashcam.inference import InferenceGateway, MockLandmarkDetector, MockSegmenter
from flashcam.models.frame import Frame


class RecordingSource(SyntheticCaptureSource):
    """
    Synthetic source that records open/close calls in order.

    Attributes:
        events: ("open" | "close", device_id) tuples
        fail_open: Device ids whose open() raises DeviceUnavailable
        fail_after: Raise DeviceUnavailable after this many frames
    """

    def __init__(
        self,
        *args,
        fail_open: Sequence[str] = (),
        fail_after: Optional[int] = None,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.events: List[Tuple[str, str]] = []
        self.fail_open: Set[str] = set(fail_open)
        self.fail_after = fail_after
        self.frames_served: int = 0

    async def open(self, device_id: str) -> CaptureStream:
        if device_id in self.fail_open:
            raise DeviceUnavailable(f"{device_id} is busy", device_id=device_id)
        stream = await super().open(device_id)
        self.events.append(("open", stream.device_id))
        return stream

    async def next_frame(self, stream: CaptureStream) -> Frame:
        if self.fail_after is not None and self.frames_served >= self.fail_after:
            raise DeviceUnavailable("camera unplugged", device_id=stream.device_id)
        frame = await super().next_frame(stream)
        self.frames_served += 1
        return frame

    async def close(self, stream: CaptureStream) -> None:
        if not stream.closed:
            self.events.append(("close", stream.device_id))
        await super().close(stream)


class RecordingPresenter:
    """Presenter that keeps a copy of every presented frame."""

    def __init__(self, refresh_delay: float = 0.0) -> None:
        self.frames: List[Frame] = []
        self.refresh_delay = refresh_delay

    async def present(self, frame: Frame) -> None:
        self.frames.append(frame.copy())

    async def next_refresh(self) -> None:
        await asyncio.sleep(self.refresh_delay)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll predicate on the running loop until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def black_frame() -> Frame:
    """4x4 all-black opaque frame."""
    return Frame.blank(4, 4, rgb=(0, 0, 0))


@pytest.fixture
def gray_frame() -> Frame:
    """10x10 frame with uniform (200, 100, 40) and alpha 255."""
    return Frame.blank(10, 10, rgb=(200, 100, 40))


@pytest.fixture
def ramp_frame() -> Frame:
    """2x2 frame with distinct channel values and a non-opaque alpha."""
    pixels = np.array(
        [
            [[100, 201, 3, 77], [40, 80, 120, 255]],
            [[250, 250, 250, 10], [1, 2, 3, 4]],
        ],
        dtype=np.uint8,
    )
    return Frame(frame_id=1, timestamp=0.0, device_id="test", pixels=pixels)


@pytest.fixture
def recording_source() -> RecordingSource:
    """Two-device recording source producing 8x6 frames."""
    return RecordingSource(
        width=8,
        height=6,
        devices=("cam:0", "cam:1"),
        sizes={"cam:1": (4, 3)},
    )


@pytest.fixture
def loaded_gateway() -> InferenceGateway:
    """Gateway with both mock engines loaded."""
    gateway = InferenceGateway(MockSegmenter(), MockLandmarkDetector(landmark_count=8))
    asyncio.run(gateway.load())
    return gateway


@pytest.fixture
def unloaded_gateway() -> InferenceGateway:
    """Gateway whose engines never loaded (every stage unavailable)."""
    return InferenceGateway(MockSegmenter(), MockLandmarkDetector())
