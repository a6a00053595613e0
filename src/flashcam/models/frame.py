"""
Frame Data Model
=================

Internal frame representation for the processing pipeline.

This module defines the Frame class that is passed between the capture
source, the inference gateway, the effect stages and the presenter.

Design Rules:
    - Pixels are interleaved RGBA, 8 bits per channel
    - Buffer length always equals width * height * 4
    - Pixel data is mutable; the pipeline owns it for one cycle
    - Metadata (id, timestamp, device) is fixed at capture time
"""

from dataclasses import dataclass, field

import numpy as np


CHANNELS = 4


@dataclass(slots=True)
class Frame:
    """
    One captured RGBA frame.

    Attributes:
        frame_id: Monotonically increasing counter within a stream
        timestamp: Monotonic clock time at capture
        device_id: Identifier of the device that produced the frame
        pixels: (height, width, 4) uint8 array, mutated in place by effects

    Raises:
        ValueError: If the pixel array is not (H, W, 4) uint8
    """

    frame_id: int
    timestamp: float
    device_id: str
    pixels: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        """Validate invariants."""
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"pixels must be uint8, got {self.pixels.dtype}")
        if self.pixels.ndim != 3 or self.pixels.shape[2] != CHANNELS:
            raise ValueError(
                f"pixels must have shape (H, W, 4), got {self.pixels.shape}"
            )

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def pixel_count(self) -> int:
        """Number of pixels (not channels)."""
        return self.width * self.height

    @property
    def data(self) -> np.ndarray:
        """Flat view of the interleaved RGBA buffer."""
        return self.pixels.reshape(-1)

    def copy(self) -> "Frame":
        """Deep copy, used by presenters that outlive the cycle."""
        return Frame(
            frame_id=self.frame_id,
            timestamp=self.timestamp,
            device_id=self.device_id,
            pixels=self.pixels.copy(),
        )

    @classmethod
    def blank(
        cls,
        width: int,
        height: int,
        rgb: tuple = (0, 0, 0),
        alpha: int = 255,
        frame_id: int = 0,
        timestamp: float = 0.0,
        device_id: str = "synthetic",
    ) -> "Frame":
        """Create a uniformly filled frame."""
        pixels = np.empty((height, width, CHANNELS), dtype=np.uint8)
        pixels[..., :3] = np.asarray(rgb, dtype=np.uint8)
        pixels[..., 3] = alpha
        return cls(
            frame_id=frame_id,
            timestamp=timestamp,
            device_id=device_id,
            pixels=pixels,
        )

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the pixel buffer."""
        return (
            f"Frame(frame_id={self.frame_id}, "
            f"size={self.width}x{self.height}, "
            f"device={self.device_id!r})"
        )
