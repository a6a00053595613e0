"""
Inference Models
================

Data models produced by the inference gateway.

These models carry per-cycle segmentation and landmark results from the
gateway to the compositor. They are discarded after compositing.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np


@dataclass(frozen=True, slots=True)
class Landmark:
    """Single facial keypoint in frame pixel coordinates."""

    x: float
    y: float


@dataclass(frozen=True, slots=True)
class FaceLandmarkSet:
    """
    Ordered landmarks of one detected face.

    Attributes:
        points: Landmarks in model order
    """

    points: Sequence[Landmark] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.points)

    def as_array(self) -> np.ndarray:
        """Return points as an (N, 2) float array."""
        if not self.points:
            return np.empty((0, 2), dtype=np.float64)
        return np.array([(p.x, p.y) for p in self.points], dtype=np.float64)


@dataclass(frozen=True, slots=True)
class SegmentationMask:
    """
    Per-pixel foreground mask.

    One entry per pixel (not per channel). True means foreground (person).

    Attributes:
        values: Boolean array, flat or (H, W); only its size is contractual
    """

    values: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        if self.values.dtype != np.bool_:
            object.__setattr__(self, "values", self.values.astype(bool))

    @property
    def size(self) -> int:
        return int(self.values.size)

    def flat(self) -> np.ndarray:
        return self.values.reshape(-1)

    @property
    def foreground_count(self) -> int:
        return int(np.count_nonzero(self.values))

    def __repr__(self) -> str:
        return (
            f"SegmentationMask(size={self.size}, "
            f"foreground={self.foreground_count})"
        )


@dataclass(slots=True)
class InferenceResult:
    """
    Joined outputs of one gateway dispatch.

    A None mask or faces value means that stage contributed nothing this
    cycle, either because it failed or because the engine was not ready.

    Attributes:
        mask: Segmentation mask or None
        faces: Detected faces or None
        segmentation_error: Failure that replaced the mask, if any
        landmark_error: Failure that replaced the faces, if any
        latency_ms: Wall time from dispatch to join
    """

    mask: Optional[SegmentationMask] = None
    faces: Optional[List[FaceLandmarkSet]] = None
    segmentation_error: Optional[Exception] = None
    landmark_error: Optional[Exception] = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.segmentation_error is None and self.landmark_error is None
