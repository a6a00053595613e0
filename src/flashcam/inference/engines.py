"""
Inference Engines
=================

Engine protocols and deterministic mock engines.

This module provides the Segmenter and LandmarkDetector protocols that
the InferenceGateway consumes, plus mock implementations for testing and
for running the pipeline without model weights.

Design Rules:
    - Engines take a Frame and never mutate it
    - Calls before load() completes raise InferenceUnavailable
    - Mocks are deterministic in frame size (no randomness)
"""

import asyncio
import logging
import math
from typing import List, Protocol

import numpy as np

from flashcam.errors import InferenceUnavailable
from flashcam.models.frame import Frame
from flashcam.models.inference import FaceLandmarkSet, Landmark, SegmentationMask


logger = logging.getLogger(__name__)


class Segmenter(Protocol):
    """
    Protocol for person segmentation backends.

    Implemented by:
        - MockSegmenter
        - DeepLabSegmenter (torchvision)
    """

    @property
    def is_loaded(self) -> bool:
        ...

    async def load(self) -> None:
        """Load model weights. Safe to call more than once."""
        ...

    async def segment(self, frame: Frame) -> SegmentationMask:
        """
        Compute a per-pixel person mask.

        Raises:
            InferenceUnavailable: If the model is not loaded
        """
        ...


class LandmarkDetector(Protocol):
    """
    Protocol for facial landmark backends.

    Implemented by:
        - MockLandmarkDetector
        - FaceMeshDetector (MediaPipe)
    """

    @property
    def is_loaded(self) -> bool:
        ...

    async def load(self) -> None:
        ...

    async def detect_faces(self, frame: Frame) -> List[FaceLandmarkSet]:
        """
        Detect faces and their landmarks in pixel coordinates.

        Raises:
            InferenceUnavailable: If the model is not loaded
        """
        ...


class MockSegmenter:
    """
    Deterministic mock segmenter.

    Marks a centred ellipse as foreground, roughly where a selfie subject
    would stand:
        - Horizontal radius: 35% of width
        - Vertical radius: 45% of height

    Attributes:
        latency_ms: Simulated inference latency
        load_delay_ms: Simulated model load time
    """

    def __init__(self, latency_ms: float = 0.0, load_delay_ms: float = 0.0) -> None:
        self.latency_ms = latency_ms
        self.load_delay_ms = load_delay_ms
        self._loaded = False
        self.call_count: int = 0

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        if self.load_delay_ms > 0:
            await asyncio.sleep(self.load_delay_ms / 1000.0)
        self._loaded = True
        logger.info("MockSegmenter loaded")

    async def segment(self, frame: Frame) -> SegmentationMask:
        if not self._loaded:
            raise InferenceUnavailable("MockSegmenter not loaded", stage="segmentation")

        self.call_count += 1
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)

        h, w = frame.height, frame.width
        ys, xs = np.ogrid[:h, :w]
        cx, cy = (w - 1) / 2.0, (h - 1) / 2.0
        rx, ry = max(w * 0.35, 0.5), max(h * 0.45, 0.5)
        inside = ((xs - cx) / rx) ** 2 + ((ys - cy) / ry) ** 2 <= 1.0
        return SegmentationMask(values=inside)


class MockLandmarkDetector:
    """
    Deterministic mock landmark detector.

    Places each face as a ring of points around the frame centre. Extra
    faces are offset horizontally by a quarter of the width.

    Attributes:
        landmark_count: Points per face
        face_count: Number of faces returned
        latency_ms: Simulated inference latency
    """

    def __init__(
        self,
        landmark_count: int = 36,
        face_count: int = 1,
        latency_ms: float = 0.0,
        load_delay_ms: float = 0.0,
    ) -> None:
        self.landmark_count = landmark_count
        self.face_count = face_count
        self.latency_ms = latency_ms
        self.load_delay_ms = load_delay_ms
        self._loaded = False
        self.call_count: int = 0

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        if self.load_delay_ms > 0:
            await asyncio.sleep(self.load_delay_ms / 1000.0)
        self._loaded = True
        logger.info("MockLandmarkDetector loaded")

    async def detect_faces(self, frame: Frame) -> List[FaceLandmarkSet]:
        if not self._loaded:
            raise InferenceUnavailable("MockLandmarkDetector not loaded", stage="landmarks")

        self.call_count += 1
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)

        w, h = frame.width, frame.height
        radius = min(w, h) * 0.2
        faces = []
        for face in range(self.face_count):
            cx = w / 2.0 + face * w / 4.0
            cy = h / 2.0
            points = tuple(
                Landmark(
                    x=cx + radius * math.cos(2 * math.pi * i / self.landmark_count),
                    y=cy + radius * math.sin(2 * math.pi * i / self.landmark_count),
                )
                for i in range(self.landmark_count)
            )
            faces.append(FaceLandmarkSet(points=points))
        return faces
