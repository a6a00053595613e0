"""
Face Mesh Detector
==================

Facial landmark detection with the MediaPipe Tasks FaceLandmarker.

This engine:
    - Loads a .task bundle from disk in a worker thread
    - Runs detection in IMAGE mode in a worker thread
    - Scales normalized landmark coordinates to frame pixels

Design Rules:
    - Calls before load() raise InferenceUnavailable
    - A missing model file leaves the engine unloaded (logged, not fatal)
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import List, Optional

import mediapipe as mp
import numpy as np
from mediapipe.tasks import python as mp_python
from mediapipe.tasks.python import vision

from flashcam.errors import InferenceUnavailable
from flashcam.models.frame import Frame
from flashcam.models.inference import FaceLandmarkSet, Landmark


logger = logging.getLogger(__name__)


class FaceMeshDetector:
    """
    MediaPipe FaceLandmarker wrapper (478 points per face).

    Attributes:
        model_path: Path to face_landmarker.task
        max_faces: Maximum faces per frame
    """

    def __init__(
        self,
        model_path: str = "./models/face_landmarker.task",
        max_faces: int = 1,
        min_detection_confidence: float = 0.5,
    ) -> None:
        self.model_path = model_path
        self.max_faces = max_faces
        self.min_detection_confidence = min_detection_confidence

        self._landmarker: Optional[vision.FaceLandmarker] = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._landmarker is not None

    async def load(self) -> None:
        if self._landmarker is not None:
            return
        await asyncio.to_thread(self._load_model)

    def _load_model(self) -> None:
        path = Path(self.model_path)
        if not path.exists():
            raise FileNotFoundError(f"Face landmarker model not found: {path}")

        options = vision.FaceLandmarkerOptions(
            base_options=mp_python.BaseOptions(model_asset_path=str(path)),
            running_mode=vision.RunningMode.IMAGE,
            num_faces=self.max_faces,
            min_face_detection_confidence=self.min_detection_confidence,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(options)
        logger.info(f"FaceLandmarker loaded from {path} (max_faces={self.max_faces})")

    async def detect_faces(self, frame: Frame) -> List[FaceLandmarkSet]:
        if self._landmarker is None:
            raise InferenceUnavailable("FaceLandmarker not loaded", stage="landmarks")
        rgb = np.ascontiguousarray(frame.pixels[..., :3])
        return await asyncio.to_thread(self._run, rgb)

    def _run(self, rgb: np.ndarray) -> List[FaceLandmarkSet]:
        h, w = rgb.shape[:2]
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

        with self._lock:
            if self._landmarker is None:
                raise InferenceUnavailable("FaceLandmarker closed", stage="landmarks")
            result = self._landmarker.detect(image)

        faces = []
        for face_landmarks in result.face_landmarks or []:
            points = tuple(Landmark(x=lm.x * w, y=lm.y * h) for lm in face_landmarks)
            faces.append(FaceLandmarkSet(points=points))
        return faces

    def close(self) -> None:
        # Waits for a detect() still running in a worker thread
        with self._lock:
            if self._landmarker is not None:
                self._landmarker.close()
                self._landmarker = None
