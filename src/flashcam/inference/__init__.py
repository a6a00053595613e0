"""
Inference Module
================

Segmentation and landmark models behind a narrow interface.

The pipeline consumes ONLY the outputs of this module (masks and point
lists). Model internals are a black box.

Components:
    - InferenceGateway: Concurrent fork/join of both model calls
    - Segmenter / LandmarkDetector: Engine protocols
    - MockSegmenter / MockLandmarkDetector: Deterministic mocks
    - DeepLabSegmenter: torchvision DeepLab v3 (optional dependency)
    - FaceMeshDetector: MediaPipe FaceLandmarker (optional dependency)
"""

from flashcam.inference.engines import (
    LandmarkDetector,
    MockLandmarkDetector,
    MockSegmenter,
    Segmenter,
)
from flashcam.inference.gateway import InferenceGateway

# Model backends imported separately to avoid mandatory heavy dependencies
try:
    from flashcam.inference.deeplab import DeepLabSegmenter
    _DEEPLAB_AVAILABLE = True
except ImportError:
    _DEEPLAB_AVAILABLE = False
    DeepLabSegmenter = None  # type: ignore

try:
    from flashcam.inference.face_mesh import FaceMeshDetector
    _MEDIAPIPE_AVAILABLE = True
except ImportError:
    _MEDIAPIPE_AVAILABLE = False
    FaceMeshDetector = None  # type: ignore

__all__ = [
    "InferenceGateway",
    "Segmenter",
    "LandmarkDetector",
    "MockSegmenter",
    "MockLandmarkDetector",
    "DeepLabSegmenter",
    "FaceMeshDetector",
    "_DEEPLAB_AVAILABLE",
    "_MEDIAPIPE_AVAILABLE",
]
