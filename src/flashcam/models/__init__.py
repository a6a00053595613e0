"""
Data Models
===========

Typed data passed between pipeline stages.

Models:
    Frame:
        - Frame: RGBA pixel buffer for one cycle

    Inference:
        - Landmark, FaceLandmarkSet: Facial keypoints
        - SegmentationMask: Per-pixel foreground mask
        - InferenceResult: Joined gateway output

    Devices:
        - Device: Enumerated capture device
"""

from flashcam.models.frame import Frame
from flashcam.models.inference import (
    FaceLandmarkSet,
    InferenceResult,
    Landmark,
    SegmentationMask,
)
from flashcam.models.device import Device

__all__ = [
    "Frame",
    "Landmark",
    "FaceLandmarkSet",
    "SegmentationMask",
    "InferenceResult",
    "Device",
]
