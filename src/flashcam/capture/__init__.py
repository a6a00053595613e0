"""
Capture Module
==============

Live video acquisition and device bookkeeping.

This module provides the ingestion layer for FlashCam:
    - FrameBuffer: Single-slot latest-frame hand-off
    - CaptureSource: Protocol for capture backends
    - OpenCVCaptureSource: Webcam capture via cv2.VideoCapture
    - SyntheticCaptureSource: Hardware-free test patterns
    - DeviceRegistry: Enumerated devices + current selection

Example:
    from flashcam.capture import OpenCVCaptureSource, DeviceRegistry

    source = OpenCVCaptureSource()
    registry = DeviceRegistry()
    await registry.refresh(source)

    stream = await source.open(registry.selected_id)
    frame = await source.next_frame(stream)
    await source.close(stream)
"""

from flashcam.capture.buffer import FrameBuffer
from flashcam.capture.source import (
    DEFAULT_DEVICE,
    CaptureSource,
    CaptureStream,
    OpenCVCaptureSource,
    SyntheticCaptureSource,
)
from flashcam.capture.devices import DeviceRegistry


__all__ = [
    "DEFAULT_DEVICE",
    "FrameBuffer",
    "CaptureSource",
    "CaptureStream",
    "OpenCVCaptureSource",
    "SyntheticCaptureSource",
    "DeviceRegistry",
]
