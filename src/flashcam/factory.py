"""
Component Factory
=================

Builds pipeline components from Settings.

Fails fast when a model backend is requested but its dependency is not
installed, rather than silently falling back to a mock.
"""

import logging
from typing import Optional

from flashcam.capture import (
    CaptureSource,
    DeviceRegistry,
    OpenCVCaptureSource,
    SyntheticCaptureSource,
)
from flashcam.config import Settings
from flashcam.effects import Compositor, FlashController
from flashcam.inference import (
    InferenceGateway,
    LandmarkDetector,
    MockLandmarkDetector,
    MockSegmenter,
    Segmenter,
    _DEEPLAB_AVAILABLE,
    _MEDIAPIPE_AVAILABLE,
)
from flashcam.pipeline import FrameScheduler, Presenter


logger = logging.getLogger(__name__)


def create_capture_source(settings: Settings) -> CaptureSource:
    """Create the capture backend named in settings.capture.backend."""
    backend = settings.capture.backend

    if backend == "opencv":
        logger.info(
            f"Using OpenCVCaptureSource: "
            f"{settings.capture.width}x{settings.capture.height}@{settings.capture.fps}"
        )
        return OpenCVCaptureSource(
            width=settings.capture.width,
            height=settings.capture.height,
            fps=settings.capture.fps,
            frame_timeout=settings.capture.frame_timeout_seconds,
            max_probe_index=settings.capture.max_probe_index,
        )

    elif backend == "mock":
        logger.info("Using SyntheticCaptureSource")
        return SyntheticCaptureSource(
            width=settings.capture.width,
            height=settings.capture.height,
            frame_interval=1.0 / settings.capture.fps,
        )

    else:
        raise ValueError(f"Unknown capture backend: {backend}")


def create_segmenter(settings: Settings) -> Segmenter:
    backend = settings.inference.segmentation_backend

    if backend == "mock":
        logger.info("Using MockSegmenter")
        return MockSegmenter(latency_ms=settings.inference.mock.latency_ms)

    elif backend == "deeplab":
        if not _DEEPLAB_AVAILABLE:
            raise RuntimeError(
                "DeepLab backend requested but torch/torchvision not installed. "
                "Install with: pip install 'flashcam[models]'"
            )
        from flashcam.inference import DeepLabSegmenter

        logger.info(f"Using DeepLabSegmenter on {settings.inference.torch_device}")
        return DeepLabSegmenter(device=settings.inference.torch_device)

    else:
        raise ValueError(f"Unknown segmentation backend: {backend}")


def create_landmark_detector(settings: Settings) -> LandmarkDetector:
    backend = settings.inference.landmark_backend

    if backend == "mock":
        logger.info("Using MockLandmarkDetector")
        return MockLandmarkDetector(
            landmark_count=settings.inference.mock.landmark_count,
            face_count=settings.inference.mock.face_count,
            latency_ms=settings.inference.mock.latency_ms,
        )

    elif backend == "mediapipe":
        if not _MEDIAPIPE_AVAILABLE:
            raise RuntimeError(
                "MediaPipe backend requested but mediapipe not installed. "
                "Install with: pip install 'flashcam[models]'"
            )
        from flashcam.inference import FaceMeshDetector

        logger.info(f"Using FaceMeshDetector: model={settings.inference.face_landmarker_model}")
        return FaceMeshDetector(
            model_path=settings.inference.face_landmarker_model,
            max_faces=settings.inference.max_faces,
        )

    else:
        raise ValueError(f"Unknown landmark backend: {backend}")


def create_inference_gateway(settings: Settings) -> InferenceGateway:
    return InferenceGateway(
        segmenter=create_segmenter(settings),
        landmark_detector=create_landmark_detector(settings),
        timeout=settings.inference.timeout_seconds,
    )


def create_compositor(settings: Settings) -> Compositor:
    return Compositor(
        attenuation=settings.compositor.attenuation,
        landmark_gain=settings.compositor.landmark_gain,
        background_mode=settings.compositor.background_mode,
        background_fill_value=settings.compositor.background_fill_value,
    )


def create_flash_controller(settings: Settings) -> FlashController:
    return FlashController(
        threshold=settings.flash.threshold,
        sample_stride=settings.flash.sample_stride,
        overlay_opacity=settings.flash.overlay_opacity,
        lag_one_cycle=settings.flash.lag_one_cycle,
        enabled=settings.flash.enabled,
    )


def create_scheduler(
    settings: Settings,
    presenter: Presenter,
    source: Optional[CaptureSource] = None,
    gateway: Optional[InferenceGateway] = None,
    registry: Optional[DeviceRegistry] = None,
) -> FrameScheduler:
    """
    Assemble a FrameScheduler.

    Components not passed in are built from settings.
    """
    if registry is None:
        registry = DeviceRegistry(preferred_id=settings.capture.default_device)

    return FrameScheduler(
        source=source or create_capture_source(settings),
        gateway=gateway or create_inference_gateway(settings),
        compositor=create_compositor(settings),
        flash=create_flash_controller(settings),
        presenter=presenter,
        registry=registry,
        default_device=settings.capture.default_device,
        stop_timeout=settings.session.stop_timeout_seconds,
    )
