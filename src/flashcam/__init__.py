"""
FlashCam
========

Real-time camera effects pipeline.

Each cycle captures a frame, runs person segmentation and facial landmark
detection concurrently, darkens the background, brightens landmark pixels,
and blends a white flash over dark frames before presenting.

Components:
    - capture: Camera sources, latest-frame buffer, device registry
    - inference: Segmentation / landmark engines behind a fork/join gateway
    - effects: Compositor and brightness/flash controller
    - pipeline: Frame scheduler and presenters
    - observability: Session metrics

Example:
    from flashcam.config import settings
    from flashcam.factory import create_scheduler

    # The HTTP service is started via main.py (flashcam-serve),
    # the desktop preview via preview.py (flashcam-preview)
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
