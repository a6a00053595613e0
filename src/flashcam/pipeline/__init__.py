"""
Pipeline Module
===============

The frame processing loop and the consumers it presents to.

Components:
    - FrameScheduler: Session state machine driving capture -> present
    - Presenter: Protocol for frame consumers
    - RefreshClock: Display refresh signal pacing each cycle
    - LatestFramePresenter: Newest frame for the HTTP service
    - WindowPresenter: OpenCV desktop preview
"""

from flashcam.pipeline.presenter import (
    LatestFramePresenter,
    Presenter,
    RefreshClock,
    WindowPresenter,
)
from flashcam.pipeline.scheduler import CyclePhase, FrameScheduler, SchedulerState


__all__ = [
    "FrameScheduler",
    "SchedulerState",
    "CyclePhase",
    "Presenter",
    "RefreshClock",
    "LatestFramePresenter",
    "WindowPresenter",
]
