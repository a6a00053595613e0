"""
Pipeline Metrics
================

Counters for one pipeline session.

DESIGN RULES:
    - Plain counters, updated from the event loop only
    - Never influence scheduling or effects
    - Reset when a new session starts
"""

import logging
from typing import Optional, Tuple

from flashcam.models.frame import Frame
from flashcam.models.inference import InferenceResult


logger = logging.getLogger(__name__)


class PipelineMetrics:
    """Metrics for FrameScheduler observability."""

    __slots__ = (
        "cycles_started",
        "cycles_completed",
        "cycle_errors",
        "capture_errors",
        "segmentation_misses",
        "landmark_misses",
        "flash_frames",
        "device_switches",
        "last_frame_id",
        "last_frame_size",
        "last_cycle_ms",
        "last_inference_ms",
        "log_every_n_cycles",
    )

    def __init__(self, log_every_n_cycles: int = 300) -> None:
        self.cycles_started: int = 0
        self.cycles_completed: int = 0
        self.cycle_errors: int = 0
        self.capture_errors: int = 0
        self.segmentation_misses: int = 0
        self.landmark_misses: int = 0
        self.flash_frames: int = 0
        self.device_switches: int = 0
        self.last_frame_id: int = -1
        self.last_frame_size: Optional[Tuple[int, int]] = None
        self.last_cycle_ms: float = 0.0
        self.last_inference_ms: float = 0.0
        self.log_every_n_cycles = log_every_n_cycles

    def record_cycle(
        self,
        frame: Frame,
        result: InferenceResult,
        flashed: bool,
        cycle_ms: float,
    ) -> None:
        """Update counters after a completed cycle."""
        self.cycles_completed += 1
        self.last_frame_id = frame.frame_id
        self.last_frame_size = (frame.width, frame.height)
        self.last_cycle_ms = cycle_ms
        self.last_inference_ms = result.latency_ms
        if result.mask is None:
            self.segmentation_misses += 1
        if result.faces is None:
            self.landmark_misses += 1
        if flashed:
            self.flash_frames += 1

        if self.log_every_n_cycles and self.cycles_completed % self.log_every_n_cycles == 0:
            logger.info(
                f"Pipeline [cycle {self.cycles_completed}]: "
                f"cycle={cycle_ms:.1f}ms, inference={result.latency_ms:.1f}ms, "
                f"seg_misses={self.segmentation_misses}, "
                f"lm_misses={self.landmark_misses}"
            )

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "cycles_started": self.cycles_started,
            "cycles_completed": self.cycles_completed,
            "cycle_errors": self.cycle_errors,
            "capture_errors": self.capture_errors,
            "segmentation_misses": self.segmentation_misses,
            "landmark_misses": self.landmark_misses,
            "flash_frames": self.flash_frames,
            "device_switches": self.device_switches,
            "last_frame_id": self.last_frame_id,
            "last_frame_size": list(self.last_frame_size) if self.last_frame_size else None,
            "last_cycle_ms": round(self.last_cycle_ms, 2),
            "last_inference_ms": round(self.last_inference_ms, 2),
        }
