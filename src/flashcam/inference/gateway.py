"""
Inference Gateway
=================

Fork/join dispatch of the two per-frame model calls.

The gateway:
    - Issues segmentation and landmark detection concurrently
    - Bounds each call with its own deadline
    - Waits for both before returning (join barrier)
    - Converts any stage failure into "nothing detected" for the cycle

Design Rules:
    - Per-frame latency is max(segmentation, landmarks), never the sum
    - Stage errors never propagate past infer()
    - No retries within a cycle; the next cycle is the retry
    - At most one call per model in flight; a stage whose previous call
      is still running reports InferenceBusy instead of queueing
    - Cancelling infer() abandons the wait, not the running model call
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from flashcam.errors import (
    InferenceBusy,
    InferenceError,
    InferenceTimeout,
    InferenceUnavailable,
)
from flashcam.inference.engines import LandmarkDetector, Segmenter
from flashcam.models.frame import Frame
from flashcam.models.inference import FaceLandmarkSet, InferenceResult, SegmentationMask


logger = logging.getLogger(__name__)


def _consume_result(task: asyncio.Future) -> None:
    """Retrieve the outcome of a call whose caller may have stopped waiting."""
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Model call ended with {type(task.exception()).__name__}")


class StageMetrics:
    """Counters for one inference stage."""

    __slots__ = (
        "calls", "succeeded", "unavailable", "busy", "timeouts", "failures", "last_latency_ms",
    )

    def __init__(self) -> None:
        self.calls: int = 0
        self.succeeded: int = 0
        self.unavailable: int = 0
        self.busy: int = 0
        self.timeouts: int = 0
        self.failures: int = 0
        self.last_latency_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "calls": self.calls,
            "succeeded": self.succeeded,
            "unavailable": self.unavailable,
            "busy": self.busy,
            "timeouts": self.timeouts,
            "failures": self.failures,
            "last_latency_ms": round(self.last_latency_ms, 2),
        }


class InferenceGateway:
    """
    Concurrent front-end for a Segmenter and a LandmarkDetector.

    Attributes:
        segmenter: Person segmentation engine
        landmark_detector: Facial landmark engine
        timeout: Per-call deadline in seconds

    Example:
        gateway = InferenceGateway(MockSegmenter(), MockLandmarkDetector())
        await gateway.load()

        result = await gateway.infer(frame)
        compositor.apply(frame, result.mask, result.faces)
    """

    def __init__(
        self,
        segmenter: Segmenter,
        landmark_detector: LandmarkDetector,
        timeout: float = 1.0,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.segmenter = segmenter
        self.landmark_detector = landmark_detector
        self.timeout = timeout

        self.segmentation_metrics = StageMetrics()
        self.landmark_metrics = StageMetrics()
        self._inflight: Dict[str, asyncio.Future] = {}

        logger.info(
            f"InferenceGateway initialized: "
            f"segmenter={type(segmenter).__name__}, "
            f"landmarks={type(landmark_detector).__name__}, timeout={timeout}s"
        )

    @property
    def is_ready(self) -> bool:
        """True once both engines have loaded."""
        return self.segmenter.is_loaded and self.landmark_detector.is_loaded

    async def load(self) -> None:
        """
        Load both engines concurrently.

        A failed load is logged and leaves that engine unloaded; its calls
        then report InferenceUnavailable every cycle.
        """
        await asyncio.gather(
            self._load_engine("segmentation", self.segmenter),
            self._load_engine("landmarks", self.landmark_detector),
        )
        logger.info(
            f"Inference engines loaded: "
            f"segmentation={self.segmenter.is_loaded}, "
            f"landmarks={self.landmark_detector.is_loaded}"
        )

    async def _load_engine(self, stage: str, engine) -> None:
        try:
            await engine.load()
        except Exception as e:
            logger.error(f"Failed to load {stage} engine {type(engine).__name__}: {e}")

    # -------------------------------------------------------------------------
    # Single-stage calls
    # -------------------------------------------------------------------------

    async def segment(self, frame: Frame) -> SegmentationMask:
        """
        Run segmentation with the gateway deadline.

        Raises:
            InferenceUnavailable: Model not loaded
            InferenceBusy: Previous segmentation call still running
            InferenceTimeout: Deadline exceeded
        """
        return await self._dispatch("segmentation", lambda: self.segmenter.segment(frame))

    async def detect_faces(self, frame: Frame) -> List[FaceLandmarkSet]:
        """
        Run landmark detection with the gateway deadline.

        Raises:
            InferenceUnavailable: Model not loaded
            InferenceBusy: Previous landmark call still running
            InferenceTimeout: Deadline exceeded
        """
        return await self._dispatch(
            "landmarks", lambda: self.landmark_detector.detect_faces(frame)
        )

    async def _dispatch(self, stage: str, make_call: Callable[[], Awaitable]):
        """
        Start a model call unless one is already in flight for this stage.

        The call runs as its own task. A deadline or a cancelled cycle stops
        the wait, not the call.
        """
        pending = self._inflight.get(stage)
        if pending is not None and not pending.done():
            raise InferenceBusy(
                f"{stage} call from an earlier frame still running", stage=stage
            )

        task = asyncio.ensure_future(make_call())
        task.add_done_callback(_consume_result)
        self._inflight[stage] = task
        try:
            return await asyncio.wait_for(asyncio.shield(task), self.timeout)
        except asyncio.TimeoutError:
            raise InferenceTimeout(f"{stage} exceeded {self.timeout:.3f}s", stage=stage)

    # -------------------------------------------------------------------------
    # Fork / join
    # -------------------------------------------------------------------------

    async def infer(self, frame: Frame) -> InferenceResult:
        """
        Dispatch both model calls concurrently and join.

        Args:
            frame: Frame for this cycle (read only)

        Returns:
            InferenceResult; a failed stage has its output set to None
        """
        start = time.perf_counter()

        (mask, seg_error), (faces, lm_error) = await asyncio.gather(
            self._guard("segmentation", self.segmentation_metrics, self.segment(frame)),
            self._guard("landmarks", self.landmark_metrics, self.detect_faces(frame)),
        )

        return InferenceResult(
            mask=mask,
            faces=faces,
            segmentation_error=seg_error,
            landmark_error=lm_error,
            latency_ms=(time.perf_counter() - start) * 1000.0,
        )

    async def _guard(
        self, stage: str, metrics: StageMetrics, call
    ) -> Tuple[Optional[object], Optional[InferenceError]]:
        """Await one stage and absorb its failure."""
        metrics.calls += 1
        start = time.perf_counter()
        try:
            result = await call
            metrics.succeeded += 1
            return result, None
        except InferenceUnavailable as e:
            metrics.unavailable += 1
            logger.debug(f"{stage} unavailable: {e}")
            return None, e
        except InferenceBusy as e:
            metrics.busy += 1
            logger.debug(f"{stage} skipped: {e}")
            return None, e
        except InferenceTimeout as e:
            metrics.timeouts += 1
            logger.warning(f"{stage} timed out: {e}")
            return None, e
        except InferenceError as e:
            metrics.failures += 1
            logger.error(f"{stage} failed: {e}")
            return None, e
        except Exception as e:
            metrics.failures += 1
            logger.error(f"{stage} engine error: {e}")
            return None, InferenceError(str(e), stage=stage)
        finally:
            metrics.last_latency_ms = (time.perf_counter() - start) * 1000.0

    def close(self) -> None:
        """Release engine resources that need explicit cleanup."""
        for engine in (self.segmenter, self.landmark_detector):
            closer = getattr(engine, "close", None)
            if callable(closer):
                closer()

    def get_metrics(self) -> dict:
        """Get gateway metrics for observability."""
        return {
            "ready": self.is_ready,
            "timeout_seconds": self.timeout,
            "segmentation": self.segmentation_metrics.to_dict(),
            "landmarks": self.landmark_metrics.to_dict(),
        }
