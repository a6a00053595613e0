"""
Frame Scheduler
===============

Drives the capture -> inference -> composite -> flash -> present loop.

State machine:
    IDLE -> STARTING -> RUNNING -> STOPPING -> IDLE

Concurrency model:
    - One loop task per session; cycles never overlap
    - The two inference calls are the only concurrent work in a cycle
    - The cycle lock is held for a whole cycle; device switches and
      registry refreshes take it too, so no cycle ever sees two streams
    - The control lock serialises start / stop / switch / refresh

Cancellation:
    - stop() sets the cancellation token, checked before every capture
    - A cycle still at capture or inference is cancelled (abandoned)
    - A cycle past the join barrier is allowed to finish, unless it
      overruns stop_timeout
    - The stream is always closed before the session returns to IDLE

Errors:
    - CaptureError on start() is raised to the caller
    - CaptureError inside the loop tears the session down; it is kept in
      last_error and re-raised by join()
    - Any close or switch failure is wrapped as a CaptureError and still
      returns the session to IDLE
    - Any other cycle error is logged and counted; the loop continues
"""

import asyncio
import logging
import time
from enum import Enum
from typing import List, Optional

from flashcam.capture.devices import DeviceRegistry
from flashcam.capture.source import DEFAULT_DEVICE, CaptureSource, CaptureStream
from flashcam.effects.compositor import Compositor
from flashcam.effects.flash import FlashController
from flashcam.errors import CaptureError, DeviceUnavailable
from flashcam.inference.gateway import InferenceGateway
from flashcam.models.device import Device
from flashcam.observability.metrics import PipelineMetrics
from flashcam.pipeline.presenter import Presenter


logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Session lifecycle states."""

    IDLE = "IDLE"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class CyclePhase(str, Enum):
    """Where the loop task currently is."""

    IDLE = "idle"
    CAPTURE = "capture"
    INFERENCE = "inference"
    COMPOSITE = "composite"
    PRESENT = "present"
    WAIT = "wait"


# Phases before the join barrier; a stop may abandon these
_ABANDONABLE = frozenset({CyclePhase.CAPTURE, CyclePhase.INFERENCE, CyclePhase.WAIT})


def _capture_error(error: Exception, action: str, device_id: Optional[str]) -> CaptureError:
    """Wrap a backend failure so the session reports it as a CaptureError."""
    if isinstance(error, CaptureError):
        return error
    wrapped = CaptureError(f"Failed to {action} {device_id!r}: {error}", device_id=device_id)
    wrapped.__cause__ = error
    return wrapped


class FrameScheduler:
    """
    Owner of one pipeline session.

    Attributes:
        source: Capture backend
        gateway: Inference fork/join
        compositor: Mask + landmark effects
        flash: Brightness / flash controller (session state)
        presenter: Frame consumer and refresh signal
        registry: Optional device registry kept in sync with the session
        metrics: Counters for the current session
        last_error: Capture failure that ended the last session, if any

    Example:
        scheduler = FrameScheduler(source, gateway, compositor, flash, presenter)
        await scheduler.start("default")
        ...
        await scheduler.switch_device("1")
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        source: CaptureSource,
        gateway: InferenceGateway,
        compositor: Compositor,
        flash: FlashController,
        presenter: Presenter,
        registry: Optional[DeviceRegistry] = None,
        default_device: str = DEFAULT_DEVICE,
        stop_timeout: float = 2.0,
    ) -> None:
        self.source = source
        self.gateway = gateway
        self.compositor = compositor
        self.flash = flash
        self.presenter = presenter
        self.registry = registry
        self.default_device = default_device
        self.stop_timeout = stop_timeout

        self.metrics = PipelineMetrics()
        self.last_error: Optional[CaptureError] = None

        self._state = SchedulerState.IDLE
        self._phase = CyclePhase.IDLE
        self._stream: Optional[CaptureStream] = None
        self._task: Optional[asyncio.Task] = None

        self._stop_event = asyncio.Event()
        self._idle_event = asyncio.Event()
        self._idle_event.set()
        self._cycle_lock = asyncio.Lock()
        self._control_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Read-only state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def phase(self) -> CyclePhase:
        return self._phase

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def stream(self) -> Optional[CaptureStream]:
        return self._stream

    @property
    def device_id(self) -> Optional[str]:
        """Device of the open stream, if any."""
        return self._stream.device_id if self._stream is not None else None

    def _set_state(self, state: SchedulerState) -> None:
        if state is self._state:
            return
        logger.info(f"Scheduler {self._state.value} -> {state.value}")
        self._state = state
        if state is SchedulerState.IDLE:
            self._idle_event.set()
        else:
            self._idle_event.clear()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, device_id: Optional[str] = None) -> None:
        """
        Open a device and start the loop.

        Args:
            device_id: Device to open; defaults to the registry selection,
                then to default_device

        Raises:
            CaptureError: Device could not be opened (state returns to IDLE)
            RuntimeError: Session already active
        """
        async with self._control_lock:
            if self._state is not SchedulerState.IDLE:
                raise RuntimeError(f"Cannot start from state {self._state.value}")

            if device_id is None:
                if self.registry is not None and self.registry.selected_id is not None:
                    device_id = self.registry.selected_id
                else:
                    device_id = self.default_device

            self._set_state(SchedulerState.STARTING)
            self.last_error = None
            opened = False
            try:
                stream = await self.source.open(device_id)
                opened = True
            except CaptureError as e:
                self.last_error = e
                logger.error(f"Failed to start session on {device_id!r}: {e}")
                raise
            finally:
                if not opened:
                    self._set_state(SchedulerState.IDLE)

            self._stream = stream
            self._sync_selection(stream.device_id)

            # Session-scoped state
            self.flash.reset()
            self.metrics = PipelineMetrics()
            self._stop_event.clear()

            self._set_state(SchedulerState.RUNNING)
            self._task = asyncio.create_task(self._run(), name="frame_scheduler")
            logger.info(f"Session started on {stream.device_id!r}")

    async def stop(self) -> None:
        """
        Stop the session and close the stream. Idempotent.

        No cycle starts after this is called. A cycle still capturing or
        inferring is abandoned. A cycle past the join barrier finishes
        first; the only exception is one that overruns stop_timeout, which
        is cancelled and logged as an error.
        """
        async with self._control_lock:
            await self._stop_locked()

    async def _stop_locked(self) -> None:
        task = self._task
        if self._state is SchedulerState.IDLE and task is None:
            return

        self._stop_event.set()
        self._set_state(SchedulerState.STOPPING)

        if task is not None and not task.done():
            if self._phase in _ABANDONABLE:
                logger.info(f"Abandoning in-flight cycle at phase {self._phase.value}")
                task.cancel()
            else:
                try:
                    await asyncio.wait_for(asyncio.shield(task), self.stop_timeout)
                except asyncio.TimeoutError:
                    logger.error(
                        f"Cycle at phase {self._phase.value} did not finish within "
                        f"{self.stop_timeout:.1f}s, cancelling it"
                    )
                    task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Frame loop failed: {e}")

        await self._teardown()

    async def _teardown(self) -> None:
        """Close the stream and return to IDLE. Safe to call twice."""
        stream, self._stream = self._stream, None
        try:
            if stream is not None:
                if self._state is not SchedulerState.IDLE:
                    self._set_state(SchedulerState.STOPPING)
                await self._close_stream(stream)
        finally:
            self._task = None
            self._phase = CyclePhase.IDLE
            self._set_state(SchedulerState.IDLE)
        logger.info("Session stopped")

    async def _close_stream(self, stream: CaptureStream) -> None:
        """Close stream; a failure is logged and kept in last_error."""
        try:
            await self.source.close(stream)
        except Exception as e:
            error = _capture_error(e, "close", stream.device_id)
            logger.error(f"Error closing {stream.device_id!r}: {e}")
            if self.last_error is None:
                self.last_error = error

    async def join(self) -> None:
        """
        Wait until the session returns to IDLE.

        Raises:
            CaptureError: If the session ended because capture failed
        """
        await self._idle_event.wait()
        if self.last_error is not None:
            raise self.last_error

    # -------------------------------------------------------------------------
    # Devices
    # -------------------------------------------------------------------------

    async def switch_device(self, device_id: str) -> None:
        """
        Move the running session to another device.

        The previous stream is closed before the new one is opened, and
        never while a cycle is in flight. When idle, only the selection
        changes; before the first enumeration it becomes the preferred
        device for the next start.

        Raises:
            DeviceUnavailable: Device not in an enumerated registry
            CaptureError: Old device failed to close or new device failed
                to open (session is stopped)
        """
        async with self._control_lock:
            if self.registry is not None and self.registry.enumerated:
                self.registry.select(device_id)
            elif self.registry is not None:
                self.registry.prefer(device_id)

            if self._state is not SchedulerState.RUNNING:
                if self.registry is None or not self.registry.enumerated:
                    self.default_device = device_id
                logger.info(f"Selected {device_id!r} (session not running)")
                return

            failure: Optional[CaptureError] = None
            async with self._cycle_lock:
                old, self._stream = self._stream, None
                self.metrics.device_switches += 1
                action = "close"
                try:
                    if old is not None:
                        await self.source.close(old)
                    action = "open"
                    self._stream = await self.source.open(device_id)
                except Exception as e:
                    failure = _capture_error(
                        e, action, old.device_id if action == "close" else device_id
                    )
                    self.last_error = failure
                    self._stop_event.set()

            if failure is not None:
                logger.error(f"Device switch to {device_id!r} failed: {failure}")
                await self._stop_locked()
                raise failure

            self._sync_selection(self._stream.device_id)
            logger.info(f"Switched session to {self._stream.device_id!r}")

    async def refresh_devices(self) -> List[Device]:
        """
        Re-enumerate devices without racing an in-flight cycle.

        Stops the session if its device disappeared from the list.
        """
        if self.registry is None:
            raise RuntimeError("No device registry configured")

        async with self._control_lock:
            async with self._cycle_lock:
                devices = await self.registry.refresh(self.source)

            active = self.device_id
            if (
                self._state is SchedulerState.RUNNING
                and active is not None
                and active != DEFAULT_DEVICE
                and not self.registry.contains(active)
            ):
                self.last_error = DeviceUnavailable(
                    f"Active device {active!r} disappeared", device_id=active
                )
                logger.error(f"{self.last_error}, stopping session")
                await self._stop_locked()

            return devices

    def _sync_selection(self, device_id: str) -> None:
        if self.registry is not None and self.registry.contains(device_id):
            self.registry.select(device_id)

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        """Loop task: one cycle per refresh tick until stopped."""
        logger.info("Frame loop started")
        try:
            while not self._stop_event.is_set():
                async with self._cycle_lock:
                    if self._stop_event.is_set() or self._stream is None:
                        break
                    try:
                        await self._cycle(self._stream)
                    except CaptureError:
                        raise
                    except Exception as e:
                        self.metrics.cycle_errors += 1
                        logger.error(f"Cycle error: {e}")

                self._phase = CyclePhase.WAIT
                await self.presenter.next_refresh()

        except CaptureError as e:
            self.metrics.capture_errors += 1
            self.last_error = e
            logger.error(f"Capture failed, tearing down session: {e}")
            self._stop_event.set()
            await self._teardown()
        finally:
            self._phase = CyclePhase.IDLE
            logger.info("Frame loop stopped")

    async def _cycle(self, stream: CaptureStream) -> None:
        """One capture -> present cycle."""
        start = time.perf_counter()
        self.metrics.cycles_started += 1

        self._phase = CyclePhase.CAPTURE
        frame = await self.source.next_frame(stream)

        self._phase = CyclePhase.INFERENCE
        result = await self.gateway.infer(frame)

        # Join barrier passed: from here the cycle always completes
        self._phase = CyclePhase.COMPOSITE
        self.compositor.apply(frame, result.mask, result.faces)
        flashed = self.flash.process(frame)

        self._phase = CyclePhase.PRESENT
        await self.presenter.present(frame)

        self.metrics.record_cycle(
            frame, result, flashed, (time.perf_counter() - start) * 1000.0
        )

    def get_metrics(self) -> dict:
        """Get session metrics for observability."""
        return {
            "state": self._state.value,
            "phase": self._phase.value,
            "device_id": self.device_id,
            "last_error": str(self.last_error) if self.last_error else None,
            **self.metrics.to_dict(),
        }
