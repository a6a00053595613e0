"""
Frame Scheduler Tests
=====================

Session lifecycle, cycle ordering, cancellation and device switching.
"""

import asyncio
import logging
import time

import pytest

from conftest import RecordingPresenter, RecordingSource, wait_until
from flashcam.capture import DeviceRegistry
from flashcam.effects import Compositor, FlashController
from flashcam.errors import CaptureError, DeviceUnavailable
from flashcam.inference import InferenceGateway, MockLandmarkDetector, MockSegmenter
from flashcam.pipeline import CyclePhase, FrameScheduler, SchedulerState


def _scheduler(source, gateway, presenter, registry=None, **kwargs) -> FrameScheduler:
    return FrameScheduler(
        source=source,
        gateway=gateway,
        compositor=Compositor(attenuation=0.25, landmark_gain=1.2),
        flash=FlashController(threshold=40, sample_stride=100, overlay_opacity=0.2),
        presenter=presenter,
        registry=registry,
        **kwargs,
    )


class SlowPresenter(RecordingPresenter):
    """Presenter that takes a while to accept each frame."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def present(self, frame):
        await asyncio.sleep(self.delay)
        await super().present(frame)


class ReleaseErrorSource(RecordingSource):
    """Source whose close() releases the device, then raises a driver error."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fail_close = True

    async def close(self, stream):
        await super().close(stream)
        if self.fail_close:
            raise RuntimeError("VIDIOC_STREAMOFF failed")


class TestLifecycle:
    """Tests for start / stop."""

    def test_start_and_stop(self, recording_source, loaded_gateway):
        """A session runs cycles and closes its stream on stop."""
        presenter = RecordingPresenter()

        async def scenario():
            scheduler = _scheduler(recording_source, loaded_gateway, presenter)
            await scheduler.start("cam:0")
            assert scheduler.state is SchedulerState.RUNNING
            assert scheduler.device_id == "cam:0"

            await wait_until(lambda: len(presenter.frames) >= 3)
            await scheduler.stop()
            return scheduler

        scheduler = asyncio.run(scenario())

        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.stream is None
        assert recording_source.events == [("open", "cam:0"), ("close", "cam:0")]
        assert scheduler.metrics.cycles_completed >= 3
        assert scheduler.last_error is None

    def test_black_frame_pipeline(self, unloaded_gateway):
        """With no model output, a black 4x4 frame is presented at RGB 51."""
        source = RecordingSource(width=4, height=4, devices=("cam:0",), rgb=(0, 0, 0))
        presenter = RecordingPresenter()

        async def scenario():
            scheduler = _scheduler(source, unloaded_gateway, presenter)
            await scheduler.start()
            await wait_until(lambda: len(presenter.frames) >= 2)
            await scheduler.stop()
            return scheduler

        scheduler = asyncio.run(scenario())

        for frame in presenter.frames:
            assert (frame.pixels[..., :3] == 51).all()
            assert (frame.pixels[..., 3] == 255).all()
        assert scheduler.metrics.segmentation_misses >= 2
        assert scheduler.metrics.flash_frames >= 2

    def test_start_failure_returns_to_idle(self, loaded_gateway):
        """An open failure is raised to the caller and leaves the session idle."""
        source = RecordingSource(devices=("cam:0",), fail_open=("cam:0",))

        async def scenario():
            scheduler = _scheduler(source, loaded_gateway, RecordingPresenter())
            with pytest.raises(DeviceUnavailable):
                await scheduler.start("cam:0")
            return scheduler

        scheduler = asyncio.run(scenario())

        assert scheduler.state is SchedulerState.IDLE
        assert isinstance(scheduler.last_error, DeviceUnavailable)
        assert source.events == []

    def test_start_twice(self, recording_source, loaded_gateway):
        """A running session cannot be started again."""

        async def scenario():
            scheduler = _scheduler(recording_source, loaded_gateway, RecordingPresenter())
            await scheduler.start("cam:0")
            try:
                with pytest.raises(RuntimeError):
                    await scheduler.start("cam:1")
            finally:
                await scheduler.stop()

        asyncio.run(scenario())
        assert recording_source.open_count == 1

    def test_stop_is_idempotent(self, recording_source, loaded_gateway):
        """stop() before start and twice after start is harmless."""

        async def scenario():
            scheduler = _scheduler(recording_source, loaded_gateway, RecordingPresenter())
            await scheduler.stop()
            await scheduler.start("cam:0")
            await scheduler.stop()
            await scheduler.stop()

        asyncio.run(scenario())
        assert recording_source.close_count == 1

    def test_session_state_reset_on_start(self, unloaded_gateway):
        """Flash state and metrics start fresh for every session."""
        source = RecordingSource(width=4, height=4, devices=("cam:0",), rgb=(0, 0, 0))
        presenter = RecordingPresenter()

        async def scenario():
            scheduler = _scheduler(source, unloaded_gateway, presenter)
            await scheduler.start()
            await wait_until(lambda: scheduler.metrics.cycles_completed >= 2)
            await scheduler.stop()
            first_metrics = scheduler.metrics

            await scheduler.start()
            fresh = scheduler.metrics
            flash_cycles = scheduler.flash.flash_cycles
            await scheduler.stop()
            return first_metrics, fresh, flash_cycles

        first_metrics, fresh, flash_cycles = asyncio.run(scenario())

        assert first_metrics is not fresh
        assert flash_cycles <= 1


class TestCancellation:
    """Tests for stopping with a cycle in flight."""

    def test_stop_abandons_inference(self, recording_source):
        """A cycle still waiting on inference is cancelled, not presented."""
        gateway = InferenceGateway(
            MockSegmenter(latency_ms=2000),
            MockLandmarkDetector(),
            timeout=5.0,
        )
        presenter = RecordingPresenter()

        async def scenario():
            await gateway.load()
            scheduler = _scheduler(recording_source, gateway, presenter)
            await scheduler.start("cam:0")
            await wait_until(lambda: scheduler.phase is CyclePhase.INFERENCE)

            start = time.perf_counter()
            await scheduler.stop()
            return scheduler, time.perf_counter() - start

        scheduler, elapsed = asyncio.run(scenario())

        assert elapsed < 0.5
        assert presenter.frames == []
        assert scheduler.state is SchedulerState.IDLE
        assert recording_source.events[-1] == ("close", "cam:0")

    def test_cycle_past_join_completes(self, recording_source, loaded_gateway):
        """A cycle already presenting finishes before the stream closes."""
        presenter = SlowPresenter(delay=0.2)

        async def scenario():
            scheduler = _scheduler(recording_source, loaded_gateway, presenter)
            await scheduler.start("cam:0")
            await wait_until(lambda: scheduler.phase is CyclePhase.PRESENT)
            await scheduler.stop()
            return scheduler

        scheduler = asyncio.run(scenario())

        assert len(presenter.frames) == 1
        assert scheduler.metrics.cycles_completed == 1
        assert recording_source.close_count == 1

    def test_overrunning_cycle_is_cancelled_with_error_log(
        self, recording_source, loaded_gateway, caplog
    ):
        """A presenting cycle that overruns stop_timeout is cancelled and logged."""
        presenter = SlowPresenter(delay=5.0)

        async def scenario():
            scheduler = _scheduler(
                recording_source, loaded_gateway, presenter, stop_timeout=0.1
            )
            await scheduler.start("cam:0")
            await wait_until(lambda: scheduler.phase is CyclePhase.PRESENT)

            start = time.perf_counter()
            await scheduler.stop()
            return scheduler, time.perf_counter() - start

        with caplog.at_level(logging.ERROR, logger="flashcam.pipeline.scheduler"):
            scheduler, elapsed = asyncio.run(scenario())

        assert elapsed < 1.0
        assert presenter.frames == []
        assert scheduler.state is SchedulerState.IDLE
        assert recording_source.close_count == 1
        assert any(
            "did not finish" in r.getMessage() and r.levelno == logging.ERROR
            for r in caplog.records
        )


class TestDeviceSwitching:
    """Tests for switching devices mid-session."""

    def test_switch_closes_before_open(self, recording_source, loaded_gateway):
        """The old stream is closed exactly once before the new one opens."""
        presenter = RecordingPresenter()

        async def scenario():
            scheduler = _scheduler(recording_source, loaded_gateway, presenter)
            await scheduler.start("cam:0")
            await wait_until(lambda: len(presenter.frames) >= 2)

            await scheduler.switch_device("cam:1")
            assert scheduler.device_id == "cam:1"

            await wait_until(lambda: presenter.frames[-1].device_id == "cam:1")
            await scheduler.stop()
            return scheduler

        scheduler = asyncio.run(scenario())

        assert recording_source.events == [
            ("open", "cam:0"),
            ("close", "cam:0"),
            ("open", "cam:1"),
            ("close", "cam:1"),
        ]
        assert scheduler.metrics.device_switches == 1

        ids = [f.device_id for f in presenter.frames]
        first_new = ids.index("cam:1")
        assert all(d == "cam:1" for d in ids[first_new:])
        new_frame = presenter.frames[first_new]
        assert (new_frame.width, new_frame.height) == (4, 3)

    def test_switch_failure_stops_session(self, loaded_gateway):
        """If the new device cannot open, the session stops with the error."""
        source = RecordingSource(devices=("cam:0", "cam:1"), fail_open=("cam:1",))

        async def scenario():
            scheduler = _scheduler(source, loaded_gateway, RecordingPresenter())
            await scheduler.start("cam:0")
            with pytest.raises(DeviceUnavailable):
                await scheduler.switch_device("cam:1")
            return scheduler

        scheduler = asyncio.run(scenario())

        assert scheduler.state is SchedulerState.IDLE
        assert source.events == [("open", "cam:0"), ("close", "cam:0")]
        assert isinstance(scheduler.last_error, DeviceUnavailable)

    def test_switch_while_idle_only_selects(self, recording_source, loaded_gateway):
        """When idle, switching records the selection for the next start."""
        registry = DeviceRegistry()

        async def scenario():
            scheduler = _scheduler(
                recording_source, loaded_gateway, RecordingPresenter(), registry=registry
            )
            await scheduler.refresh_devices()
            await scheduler.switch_device("cam:1")
            assert recording_source.events == []

            await scheduler.start()
            device = scheduler.device_id
            await scheduler.stop()
            return device

        assert asyncio.run(scenario()) == "cam:1"
        assert registry.selected_id == "cam:1"

    def test_switch_to_unknown_device(self, recording_source, loaded_gateway):
        """An id missing from an enumerated registry is rejected up front."""
        registry = DeviceRegistry()

        async def scenario():
            scheduler = _scheduler(
                recording_source, loaded_gateway, RecordingPresenter(), registry=registry
            )
            await scheduler.refresh_devices()
            await scheduler.start()
            try:
                with pytest.raises(DeviceUnavailable):
                    await scheduler.switch_device("cam:9")
                assert scheduler.is_running
            finally:
                await scheduler.stop()

        asyncio.run(scenario())
        assert recording_source.open_count == 1

    def test_idle_switch_before_enumeration_is_kept(self, recording_source, loaded_gateway):
        """Selecting before the first refresh is used by start() and by refresh."""
        registry = DeviceRegistry()

        async def scenario():
            scheduler = _scheduler(
                recording_source, loaded_gateway, RecordingPresenter(), registry=registry
            )
            await scheduler.switch_device("cam:1")
            await scheduler.start()
            device = scheduler.device_id
            await scheduler.stop()
            await scheduler.refresh_devices()
            return device

        assert asyncio.run(scenario()) == "cam:1"
        assert registry.selected_id == "cam:1"


class TestCaptureFailures:
    """Tests for capture errors inside the loop."""

    def test_capture_error_tears_down(self, loaded_gateway):
        """A device lost mid-session stops it; join() re-raises the error."""
        source = RecordingSource(devices=("cam:0",), fail_after=3)
        presenter = RecordingPresenter()

        async def scenario():
            scheduler = _scheduler(source, loaded_gateway, presenter)
            await scheduler.start()
            with pytest.raises(DeviceUnavailable):
                await asyncio.wait_for(scheduler.join(), timeout=2.0)
            await scheduler.stop()
            return scheduler

        scheduler = asyncio.run(scenario())

        assert scheduler.state is SchedulerState.IDLE
        assert len(presenter.frames) == 3
        assert scheduler.metrics.capture_errors == 1
        assert source.events == [("open", "cam:0"), ("close", "cam:0")]

    def test_refresh_stops_session_when_device_vanishes(
        self, recording_source, loaded_gateway
    ):
        """Re-enumeration without the active device ends the session."""
        registry = DeviceRegistry()

        async def scenario():
            scheduler = _scheduler(
                recording_source, loaded_gateway, RecordingPresenter(), registry=registry
            )
            await scheduler.refresh_devices()
            await scheduler.start()

            recording_source.devices = ["cam:1"]
            devices = await scheduler.refresh_devices()
            return scheduler, devices

        scheduler, devices = asyncio.run(scenario())

        assert [d.device_id for d in devices] == ["cam:1"]
        assert scheduler.state is SchedulerState.IDLE
        assert isinstance(scheduler.last_error, DeviceUnavailable)
        assert recording_source.events[-1] == ("close", "cam:0")
        assert registry.selected_id == "cam:1"

    def test_refresh_keeps_session_when_device_listed(
        self, recording_source, loaded_gateway
    ):
        """Re-enumeration that still lists the active device changes nothing."""
        registry = DeviceRegistry()

        async def scenario():
            scheduler = _scheduler(
                recording_source, loaded_gateway, RecordingPresenter(), registry=registry
            )
            await scheduler.refresh_devices()
            await scheduler.start("cam:1")
            await scheduler.refresh_devices()
            running = scheduler.is_running
            await scheduler.stop()
            return running

        assert asyncio.run(scenario()) is True
        assert registry.selected_id == "cam:1"


class TestCloseFailures:
    """Tests for backends whose close() raises."""

    def test_switch_with_failing_close_stops_session(self, loaded_gateway):
        """A close error during a switch stops the session instead of wedging it."""
        source = ReleaseErrorSource(devices=("cam:0", "cam:1"))

        async def scenario():
            scheduler = _scheduler(source, loaded_gateway, RecordingPresenter())
            await scheduler.start("cam:0")
            with pytest.raises(CaptureError) as exc:
                await scheduler.switch_device("cam:1")
            state = scheduler.state

            source.fail_close = False
            await scheduler.start("cam:1")
            restarted = scheduler.is_running
            await scheduler.stop()
            return scheduler, exc.value, state, restarted

        scheduler, error, state, restarted = asyncio.run(scenario())

        assert state is SchedulerState.IDLE
        assert error.device_id == "cam:0"
        assert isinstance(error.__cause__, RuntimeError)
        assert restarted
        assert source.events == [
            ("open", "cam:0"),
            ("close", "cam:0"),
            ("open", "cam:1"),
            ("close", "cam:1"),
        ]

    def test_stop_with_failing_close_reaches_idle(self, loaded_gateway):
        """stop() returns to IDLE and keeps the close error for join()."""
        source = ReleaseErrorSource(devices=("cam:0",))

        async def scenario():
            scheduler = _scheduler(source, loaded_gateway, RecordingPresenter())
            await scheduler.start("cam:0")
            await scheduler.stop()
            state = scheduler.state
            with pytest.raises(CaptureError):
                await scheduler.join()

            await scheduler.start("cam:0")
            restarted = scheduler.is_running
            await scheduler.stop()
            return scheduler, state, restarted

        scheduler, state, restarted = asyncio.run(scenario())

        assert state is SchedulerState.IDLE
        assert restarted
        assert scheduler.state is SchedulerState.IDLE
        assert "VIDIOC_STREAMOFF" in str(scheduler.last_error)
