"""
FlashCam Service
================

FastAPI entry point for the frame pipeline.

Startup:
    1. Build capture source, inference gateway, presenter and scheduler
    2. Enumerate devices
    3. Load models in the background (/ready turns 200 when done)
    4. Optionally start a session (session.autostart)

Endpoints:
    GET  /                - Service information
    GET  /health          - Liveness probe (is process alive?)
    GET  /ready           - Readiness probe (models loaded?)
    GET  /metrics         - Pipeline, inference and effect metrics
    GET  /devices         - Enumerated devices + selection
    POST /devices/refresh - Re-enumerate devices
    POST /devices/select  - Switch to another device
    POST /session/start   - Start capturing
    POST /session/stop    - Stop capturing
    GET  /frame           - Latest presented frame (JPEG)
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from flashcam import __version__
from flashcam.capture import DeviceRegistry
from flashcam.config import settings
from flashcam.errors import CaptureError, DeviceUnavailable
from flashcam.factory import create_capture_source, create_inference_gateway, create_scheduler
from flashcam.inference import InferenceGateway
from flashcam.pipeline import FrameScheduler, LatestFramePresenter, RefreshClock


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

_registry: Optional[DeviceRegistry] = None
_gateway: Optional[InferenceGateway] = None
_presenter: Optional[LatestFramePresenter] = None
_scheduler: Optional[FrameScheduler] = None

# Background startup work
_startup_task: Optional[asyncio.Task] = None
_startup_time: float = 0.0


# =============================================================================
# Getters
# =============================================================================

def get_scheduler() -> Optional[FrameScheduler]:
    return _scheduler

def get_gateway() -> Optional[InferenceGateway]:
    return _gateway

def get_presenter() -> Optional[LatestFramePresenter]:
    return _presenter

def get_registry() -> Optional[DeviceRegistry]:
    return _registry

def is_ready() -> bool:
    return _gateway is not None and _gateway.is_ready


# =============================================================================
# Request Models
# =============================================================================

class DeviceSelection(BaseModel):
    """Body of POST /devices/select."""

    device_id: str = Field(..., min_length=1)


class SessionStart(BaseModel):
    """Optional body of POST /session/start."""

    device_id: Optional[str] = None


# =============================================================================
# Startup
# =============================================================================

async def _load_and_autostart() -> None:
    """Load models, then start a session if configured."""
    await _gateway.load()

    if settings.session.autostart:
        try:
            await _scheduler.start()
        except CaptureError as e:
            logger.error(f"Autostart failed: {e}")


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _registry, _gateway, _presenter, _scheduler
    global _startup_task, _startup_time

    # Startup
    _startup_time = time.time()
    logger.info(f"Starting FlashCam {__version__}")
    logger.info(f"Configured port: {settings.server.port}")

    source = create_capture_source(settings)
    _gateway = create_inference_gateway(settings)
    _presenter = LatestFramePresenter(
        clock=RefreshClock(settings.presenter.refresh_hz),
        jpeg_quality=settings.presenter.jpeg_quality,
    )
    _registry = DeviceRegistry(preferred_id=settings.capture.default_device)
    _scheduler = create_scheduler(
        settings,
        presenter=_presenter,
        source=source,
        gateway=_gateway,
        registry=_registry,
    )

    try:
        await _scheduler.refresh_devices()
        logger.info(f"Devices: {[d.device_id for d in _registry.devices]}")
    except CaptureError as e:
        logger.error(f"Device enumeration failed: {e}")

    _startup_task = asyncio.create_task(
        _load_and_autostart(),
        name="model_loading"
    )

    logger.info("All components started")

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")

    if _startup_task and not _startup_task.done():
        _startup_task.cancel()
        try:
            await _startup_task
        except asyncio.CancelledError:
            pass

    await _scheduler.stop()
    _gateway.close()
    _presenter.clear()

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="FlashCam",
    description="Real-time segmentation, landmark and flash effects pipeline",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(CaptureError)
async def capture_error_handler(request: Request, exc: CaptureError) -> JSONResponse:
    """Device failures: 503 when the device is gone, 409 otherwise."""
    status_code = 503 if isinstance(exc, DeviceUnavailable) else 409
    logger.warning(f"{request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(
        {
            "error": type(exc).__name__,
            "detail": str(exc),
            "device_id": exc.device_id,
        },
        status_code=status_code,
    )


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "FlashCam",
        "version": __version__,
        "status": "running",
        "capture_backend": settings.capture.backend,
        "segmentation_backend": settings.inference.segmentation_backend,
        "landmark_backend": settings.inference.landmark_backend,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness probe - are both models loaded?

    Returns 503 while models are loading or if a model failed to load.
    """
    scheduler = get_scheduler()
    body = {
        "models_loaded": is_ready(),
        "session_state": scheduler.state.value if scheduler else None,
    }

    if is_ready():
        return JSONResponse({"status": "ready", **body})
    return JSONResponse({"status": "not_ready", **body}, status_code=503)


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    scheduler = get_scheduler()
    gateway = get_gateway()
    presenter = get_presenter()

    pipeline_metrics = {}
    if scheduler:
        pipeline_metrics = {
            "pipeline": scheduler.get_metrics(),
            "compositor": scheduler.compositor.get_metrics(),
            "flash": scheduler.flash.get_metrics(),
        }
        stream = scheduler.stream
        if stream is not None and stream.buffer is not None:
            pipeline_metrics["buffer"] = stream.buffer.metrics()

    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        "inference": gateway.get_metrics() if gateway else {},
        "frames_presented": presenter.presented_count if presenter else 0,
        **pipeline_metrics,
    })


@app.get("/devices")
async def devices() -> JSONResponse:
    """Enumerated devices and the current selection."""
    registry = get_registry()
    if registry is None:
        return JSONResponse({"error": "Service not started"}, status_code=503)
    return JSONResponse(registry.to_dict())


@app.post("/devices/refresh")
async def refresh_devices() -> JSONResponse:
    """Re-enumerate devices. Stops the session if its device disappeared."""
    scheduler = get_scheduler()
    await scheduler.refresh_devices()
    return JSONResponse({
        **_registry.to_dict(),
        "session_state": scheduler.state.value,
    })


@app.post("/devices/select")
async def select_device(selection: DeviceSelection) -> JSONResponse:
    """Select a device; a running session switches to it."""
    scheduler = get_scheduler()
    await scheduler.switch_device(selection.device_id)
    return JSONResponse({
        "selected_id": _registry.selected_id,
        "active_device": scheduler.device_id,
        "session_state": scheduler.state.value,
    })


@app.post("/session/start")
async def start_session(body: Optional[SessionStart] = None) -> JSONResponse:
    """Start a pipeline session."""
    scheduler = get_scheduler()
    try:
        await scheduler.start(body.device_id if body else None)
    except RuntimeError as e:
        return JSONResponse({"error": str(e)}, status_code=409)

    return JSONResponse({
        "session_state": scheduler.state.value,
        "active_device": scheduler.device_id,
    })


@app.post("/session/stop")
async def stop_session() -> JSONResponse:
    """Stop the pipeline session. Idempotent."""
    scheduler = get_scheduler()
    await scheduler.stop()
    return JSONResponse({
        "session_state": scheduler.state.value,
        "last_error": str(scheduler.last_error) if scheduler.last_error else None,
    })


@app.get("/frame")
async def frame() -> Response:
    """Latest presented frame as JPEG."""
    presenter = get_presenter()
    jpeg = presenter.encode_jpeg() if presenter else None

    if jpeg is None:
        return JSONResponse(
            {"error": "No frame available yet"},
            status_code=503,
        )

    return Response(content=jpeg, media_type="image/jpeg")


# =============================================================================
# Main Entry Point
# =============================================================================

def main() -> None:
    """Run the service with uvicorn (flashcam-serve)."""
    import uvicorn

    uvicorn.run(
        "flashcam.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
