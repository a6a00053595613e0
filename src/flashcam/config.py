"""
FlashCam Configuration
======================

This module handles configuration loading for the frame pipeline.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    FLASHCAM_CONFIG            -> path of the YAML file
    FLASHCAM_CAPTURE_BACKEND   -> capture.backend
    FLASHCAM_DEVICE            -> capture.default_device
    FLASHCAM_SEGMENTATION      -> inference.segmentation_backend
    FLASHCAM_LANDMARKS         -> inference.landmark_backend
    FLASHCAM_INFERENCE_TIMEOUT -> inference.timeout_seconds
    FLASHCAM_TORCH_DEVICE      -> inference.torch_device
    FLASHCAM_ATTENUATION       -> compositor.attenuation
    FLASHCAM_LANDMARK_GAIN     -> compositor.landmark_gain
    FLASHCAM_FLASH_THRESHOLD   -> flash.threshold
    FLASHCAM_REFRESH_HZ        -> presenter.refresh_hz
    FLASHCAM_PORT / PORT       -> server.port
    FLASHCAM_LOG_LEVEL         -> logging.level

Example:
    from flashcam.config import settings

    print(settings.capture.backend)
    print(settings.flash.threshold)
"""

import os
import logging
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class CaptureConfig(BaseModel):
    """Capture source configuration."""

    backend: str = Field(
        default="opencv",
        description="Capture backend: 'opencv' or 'mock'",
    )
    default_device: str = Field(
        default="default",
        description="Device opened when none is selected",
    )
    width: int = Field(default=720, ge=1, description="Ideal frame width")
    height: int = Field(default=1280, ge=1, description="Ideal frame height")
    fps: int = Field(default=30, ge=1, le=240, description="Requested capture FPS")
    frame_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Max wait for a frame before the device is declared unavailable",
    )
    max_probe_index: int = Field(
        default=8,
        ge=1,
        description="Number of OpenCV indices probed when enumerating devices",
    )


class MockInferenceConfig(BaseModel):
    """Mock inference backend configuration."""

    latency_ms: float = Field(default=0.0, ge=0, description="Simulated model latency")
    landmark_count: int = Field(default=36, ge=0, description="Points per mock face")
    face_count: int = Field(default=1, ge=0, description="Faces per mock detection")


class InferenceConfig(BaseModel):
    """Inference gateway configuration."""

    segmentation_backend: str = Field(
        default="mock",
        description="Segmentation backend: 'mock' or 'deeplab'",
    )
    landmark_backend: str = Field(
        default="mock",
        description="Landmark backend: 'mock' or 'mediapipe'",
    )
    timeout_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Per-call inference deadline",
    )
    torch_device: str = Field(default="cpu", description="Torch device for DeepLab")
    face_landmarker_model: str = Field(
        default="./models/face_landmarker.task",
        description="Path to the MediaPipe face landmarker task file",
    )
    max_faces: int = Field(default=1, ge=1, description="Max faces for MediaPipe")
    mock: MockInferenceConfig = Field(default_factory=MockInferenceConfig)


class CompositorConfig(BaseModel):
    """Background darkening and landmark brightening."""

    background_mode: Literal["attenuate", "fill"] = Field(
        default="attenuate",
        description="Scale background channels or replace them with a constant",
    )
    attenuation: float = Field(
        default=0.25,
        ge=0,
        le=1.0,
        description="Factor applied to background R, G, B",
    )
    background_fill_value: int = Field(
        default=100,
        ge=0,
        le=255,
        description="Channel value used when background_mode is 'fill'",
    )
    landmark_gain: float = Field(
        default=1.2,
        ge=1.0,
        description="Gain applied to landmark pixels (clamped to 255)",
    )


class FlashConfig(BaseModel):
    """Adaptive flash configuration."""

    enabled: bool = Field(default=True, description="Enable the flash stage")
    threshold: float = Field(
        default=40.0,
        ge=0,
        le=255,
        description="Flash fires when sampled brightness is below this",
    )
    sample_stride: int = Field(
        default=100,
        ge=1,
        description="Sample every Nth pixel for brightness",
    )
    overlay_opacity: float = Field(
        default=0.2,
        ge=0,
        le=1.0,
        description="Opacity of the white flash overlay",
    )
    lag_one_cycle: bool = Field(
        default=False,
        description="Render the previous cycle's flash decision",
    )


class PresenterConfig(BaseModel):
    """Presentation configuration."""

    refresh_hz: float = Field(
        default=30.0,
        gt=0,
        le=240,
        description="Display refresh rate driving the cycle cadence",
    )
    jpeg_quality: int = Field(default=85, ge=1, le=100, description="JPEG quality for /frame")
    window_name: str = Field(default="FlashCam", description="Preview window title")


class SessionConfig(BaseModel):
    """Pipeline session configuration."""

    autostart: bool = Field(
        default=False,
        description="Start capturing when the service starts",
    )
    stop_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Max wait for an in-flight cycle to finish on stop",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8002, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for FlashCam.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    compositor: CompositorConfig = Field(default_factory=CompositorConfig)
    flash: FlashConfig = Field(default_factory=FlashConfig)
    presenter: PresenterConfig = Field(default_factory=PresenterConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, uses FLASHCAM_CONFIG
            or searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        config_path = os.environ.get("FLASHCAM_CONFIG")

    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Capture settings
    if env_backend := os.environ.get("FLASHCAM_CAPTURE_BACKEND"):
        config_data.setdefault("capture", {})["backend"] = env_backend
    if env_device := os.environ.get("FLASHCAM_DEVICE"):
        config_data.setdefault("capture", {})["default_device"] = env_device

    # Inference settings
    if env_seg := os.environ.get("FLASHCAM_SEGMENTATION"):
        config_data.setdefault("inference", {})["segmentation_backend"] = env_seg
    if env_lm := os.environ.get("FLASHCAM_LANDMARKS"):
        config_data.setdefault("inference", {})["landmark_backend"] = env_lm
    if env_timeout := os.environ.get("FLASHCAM_INFERENCE_TIMEOUT"):
        config_data.setdefault("inference", {})["timeout_seconds"] = float(env_timeout)
    if env_torch := os.environ.get("FLASHCAM_TORCH_DEVICE"):
        config_data.setdefault("inference", {})["torch_device"] = env_torch

    # Effect tuning
    if env_att := os.environ.get("FLASHCAM_ATTENUATION"):
        config_data.setdefault("compositor", {})["attenuation"] = float(env_att)
    if env_gain := os.environ.get("FLASHCAM_LANDMARK_GAIN"):
        config_data.setdefault("compositor", {})["landmark_gain"] = float(env_gain)
    if env_thr := os.environ.get("FLASHCAM_FLASH_THRESHOLD"):
        config_data.setdefault("flash", {})["threshold"] = float(env_thr)

    # Presentation
    if env_hz := os.environ.get("FLASHCAM_REFRESH_HZ"):
        config_data.setdefault("presenter", {})["refresh_hz"] = float(env_hz)

    # Server settings
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("FLASHCAM_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("FLASHCAM_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
