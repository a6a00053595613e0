"""
Configuration Tests
===================

YAML loading, environment overrides and validation.
"""

import pytest
import yaml
from pydantic import ValidationError

from flashcam.config import Settings, load_config


@pytest.fixture
def config_file(tmp_path):
    """Write a config.yaml and return its path."""

    def _write(data: dict) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data))
        return str(path)

    return _write


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of config tests."""
    for name in (
        "FLASHCAM_CONFIG",
        "FLASHCAM_CAPTURE_BACKEND",
        "FLASHCAM_DEVICE",
        "FLASHCAM_SEGMENTATION",
        "FLASHCAM_LANDMARKS",
        "FLASHCAM_INFERENCE_TIMEOUT",
        "FLASHCAM_TORCH_DEVICE",
        "FLASHCAM_ATTENUATION",
        "FLASHCAM_LANDMARK_GAIN",
        "FLASHCAM_FLASH_THRESHOLD",
        "FLASHCAM_REFRESH_HZ",
        "FLASHCAM_PORT",
        "PORT",
        "FLASHCAM_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Tests for built-in defaults."""

    def test_reference_constants(self):
        """Defaults match the reference effect constants."""
        settings = Settings()
        assert settings.compositor.attenuation == 0.25
        assert settings.compositor.landmark_gain == 1.2
        assert settings.flash.threshold == 40.0
        assert settings.flash.sample_stride == 100
        assert settings.flash.overlay_opacity == 0.2
        assert settings.flash.lag_one_cycle is False
        assert (settings.capture.width, settings.capture.height) == (720, 1280)

    def test_missing_file_uses_defaults(self, tmp_path):
        """A non-existent path falls back to defaults."""
        settings = load_config(str(tmp_path / "missing.yaml"))
        assert settings == Settings()


class TestLoadConfig:
    """Tests for YAML + environment loading."""

    def test_yaml_values(self, config_file):
        """Values from the file are applied."""
        path = config_file({
            "capture": {"backend": "mock", "default_device": "2"},
            "compositor": {"background_mode": "fill"},
        })
        settings = load_config(path)
        assert settings.capture.backend == "mock"
        assert settings.capture.default_device == "2"
        assert settings.compositor.background_mode == "fill"
        assert settings.flash.threshold == 40.0

    def test_env_overrides_file(self, config_file, monkeypatch):
        """Environment variables win over the file."""
        path = config_file({"flash": {"threshold": 30}, "capture": {"backend": "opencv"}})
        monkeypatch.setenv("FLASHCAM_FLASH_THRESHOLD", "55")
        monkeypatch.setenv("FLASHCAM_CAPTURE_BACKEND", "mock")
        monkeypatch.setenv("FLASHCAM_LANDMARK_GAIN", "1.1")

        settings = load_config(path)

        assert settings.flash.threshold == 55.0
        assert settings.capture.backend == "mock"
        assert settings.compositor.landmark_gain == 1.1

    def test_config_path_from_env(self, config_file, monkeypatch):
        """FLASHCAM_CONFIG points at the file when no path is given."""
        monkeypatch.setenv("FLASHCAM_CONFIG", config_file({"server": {"port": 9100}}))
        assert load_config().server.port == 9100

    def test_port_precedence(self, monkeypatch):
        """PORT beats FLASHCAM_PORT."""
        monkeypatch.setenv("FLASHCAM_PORT", "9001")
        monkeypatch.setenv("PORT", "9002")
        assert load_config("/nonexistent.yaml").server.port == 9002

    def test_invalid_values_rejected(self, config_file):
        """Out-of-range values fail validation."""
        with pytest.raises(ValidationError):
            load_config(config_file({"compositor": {"attenuation": 2.0}}))
        with pytest.raises(ValidationError):
            load_config(config_file({"compositor": {"background_mode": "blur"}}))
