"""
Error Taxonomy
==============

Exception classes shared by every pipeline stage.

Families:
    - CaptureError: fatal to the current session, surfaced to the caller
    - InferenceError: recoverable per cycle, absorbed by the gateway
    - ContractViolation: recovered by skipping the dependent step

Design Rules:
    - Capture errors propagate to the session lifecycle
    - Inference errors never propagate past the cycle
    - Contract violations never crash a cycle
"""

from typing import Optional


class CaptureError(Exception):
    """Base class for capture source failures."""

    def __init__(self, message: str, device_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.device_id = device_id


class PermissionDenied(CaptureError):
    """The process is not allowed to open the device."""
    pass


class DeviceUnavailable(CaptureError):
    """The device does not exist, is busy, or stopped producing frames."""
    pass


class Unsupported(CaptureError):
    """The device id or requested capture mode cannot be handled."""
    pass


class InferenceError(Exception):
    """Base class for model call failures."""

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.stage = stage


class InferenceUnavailable(InferenceError):
    """Model is not loaded (yet)."""
    pass


class InferenceTimeout(InferenceError):
    """Model call exceeded its deadline."""
    pass


class InferenceBusy(InferenceError):
    """The previous call on this model is still running."""
    pass


class ContractViolation(Exception):
    """Stage output does not match the frame it was computed for."""
    pass
