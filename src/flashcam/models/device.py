"""
Device Model
============

Capture device descriptor used by the device registry.
"""

from pydantic import BaseModel, Field


class Device(BaseModel):
    """
    Enumerated capture device.

    Attributes:
        device_id: Identifier accepted by CaptureSource.open
        label: Human-readable name
    """

    device_id: str = Field(..., min_length=1, description="Device identifier")
    label: str = Field(default="", description="Human-readable label")

    model_config = {"frozen": True}
