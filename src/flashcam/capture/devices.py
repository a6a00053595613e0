"""
Device Registry
===============

Enumerated capture devices plus the active selection.

Design Rules:
    - The device list only changes on explicit refresh()
    - selected_id is None until the first enumeration completes
    - Callers holding an open stream must serialise refresh() against it
      (the frame scheduler does this with its cycle lock)
"""

import logging
from typing import List, Optional

from flashcam.errors import DeviceUnavailable
from flashcam.models.device import Device


logger = logging.getLogger(__name__)


class DeviceRegistry:
    """
    Ordered device list and current selection.

    Example:
        registry = DeviceRegistry()
        await registry.refresh(source)
        registry.select("1")
    """

    def __init__(self, preferred_id: Optional[str] = None) -> None:
        """
        Args:
            preferred_id: Device selected after enumeration when present
        """
        self._devices: List[Device] = []
        self._selected_id: Optional[str] = None
        self._preferred_id = preferred_id
        self._refresh_count: int = 0

    @property
    def devices(self) -> List[Device]:
        return list(self._devices)

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def enumerated(self) -> bool:
        return self._refresh_count > 0

    def get(self, device_id: str) -> Optional[Device]:
        for device in self._devices:
            if device.device_id == device_id:
                return device
        return None

    def contains(self, device_id: str) -> bool:
        return self.get(device_id) is not None

    async def refresh(self, source) -> List[Device]:
        """
        Re-enumerate devices from a capture source.

        Keeps the current selection when it is still listed; otherwise
        falls back to the preferred id, then the first device.

        Args:
            source: Object with an async enumerate_devices() method

        Returns:
            The new device list
        """
        devices = await source.enumerate_devices()
        self._devices = list(devices)
        self._refresh_count += 1

        previous = self._selected_id
        if previous is not None and self.contains(previous):
            pass
        elif self._preferred_id is not None and self.contains(self._preferred_id):
            self._selected_id = self._preferred_id
        elif self._devices:
            self._selected_id = self._devices[0].device_id
        else:
            self._selected_id = None

        if previous is not None and previous != self._selected_id:
            logger.warning(
                f"Selected device {previous!r} no longer listed, "
                f"now {self._selected_id!r}"
            )

        logger.info(
            f"Device registry refreshed: {len(self._devices)} device(s), "
            f"selected={self._selected_id!r}"
        )
        return self.devices

    def select(self, device_id: str) -> Device:
        """
        Change the active selection.

        Raises:
            DeviceUnavailable: If the id is not in the enumerated list
        """
        device = self.get(device_id)
        if device is None:
            raise DeviceUnavailable(
                f"Device {device_id!r} is not enumerated",
                device_id=device_id,
            )
        self._selected_id = device_id
        return device

    def prefer(self, device_id: str) -> None:
        """Select device_id at the next refresh if it is listed."""
        self._preferred_id = device_id

    def to_dict(self) -> dict:
        """Export registry state for the API."""
        return {
            "devices": [d.model_dump() for d in self._devices],
            "selected_id": self._selected_id,
        }
