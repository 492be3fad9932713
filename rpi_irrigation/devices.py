"""Device registry backed by devices.json."""
from __future__ import annotations

import logging
from typing import List, Optional

from .errors import StorageFailure
from .jsonfile import read_json, write_json
from .models import Device

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Static list of devices the controller may drive.

    The file holds a JSON list of ``{id, name, type, gpioPin, maxOnMinutes,
    enabled, activeHigh}`` records.
    """

    def __init__(self, path: str):
        self.path = path
        self._devices: List[Device] = []

    def load(self) -> List[Device]:
        logger.debug("load(%s)", self.path)
        data = read_json(self.path)
        if not isinstance(data, list):
            raise StorageFailure(f"{self.path}: expected a list of devices")
        try:
            self._devices = [Device.from_dict(d) for d in data]
        except (KeyError, TypeError, ValueError) as e:
            raise StorageFailure(f"{self.path}: bad device record: {e}") from e
        logger.info("Loaded %d devices", len(self._devices))
        return list(self._devices)

    @property
    def devices(self) -> List[Device]:
        return list(self._devices)

    def get_devices_by_type(self, device_type: str) -> List[Device]:
        return [d for d in self._devices if d.type == device_type]

    def get_device(self, device_id: str) -> Optional[Device]:
        for d in self._devices:
            if d.id == device_id:
                return d
        return None

    def put_device(self, device: Device) -> None:
        """Insert or replace a device and save the whole list."""
        for i, d in enumerate(self._devices):
            if d.id == device.id:
                self._devices[i] = device
                break
        else:
            self._devices.append(device)
        write_json(self.path, [d.to_dict() for d in self._devices])
