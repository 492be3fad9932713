"""GPIO outputs (gpiozero) for the irrigation stations."""
from __future__ import annotations

import logging
from typing import Optional

from gpiozero import Device, DigitalOutputDevice, GPIOZeroError

from .errors import ActuatorFailure

logger = logging.getLogger(__name__)


def configure_pin_factory(name: Optional[str]) -> None:
    """Select the gpiozero pin factory by name.

    ``"mock"`` works anywhere and is what development machines and the tests
    use, ``"native"`` talks to /dev/gpiomem directly.  ``None`` leaves
    gpiozero's own choice (lgpio, RPi.GPIO, pigpio, ...) alone.
    """
    if not name:
        return
    if name == "mock":
        from gpiozero.pins.mock import MockFactory

        Device.pin_factory = MockFactory()
    elif name == "native":
        from gpiozero.pins.native import NativeFactory

        Device.pin_factory = NativeFactory()
    else:
        raise ValueError(f"Unknown pin factory: {name}")
    logger.info("Using %s pin factory", name)


class Actuator:
    """Wraps a gpiozero DigitalOutputDevice for one station.

    ``active_high=False`` is for relay boards that energise on a low level;
    gpiozero then inverts the physical level for us so ``write(True)``
    always means "water on".
    """

    def __init__(self, pin: int, active_high: bool = True):
        self.pin = int(pin)
        try:
            self._dev = DigitalOutputDevice(self.pin, active_high=active_high, initial_value=False)
        except (GPIOZeroError, OSError) as e:
            raise ActuatorFailure(f"GPIO {pin}: setup failed: {e}") from e

    def write(self, on: bool) -> None:
        try:
            if on:
                self._dev.on()
            else:
                self._dev.off()
        except (GPIOZeroError, OSError) as e:
            raise ActuatorFailure(f"GPIO {self.pin}: write failed: {e}") from e

    def read(self) -> bool:
        try:
            return bool(self._dev.is_active)
        except (GPIOZeroError, OSError) as e:
            raise ActuatorFailure(f"GPIO {self.pin}: read failed: {e}") from e

    def close(self) -> None:
        self._dev.close()
