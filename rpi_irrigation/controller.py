"""Station on/off control with a safety auto-shutoff.

Every change to a station's output goes through :class:`IrrigationController`:
manual requests from the web API, scheduled actions from the
:class:`~rpi_irrigation.schedules.ScheduleManager` and the safety timers the
controller arms itself.  Those three paths run on different threads, so each
station carries its own lock and every cancel-write-rearm sequence happens
while holding it.

A station has at most one armed safety timer.  Turning a station on or off
always cancels the pending timer first; turning it on then arms a fresh one
when a maximum run time applies.  Timer callbacks carry only the station id
and the generation number the timer was armed with.  A callback whose
generation is no longer current lost a race with a cancel and does nothing.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

from .errors import ActuatorFailure, UnknownStation
from .gpio import Actuator
from .models import (
    IRRIGATION,
    Event,
    EventType,
    Station,
    StationState,
    StationStatus,
    now_ms,
)

logger = logging.getLogger(__name__)

EVENT_SOURCE = "IrrigationController"

TURNED_ON = "Turned ON"
TURNED_OFF = "Turned OFF"


class IrrigationController:
    """Owns the live state of every irrigation station.

    ``actuator_factory(pin, active_high)`` builds the output for a station
    and ``timer_factory(seconds, function, args=...)`` builds an unstarted
    safety timer; they default to :class:`~rpi_irrigation.gpio.Actuator` and
    :class:`threading.Timer`.
    """

    def __init__(
        self,
        registry,
        events=None,
        actuator_factory: Callable[..., Actuator] = Actuator,
        timer_factory: Optional[Callable[..., threading.Timer]] = None,
    ):
        self.registry = registry
        self.events = events
        self._actuator_factory = actuator_factory
        self._timer_factory = timer_factory or threading.Timer
        self._stations: Dict[str, Station] = {}

    def init(self) -> None:
        """Bind an output to every enabled irrigation device and force it OFF."""
        try:
            devices = self.registry.get_devices_by_type(IRRIGATION)
        except Exception:
            logger.error("init() failed: unable to read the device registry")
            raise
        for device in devices:
            if not device.enabled:
                logger.debug("Skipping disabled device %s", device.id)
                continue
            logger.debug("Initializing GPIO pin %s for %s", device.gpio_pin, device.name)
            actuator = self._actuator_factory(device.gpio_pin, device.active_high)
            self._stations[device.id] = Station(device=device, actuator=actuator)
            self.switch_on_off(device.id, False)
        logger.info("Irrigation controller ready with %d stations", len(self._stations))

    def shutdown(self) -> None:
        """Cancel all timers, turn every station off and release the pins."""
        for station in list(self._stations.values()):
            with station.lock:
                self._cancel_timer(station)
                try:
                    station.actuator.write(False)
                    station.state = StationState.OFF
                except ActuatorFailure:
                    logger.exception("Could not turn off %s during shutdown", station.id)
                station.actuator.close()
        self._stations.clear()

    def _get(self, station_id: str) -> Station:
        station = self._stations.get(station_id)
        if station is None:
            raise UnknownStation(station_id)
        return station

    def switch_on_off(self, station_id: str, on: bool, duration_minutes: Optional[int] = None) -> None:
        """Turn a station on or off.

        Any armed safety timer is cancelled before the output is written.
        When turning on, a new timer is armed for ``duration_minutes`` if
        given (scheduled runs), otherwise for the station's
        ``max_on_minutes``; zero means no timer.

        Raises UnknownStation for an unregistered id and ActuatorFailure if
        the GPIO write fails, in which case the recorded state and any armed
        safety timer are left as they were.
        """
        logger.info("Turning station %s %s", station_id, "ON" if on else "OFF")
        if duration_minutes is not None and duration_minutes < 0:
            raise ValueError(f"duration_minutes must not be negative: {duration_minutes}")
        station = self._get(station_id)
        with station.lock:
            # The pending timer can only fire once we release the lock, so
            # it is dropped after the write succeeds.  A station the write
            # failed to switch off keeps its auto-off.
            station.actuator.write(on)
            self._cancel_timer(station)
            station.state = StationState.ON if on else StationState.OFF
            action = TURNED_ON if on else TURNED_OFF
            station.last_event = {"time": now_ms(), "action": action}
            self._emit(EventType.INFO, f"{action} {station.name}", station.id)

            if on:
                minutes = duration_minutes or station.device.max_on_minutes
                if minutes and minutes > 0:
                    self._arm_timer(station, minutes)

    def _arm_timer(self, station: Station, minutes: int) -> None:
        logger.info("Setting timeout for %s to %s minutes", station.id, minutes)
        station.timer_generation += 1
        timer = self._timer_factory(
            minutes * 60,
            self._on_safety_timeout,
            args=(station.id, station.timer_generation, minutes),
        )
        timer.daemon = True
        # Record the timer before starting it so a very short timer can't
        # fire before it is known.
        station.timer = timer
        timer.start()

    def _cancel_timer(self, station: Station) -> None:
        station.timer_generation += 1
        timer, station.timer = station.timer, None
        if timer is not None:
            logger.debug("Cancelling safety timer for %s", station.id)
            timer.cancel()

    def _on_safety_timeout(self, station_id: str, generation: int, minutes: int) -> None:
        """Force a station off once its run time is up.

        Runs on the timer thread; nothing may escape from here.
        """
        try:
            station = self._stations.get(station_id)
            if station is None:
                return
            with station.lock:
                if station.timer_generation != generation:
                    logger.debug("Ignoring superseded safety timer for %s", station_id)
                    return
                station.timer = None
                logger.warning(
                    "Station %s on for more than maxTime of %s minutes, turning it off.", station_id, minutes
                )
                try:
                    station.actuator.write(False)
                except ActuatorFailure as e:
                    logger.exception("Forced shutoff of %s failed", station_id)
                    self._emit(EventType.ERROR, f"Failed to turn OFF {station.name}: {e}", station_id)
                    return
                station.state = StationState.OFF
                station.last_event = {"time": now_ms(), "action": TURNED_OFF}
                self._emit(
                    EventType.WARNING,
                    f"{TURNED_OFF} {station.name} after exceeding max on time of {minutes} minutes",
                    station_id,
                )
        except Exception:
            logger.exception("Safety timer for station %s failed", station_id)

    def _emit(self, event_type: EventType, text: str, device_id: Optional[str]) -> None:
        # The switch already happened; a lost event must not undo it.
        if self.events is None:
            return
        try:
            self.events.append(Event.create(EVENT_SOURCE, event_type, text, device_id))
        except Exception:
            logger.exception("Failed to log event: %s", text)

    def get_status(self, station_id: str) -> Optional[StationStatus]:
        """Read the output back from the GPIO pin; None if the station is unknown."""
        logger.debug("Getting status for station %s", station_id)
        station = self._stations.get(station_id)
        if station is None:
            logger.debug("Unable to find station with id %s", station_id)
            return None
        on = station.actuator.read()
        return StationStatus(station_id, StationState.ON if on else StationState.OFF)

    def get_all_status(self) -> List[StationStatus]:
        return [
            StationStatus(s.id, StationState.ON if s.actuator.read() else StationState.OFF)
            for s in list(self._stations.values())
        ]

    def get_stations(self) -> List[dict]:
        out = []
        for station in list(self._stations.values()):
            with station.lock:
                out.append(station.to_dict())
        return out

    def has_station(self, station_id: str) -> bool:
        return station_id in self._stations

    def is_timer_armed(self, station_id: str) -> bool:
        station = self._get(station_id)
        with station.lock:
            return station.timer is not None
