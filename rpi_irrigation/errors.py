"""Exception hierarchy for the irrigation controller.

Every error raised by the controller derives from :class:`IrrigationError`
and carries the HTTP status the web layer replies with.
"""
from __future__ import annotations


class IrrigationError(Exception):
    """Base class for all controller errors."""

    http_status: int = 500


class UnknownStation(IrrigationError):
    """An operation named a station id that is not registered."""

    http_status = 404

    def __init__(self, station_id: str):
        super().__init__(f"Invalid station - {station_id}")
        self.station_id = station_id


class ScheduleExists(IrrigationError):
    http_status = 409

    def __init__(self, name: str):
        super().__init__(f"Schedule with name {name} already exists")
        self.name = name


class ScheduleNotFound(IrrigationError):
    http_status = 404

    def __init__(self, name: str):
        super().__init__(f'Schedule "{name}" not found.')
        self.name = name


class StorageFailure(IrrigationError):
    """Loading or saving devices, schedules or events failed."""

    http_status = 500


class ActuatorFailure(IrrigationError):
    """Writing to or reading from a GPIO output failed."""

    http_status = 503


class InvalidRecurrenceRule(IrrigationError, ValueError):
    http_status = 400
