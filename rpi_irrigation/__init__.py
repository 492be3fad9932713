"""Raspberry Pi irrigation controller.

Drives irrigation stations (one GPIO output each) with a safety auto-shutoff
and runs user-editable recurring schedules against them.
"""
from .controller import IrrigationController
from .errors import (
    ActuatorFailure,
    InvalidRecurrenceRule,
    IrrigationError,
    ScheduleExists,
    ScheduleNotFound,
    StorageFailure,
    UnknownStation,
)
from .models import Device, Event, EventType, ScheduleAction, ScheduleEntry, StationState
from .recurrence import RecurrenceRule
from .schedules import ScheduleManager

__version__ = "1.0.0"
