"""Records shared by the controller, the schedule manager and the event log."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .recurrence import RecurrenceRule

# Device type served by the irrigation controller.
IRRIGATION = "irrigation"


def now_ms() -> int:
    return int(time.time() * 1000)


def _flag(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _minutes(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number, got {value!r}")
    minutes = int(value)
    if minutes < 0:
        raise ValueError(f"{key} must not be negative: {minutes}")
    return minutes


class StationState(str, Enum):
    ON = "on"
    OFF = "off"


class ScheduleAction(str, Enum):
    """Actions a schedule may run.  Anything else is ignored at trigger time."""

    ON = "on"
    OFF = "off"

    @classmethod
    def parse(cls, value: Any) -> Optional["ScheduleAction"]:
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class EventType(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


@dataclass
class Device:
    """A registry entry.  Only ``irrigation`` devices become stations."""

    id: str
    name: str
    gpio_pin: int
    type: str = IRRIGATION
    max_on_minutes: int = 0
    enabled: bool = True
    active_high: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "Device":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            gpio_pin=int(data["gpioPin"]),
            type=str(data.get("type", IRRIGATION)),
            max_on_minutes=_minutes(data, "maxOnMinutes"),
            enabled=_flag(data, "enabled", True),
            active_high=_flag(data, "activeHigh", True),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "gpioPin": self.gpio_pin,
            "maxOnMinutes": self.max_on_minutes,
            "enabled": self.enabled,
            "activeHigh": self.active_high,
        }


@dataclass
class Station:
    """Runtime state of one irrigation output.

    Only :class:`~rpi_irrigation.controller.IrrigationController` touches
    ``state``, ``timer`` and ``timer_generation``, and only while holding
    ``lock``.
    """

    device: Device
    actuator: Any
    state: StationState = StationState.OFF
    timer: Optional[Any] = None
    timer_generation: int = 0
    last_event: Optional[Dict[str, Any]] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def id(self) -> str:
        return self.device.id

    @property
    def name(self) -> str:
        return self.device.name

    def to_dict(self) -> dict:
        data = self.device.to_dict()
        data["state"] = self.state.value
        data["timerArmed"] = self.timer is not None
        data["lastEvent"] = dict(self.last_event) if self.last_event else None
        return data


@dataclass(frozen=True)
class StationStatus:
    id: str
    status: StationState

    def to_dict(self) -> dict:
        return {"id": self.id, "status": self.status.value}


@dataclass
class ScheduleEntry:
    """A named recurring rule that switches one station.

    ``action`` keeps whatever string was stored so unknown values survive a
    save; :attr:`scheduled_action` gives the recognised action, if any.
    """

    name: str
    device_id: str
    description: str = ""
    action: str = ScheduleAction.OFF.value
    duration_minutes: int = 0
    active: bool = False
    recurrence_rule: Optional[RecurrenceRule] = None

    @property
    def scheduled_action(self) -> Optional[ScheduleAction]:
        return ScheduleAction.parse(self.action)

    @classmethod
    def from_dict(cls, data: dict) -> "ScheduleEntry":
        rule = data.get("recurrenceRule")
        return cls(
            name=str(data["name"]),
            device_id=str(data.get("deviceId", "")),
            description=str(data.get("description") or ""),
            action=data.get("action", ScheduleAction.OFF.value),
            duration_minutes=_minutes(data, "durationMinutes"),
            active=_flag(data, "active", False),
            recurrence_rule=RecurrenceRule.from_dict(rule) if rule is not None else None,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "deviceId": self.device_id,
            "action": self.action,
            "durationMinutes": self.duration_minutes,
            "active": self.active,
            "recurrenceRule": self.recurrence_rule.to_dict() if self.recurrence_rule else None,
        }


@dataclass(frozen=True)
class Event:
    event_time: int
    event_source: str
    event_type: EventType
    text: str
    device_id: Optional[str] = None

    @classmethod
    def create(cls, source: str, event_type: EventType, text: str, device_id: Optional[str] = None) -> "Event":
        return cls(now_ms(), source, event_type, text, device_id)

    def to_dict(self) -> dict:
        return {
            "eventTime": self.event_time,
            "eventSource": self.event_source,
            "type": self.event_type.value,
            "text": self.text,
            "deviceId": self.device_id,
        }


@dataclass
class EventQuery:
    """Filters for :meth:`EventLogger.get_events`; ``None`` means no filter."""

    date_from: Optional[int] = None
    date_to: Optional[int] = None
    event_type: Optional[EventType] = None
    event_source: Optional[str] = None
    device_id: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
