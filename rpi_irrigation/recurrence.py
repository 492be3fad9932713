"""Cron-like recurrence rules and their APScheduler trigger.

A :class:`RecurrenceRule` names the calendar instants a schedule fires at.
Each component (second, minute, hour, date, month, day of week) is either

  • ``None``  - unset, every value of that unit matches,
  • ``"*"``   - wildcard, same meaning as unset but kept distinct on disk,
  • an ``int`` - a single fixed value, or
  • a list of ``int`` - any of the listed values.

Day of week follows the cron convention: 0 = Sunday .. 6 = Saturday.

The next fire time is the earliest instant strictly after a reference time
that satisfies every component at once.  :class:`RecurrenceTrigger` plugs
the rule into APScheduler so the scheduler recomputes it after each firing.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Set, Tuple, Union

from apscheduler.triggers.base import BaseTrigger

from .errors import InvalidRecurrenceRule

WILDCARD = "*"

# Give up looking for a match this far ahead (31 February never comes).
SEARCH_YEARS = 5

Component = Union[None, str, int, List[int]]

# attribute -> (storage key, lowest, highest)
_LIMITS = {
    "second": ("second", 0, 59),
    "minute": ("minute", 0, 59),
    "hour": ("hour", 0, 23),
    "date": ("date", 1, 31),
    "month": ("month", 1, 12),
    "day_of_week": ("dayOfWeek", 0, 6),
}


def _check(name: str, value: Component) -> Component:
    key, lo, hi = _LIMITS[name]
    if value is None or value == WILDCARD:
        return value
    if isinstance(value, bool):
        raise InvalidRecurrenceRule(f"{key}: expected a number, got {value!r}")
    if isinstance(value, int):
        if not lo <= value <= hi:
            raise InvalidRecurrenceRule(f"{key}: {value} outside {lo}..{hi}")
        return value
    if isinstance(value, (list, tuple)):
        if not value:
            raise InvalidRecurrenceRule(f"{key}: empty list never matches")
        out = []
        for v in value:
            if isinstance(v, bool) or not isinstance(v, int) or not lo <= v <= hi:
                raise InvalidRecurrenceRule(f"{key}: bad value {v!r} (allowed {lo}..{hi})")
            out.append(v)
        return out
    raise InvalidRecurrenceRule(f"{key}: unsupported value {value!r}")


def _allowed(value: Component) -> Optional[Set[int]]:
    """Return the set of matching values, or None when anything matches."""
    if value is None or value == WILDCARD:
        return None
    if isinstance(value, int):
        return {value}
    return set(value)


def cron_weekday(dt: datetime) -> int:
    """Day of week with Sunday as 0 (datetime.weekday() has Monday as 0)."""
    return (dt.weekday() + 1) % 7


def _start_of_next_month(dt: datetime) -> datetime:
    if dt.month == 12:
        return dt.replace(year=dt.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return dt.replace(month=dt.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass
class RecurrenceRule:
    """A set of calendar constraints; see the module docstring.

    A new rule fires at second 0, so ``RecurrenceRule(hour=6, minute=0)``
    fires once a day at 06:00:00.  Pass ``second=None`` explicitly for
    "every second".

    Rules read with :meth:`from_dict` remember which keys were stored so
    :meth:`to_dict` writes back the same keys.
    """

    second: Component = 0
    minute: Component = None
    hour: Component = None
    date: Component = None
    month: Component = None
    day_of_week: Component = None
    stored_keys: Optional[Tuple[str, ...]] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        for name in _LIMITS:
            setattr(self, name, _check(name, getattr(self, name)))

    def matches(self, dt: datetime) -> bool:
        checks = (
            (self.second, dt.second),
            (self.minute, dt.minute),
            (self.hour, dt.hour),
            (self.date, dt.day),
            (self.month, dt.month),
            (self.day_of_week, cron_weekday(dt)),
        )
        for value, actual in checks:
            allowed = _allowed(value)
            if allowed is not None and actual not in allowed:
                return False
        return True

    def next_fire_time(self, after: datetime) -> Optional[datetime]:
        """Return the first matching instant strictly later than ``after``.

        Works at one second resolution.  Coarse units are advanced first
        (month, then day, hour, minute) so a rule like "1 January 06:00" is
        found in a handful of steps.  Returns None when nothing matches
        within :data:`SEARCH_YEARS` years.
        """
        months = _allowed(self.month)
        dates = _allowed(self.date)
        weekdays = _allowed(self.day_of_week)
        hours = _allowed(self.hour)
        minutes = _allowed(self.minute)
        seconds = _allowed(self.second)

        candidate = after.replace(microsecond=0) + timedelta(seconds=1)
        limit = after + timedelta(days=366 * SEARCH_YEARS)
        while candidate <= limit:
            if months is not None and candidate.month not in months:
                candidate = _start_of_next_month(candidate)
                continue
            if (dates is not None and candidate.day not in dates) or (
                weekdays is not None and cron_weekday(candidate) not in weekdays
            ):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0, second=0)
                continue
            if hours is not None and candidate.hour not in hours:
                candidate = (candidate + timedelta(hours=1)).replace(minute=0, second=0)
                continue
            if minutes is not None and candidate.minute not in minutes:
                candidate = (candidate + timedelta(minutes=1)).replace(second=0)
                continue
            if seconds is not None and candidate.second not in seconds:
                candidate += timedelta(seconds=1)
                continue
            return candidate
        return None

    def to_dict(self) -> dict:
        out = {}
        for name, (key, _lo, _hi) in _LIMITS.items():
            if self.stored_keys is not None and key not in self.stored_keys:
                continue
            value = getattr(self, name)
            out[key] = list(value) if isinstance(value, list) else value
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "RecurrenceRule":
        """Build a rule from its stored shape.

        Keys present with ``null`` stay unset.  A missing ``second`` key
        means second 0, any other missing key means unset.
        """
        if not isinstance(data, dict):
            raise InvalidRecurrenceRule(f"recurrence rule must be an object, got {data!r}")
        kwargs = {}
        stored = []
        for name, (key, _lo, _hi) in _LIMITS.items():
            if key in data:
                kwargs[name] = data[key]
                stored.append(key)
        return cls(stored_keys=tuple(stored), **kwargs)

    def __str__(self) -> str:
        parts = []
        for name, (key, _lo, _hi) in _LIMITS.items():
            value = getattr(self, name)
            if value is None:
                text = "-"
            elif isinstance(value, list):
                text = ",".join(str(v) for v in value)
            else:
                text = str(value)
            parts.append(f"{key}={text}")
        return " ".join(parts)


class RecurrenceTrigger(BaseTrigger):
    """APScheduler trigger that fires whenever a :class:`RecurrenceRule` matches."""

    def __init__(self, rule: RecurrenceRule):
        self.rule = rule

    def get_next_fire_time(self, previous_fire_time, now):
        after = now
        if previous_fire_time is not None and previous_fire_time > now:
            after = previous_fire_time
        tz = after.tzinfo
        naive = self.rule.next_fire_time(after.replace(tzinfo=None))
        if naive is None:
            return None
        if tz is None:
            return naive
        # pytz zones need localize() to pick the right offset
        if hasattr(tz, "localize"):
            return tz.localize(naive)
        return naive.replace(tzinfo=tz)

    def __str__(self):
        return f"recurrence[{self.rule}]"

    def __repr__(self):
        return f"<{self.__class__.__name__} ({self.rule})>"
