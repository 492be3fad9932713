"""Named recurring schedules that switch stations on and off.

Each :class:`~rpi_irrigation.models.ScheduleEntry` that is active and has a
recurrence rule owns exactly one APScheduler job, keyed by the schedule's
name.  Updating a schedule cancels its job and, if it is still active,
installs a new one built from the current rule.  Every change is written to
the schedule store straight away; the file is the source of truth and the
in-memory map mirrors it.
"""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import fields
from datetime import datetime
from typing import Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from .errors import ScheduleExists, ScheduleNotFound, StorageFailure, UnknownStation
from .models import ScheduleAction, ScheduleEntry
from .recurrence import RecurrenceTrigger

logger = logging.getLogger(__name__)


class ScheduleManager:
    """Manage schedule definitions and their live jobs."""

    def __init__(self, controller, store, scheduler=None):
        self.controller = controller
        self.store = store
        self.sched = scheduler if scheduler is not None else BackgroundScheduler(daemon=True)
        self._schedules: Dict[str, ScheduleEntry] = {}
        self._jobs: Dict[str, object] = {}
        self._lock = threading.RLock()

    def start(self) -> None:
        self.sched.start()

    def shutdown(self) -> None:
        self.sched.shutdown(wait=False)

    def load(self) -> List[ScheduleEntry]:
        """Read every schedule from the store and schedule the active ones.

        Runs once at startup; a StorageFailure propagates to the caller.
        """
        logger.debug("load()")
        entries = self.store.load_all()
        with self._lock:
            for name in list(self._jobs):
                self._cancel_job(name)
            self._schedules = {}
            for entry in entries:
                if entry.name in self._schedules:
                    logger.warning('Duplicate schedule "%s" in store, keeping the last one', entry.name)
                self._schedules[entry.name] = entry
            for entry in self._schedules.values():
                if entry.active:
                    self._schedule_job(entry)
            logger.info("Loaded %d schedules, %d scheduled", len(self._schedules), len(self._jobs))
            return self.get_schedules()

    def get_schedules(self) -> List[ScheduleEntry]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._schedules.values()]

    def get_schedule(self, name: str) -> Optional[ScheduleEntry]:
        with self._lock:
            entry = self._schedules.get(name)
            return copy.deepcopy(entry) if entry is not None else None

    def get_schedule_count(self, device_id: str) -> int:
        with self._lock:
            return sum(1 for e in self._schedules.values() if e.device_id == device_id)

    def get_next_run_time(self, name: str) -> Optional[datetime]:
        with self._lock:
            job = self._jobs.get(name)
        # Jobs added before the scheduler starts have no next_run_time yet.
        return getattr(job, "next_run_time", None) if job is not None else None

    def is_scheduled(self, name: str) -> bool:
        with self._lock:
            return name in self._jobs

    def new_schedule(self, name: str, device_id: str) -> ScheduleEntry:
        """Return a fresh, inactive schedule.

        Nothing is saved or scheduled until the entry is passed to
        :meth:`update_schedule`.
        """
        if not name:
            raise ValueError("Schedule name must not be empty")
        with self._lock:
            if name in self._schedules:
                raise ScheduleExists(name)
        return ScheduleEntry(name=name, device_id=device_id)

    def update_schedule(self, entry: ScheduleEntry) -> ScheduleEntry:
        """Insert or overwrite a schedule, reschedule it and save everything.

        If saving fails the in-memory change and its job stay in place and
        StorageFailure is raised so the caller can retry.
        """
        logger.debug('update_schedule("%s")', entry.name)
        if entry.duration_minutes < 0:
            raise ValueError(f"durationMinutes must not be negative: {entry.duration_minutes}")
        with self._lock:
            current = self._schedules.get(entry.name)
            if current is not None:
                for f in fields(ScheduleEntry):
                    setattr(current, f.name, copy.deepcopy(getattr(entry, f.name)))
            else:
                current = copy.deepcopy(entry)
                self._schedules[current.name] = current

            # Always start from no job so a rule change or re-activation
            # never leaves the old one behind.
            self._cancel_job(current.name)
            if current.active:
                self._schedule_job(current)
            self._save()
            return copy.deepcopy(current)

    def delete_schedule(self, name: str) -> None:
        logger.debug('delete_schedule("%s")', name)
        with self._lock:
            if name not in self._schedules:
                raise ScheduleNotFound(name)
            self._cancel_job(name)
            del self._schedules[name]
            self._save()

    def _save(self) -> None:
        try:
            self.store.save_all(list(self._schedules.values()))
        except StorageFailure as e:
            logger.error("Schedules save failed: %s", e)
            raise

    def _schedule_job(self, entry: ScheduleEntry) -> None:
        rule = entry.recurrence_rule
        if rule is None:
            logger.warning('Schedule "%s" is active but has no recurrence rule, not scheduled', entry.name)
            return
        if rule.next_fire_time(datetime.now()) is None:
            logger.warning('Schedule "%s" rule (%s) never fires, not scheduled', entry.name, rule)
            return
        logger.debug('Scheduling job "%s" (%s)', entry.name, rule)
        job = self.sched.add_job(
            self.exec_scheduled_action,
            trigger=RecurrenceTrigger(rule),
            args=[entry.name],
            id=entry.name,
            name=entry.name,
            replace_existing=True,
            misfire_grace_time=300,
        )
        self._jobs[entry.name] = job

    def _cancel_job(self, name: str) -> None:
        job = self._jobs.pop(name, None)
        if job is None:
            return
        logger.debug('Cancelling job "%s"', name)
        try:
            job.remove()
        except JobLookupError:
            logger.debug('Job "%s" was already gone', name)

    def exec_scheduled_action(self, name: str) -> None:
        """Run one occurrence of a schedule.

        Called from the scheduler's worker threads.  Failures are logged and
        swallowed so the job stays armed for its next occurrence.
        """
        try:
            with self._lock:
                entry = self._schedules.get(name)
                if entry is None:
                    logger.warning('Schedule "%s" no longer exists, nothing to do', name)
                    return
                device_id, raw_action, duration = entry.device_id, entry.action, entry.duration_minutes

            logger.debug('Executing scheduled action "%s" for schedule = "%s"', raw_action, name)
            action = ScheduleAction.parse(raw_action)
            if action is ScheduleAction.ON:
                self.controller.switch_on_off(device_id, True, duration)
            elif action is ScheduleAction.OFF:
                self.controller.switch_on_off(device_id, False)
            else:
                logger.warning('Invalid scheduled action "%s" in schedule "%s", ignored', raw_action, name)
        except UnknownStation as e:
            logger.error('Schedule "%s" refers to unknown station "%s"', name, e.station_id)
        except Exception:
            logger.exception('Scheduled action for "%s" failed', name)
