import json
import logging

import pytest
from gpiozero import Device
from gpiozero.pins.mock import MockFactory

from rpi_irrigation.controller import IrrigationController
from rpi_irrigation.devices import DeviceRegistry
from rpi_irrigation.events import EventLogger

logging.getLogger("rpi_irrigation").setLevel(logging.DEBUG)


DEVICES = [
    {"id": "S1", "name": "Front lawn", "type": "irrigation", "gpioPin": 17, "maxOnMinutes": 30, "enabled": True},
    {"id": "S2", "name": "Garden", "type": "irrigation", "gpioPin": 27, "maxOnMinutes": 0, "enabled": True},
    {"id": "S3", "name": "Back lawn", "type": "irrigation", "gpioPin": 22, "maxOnMinutes": 20, "enabled": False},
    {"id": "T1", "name": "Greenhouse temp", "type": "sensor", "gpioPin": 4, "enabled": True},
]


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = tuple(args or ())
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        # Like threading.Timer: a cancelled timer never runs its function.
        if self.cancelled:
            return
        self.fired = True
        self.function(*self.args)

    @property
    def pending(self):
        return self.started and not self.cancelled and not self.fired


class FakeJob:
    def __init__(self, scheduler, id, func, args, trigger):
        self.scheduler = scheduler
        self.id = id
        self.func = func
        self.args = args
        self.trigger = trigger
        self.next_run_time = None

    def remove(self):
        self.scheduler.removed.append(self.id)
        self.scheduler.jobs.pop(self.id, None)

    def run(self):
        return self.func(*self.args)


class FakeScheduler:
    """Records jobs instead of running them (mirrors BackgroundScheduler's API)."""

    def __init__(self):
        self.jobs = {}
        self.added = []
        self.removed = []
        self.running = False

    def start(self):
        self.running = True

    def shutdown(self, wait=False):
        self.running = False

    def add_job(self, func, trigger=None, args=None, id=None, name=None, replace_existing=False,
                misfire_grace_time=None):
        job = FakeJob(self, id, func, list(args or []), trigger)
        self.jobs[id] = job
        self.added.append(id)
        return job

    def get_jobs(self):
        return list(self.jobs.values())


@pytest.fixture(autouse=True)
def mock_pins():
    Device.pin_factory = MockFactory()
    yield Device.pin_factory
    Device.pin_factory.reset()


@pytest.fixture
def timers():
    """Timer factory whose timers are collected in ``timers.created``."""
    created = []

    def factory(interval, function, args=None, kwargs=None):
        t = FakeTimer(interval, function, args, kwargs)
        created.append(t)
        return t

    factory.created = created
    return factory


@pytest.fixture
def devices_file(tmp_path):
    path = tmp_path / "devices.json"
    path.write_text(json.dumps(DEVICES))
    return path


@pytest.fixture
def registry(devices_file):
    reg = DeviceRegistry(str(devices_file))
    reg.load()
    return reg


@pytest.fixture
def events(tmp_path):
    ev = EventLogger(str(tmp_path / "events.sqlite"))
    ev.init()
    yield ev
    ev.close()


@pytest.fixture
def controller(registry, events, timers):
    ctl = IrrigationController(registry, events, timer_factory=timers)
    ctl.init()
    yield ctl
    ctl.shutdown()
