import json

import pytest

from rpi_irrigation.devices import DeviceRegistry
from rpi_irrigation.errors import StorageFailure
from rpi_irrigation.models import Device
from rpi_irrigation.store import ScheduleStore

STORED = [
    {
        "name": "morning-on",
        "description": "Front lawn before sunrise",
        "deviceId": "S1",
        "action": "on",
        "durationMinutes": 15,
        "active": True,
        "recurrenceRule": {"second": 0, "minute": 0, "hour": 6, "date": None, "month": None, "dayOfWeek": [1, 3, 5]},
    },
    {
        "name": "every-second-test",
        "description": "",
        "deviceId": "S2",
        "action": "off",
        "durationMinutes": 0,
        "active": False,
        "recurrenceRule": {"second": None, "minute": "*", "hour": 23, "date": None, "month": None, "dayOfWeek": None},
    },
    {
        "name": "legacy",
        "description": "unknown action survives",
        "deviceId": "S9",
        "action": "pulse",
        "durationMinutes": 0,
        "active": False,
        "recurrenceRule": None,
    },
    {
        "name": "hand-written",
        "description": "rule written without a second",
        "deviceId": "S1",
        "action": "on",
        "durationMinutes": 10,
        "active": False,
        "recurrenceRule": {"minute": 30, "hour": 5},
    },
]


def test_save_of_load_reproduces_file(tmp_path):
    path = tmp_path / "schedules.json"
    path.write_text(json.dumps(STORED))
    store = ScheduleStore(str(path))

    store.save_all(store.load_all())

    assert json.loads(path.read_text()) == STORED


def test_missing_file_is_empty(tmp_path):
    assert ScheduleStore(str(tmp_path / "nothing.json")).load_all() == []


@pytest.mark.parametrize("content", [
    "{broken",
    json.dumps({"name": "not a list"}),
    json.dumps([{"description": "no name"}]),
    json.dumps([{"name": "bad-rule", "recurrenceRule": {"hour": 25}}]),
    json.dumps([{"name": "quoted-flag", "active": "false"}]),
    json.dumps([{"name": "negative", "durationMinutes": -10}]),
])
def test_unreadable_file_fails(tmp_path, content):
    path = tmp_path / "schedules.json"
    path.write_text(content)
    with pytest.raises(StorageFailure):
        ScheduleStore(str(path)).load_all()


def test_save_leaves_no_temp_file(tmp_path):
    path = tmp_path / "schedules.json"
    ScheduleStore(str(path)).save_all([])
    assert json.loads(path.read_text()) == []
    assert [p.name for p in tmp_path.iterdir()] == ["schedules.json"]


def test_save_into_missing_directory_fails(tmp_path):
    with pytest.raises(StorageFailure):
        ScheduleStore(str(tmp_path / "missing" / "schedules.json")).save_all([])


def test_registry_filters_by_type(registry):
    assert [d.id for d in registry.get_devices_by_type("irrigation")] == ["S1", "S2", "S3"]
    assert [d.id for d in registry.get_devices_by_type("sensor")] == ["T1"]
    s1 = registry.get_device("S1")
    assert (s1.gpio_pin, s1.max_on_minutes, s1.enabled, s1.active_high) == (17, 30, True, True)
    assert registry.get_device("nope") is None


def test_registry_missing_file_fails(tmp_path):
    with pytest.raises(StorageFailure):
        DeviceRegistry(str(tmp_path / "devices.json")).load()


def test_registry_put_device_persists(registry, devices_file):
    registry.put_device(Device(id="S4", name="Hedge", gpio_pin=23, max_on_minutes=10))
    registry.put_device(Device(id="S1", name="Front lawn", gpio_pin=17, max_on_minutes=45))

    reloaded = DeviceRegistry(str(devices_file))
    reloaded.load()
    assert [d.id for d in reloaded.devices] == ["S1", "S2", "S3", "T1", "S4"]
    assert reloaded.get_device("S1").max_on_minutes == 45


def test_registry_rejects_quoted_flags(tmp_path):
    path = tmp_path / "devices.json"
    path.write_text(json.dumps([{"id": "S1", "name": "Front lawn", "gpioPin": 17, "enabled": "false"}]))
    with pytest.raises(StorageFailure):
        DeviceRegistry(str(path)).load()
