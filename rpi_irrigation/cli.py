"""Command line entry point.

  rpi-irrigation run [--host H] [--port P]   run scheduler and web API
  rpi-irrigation devices                     list registered devices
  rpi-irrigation schedules                   list stored schedules
  rpi-irrigation events [--limit N] [--device ID]
                                             show recent events

Settings come from config.json (see rpi_irrigation.config).
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime
from typing import NamedTuple

from .config import data_file, load_config
from .controller import IrrigationController
from .devices import DeviceRegistry
from .errors import IrrigationError
from .events import EventLogger
from .gpio import configure_pin_factory
from .models import EventQuery
from .schedules import ScheduleManager
from .store import ScheduleStore
from .web import build_app

logger = logging.getLogger(__name__)


class Services(NamedTuple):
    registry: DeviceRegistry
    events: EventLogger
    controller: IrrigationController
    schedules: ScheduleManager


def build_services(cfg: dict) -> Services:
    """Wire every component once; nothing here touches hardware yet."""
    registry = DeviceRegistry(data_file(cfg, "devices_file"))
    events = EventLogger(data_file(cfg, "event_db"))
    controller = IrrigationController(registry, events)
    schedules = ScheduleManager(controller, ScheduleStore(data_file(cfg, "schedules_file")))
    return Services(registry, events, controller, schedules)


def start_services(services: Services) -> None:
    """Bring the system up in dependency order.

    Any failure here aborts startup: a controller that cannot read its
    devices or record events must not run schedules.
    """
    services.registry.load()
    services.events.init()
    services.controller.init()
    services.schedules.load()
    services.schedules.start()


def stop_services(services: Services) -> None:
    services.schedules.shutdown()
    services.controller.shutdown()
    services.events.close()


def _cmd_run(cfg: dict, args) -> int:
    configure_pin_factory(cfg.get("gpio", {}).get("pin_factory"))
    os.makedirs(cfg["data_dir"], exist_ok=True)
    services = build_services(cfg)
    start_services(services)
    try:
        app = build_app(services.controller, services.schedules, services.events, services.registry)
        app.run(host=args.host, port=args.port)
    finally:
        stop_services(services)
    return 0


def _cmd_devices(cfg: dict, args) -> int:
    registry = DeviceRegistry(data_file(cfg, "devices_file"))
    for d in registry.load():
        status = "enabled" if d.enabled else "disabled"
        limit = f"{d.max_on_minutes} min" if d.max_on_minutes else "no limit"
        print(f"{d.id:<12} GPIO {d.gpio_pin:2}  {d.name:<20} {d.type:<10} {limit:<10} {status}")
    return 0


def _cmd_schedules(cfg: dict, args) -> int:
    entries = ScheduleStore(data_file(cfg, "schedules_file")).load_all()
    if not entries:
        print("  (none)")
    for e in entries:
        status = "active" if e.active else "inactive"
        rule = e.recurrence_rule or "(no rule)"
        duration = f" {e.duration_minutes} min" if e.duration_minutes else ""
        print(f"{e.name} | {e.device_id} | {e.action}{duration} | {rule} | {status}")
    return 0


def _cmd_events(cfg: dict, args) -> int:
    events = EventLogger(data_file(cfg, "event_db"))
    events.init()
    try:
        for ev in events.get_events(EventQuery(device_id=args.device, limit=args.limit)):
            when = datetime.fromtimestamp(ev.event_time / 1000).strftime("%Y-%m-%d %H:%M:%S")
            print(f"{when}  {ev.event_type.value:<7} {ev.event_source:<20} {ev.device_id or '-':<10} {ev.text}")
    finally:
        events.close()
    return 0


def main(argv=None) -> int:
    cfg = load_config()
    logging.basicConfig(
        level=getattr(logging, str(cfg.get("log_level", "INFO")).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description="Raspberry Pi irrigation controller")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="Run the scheduler and web API")
    p_run.add_argument("--host", default=cfg["web"]["host"])
    p_run.add_argument("--port", type=int, default=int(cfg["web"]["port"]))

    sub.add_parser("devices", help="List registered devices")
    sub.add_parser("schedules", help="List stored schedules")

    p_ev = sub.add_parser("events", help="Show recent events")
    p_ev.add_argument("--limit", type=int, default=20)
    p_ev.add_argument("--device", default=None, help="Only events for this device id")

    args = parser.parse_args(argv)
    handlers = {
        "run": _cmd_run,
        "devices": _cmd_devices,
        "schedules": _cmd_schedules,
        "events": _cmd_events,
    }
    if args.cmd not in handlers:
        parser.print_help()
        return 1
    try:
        return handlers[args.cmd](cfg, args)
    except IrrigationError as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
