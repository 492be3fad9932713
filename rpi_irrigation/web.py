"""JSON API over the controller, the schedule manager and the event log.

Every reply has the shape ``{"status": "OK", "data": ...}`` or
``{"status": "ERROR", "error": "..."}``.
"""
from __future__ import annotations

import logging

from flask import Flask, jsonify, request

from .errors import IrrigationError, ScheduleNotFound
from .models import Device, EventQuery, EventType, ScheduleEntry

logger = logging.getLogger(__name__)


def _ok(data=None, code: int = 200):
    return jsonify({"status": "OK", "data": data}), code


def _error(message: str, code: int):
    return jsonify({"status": "ERROR", "error": message}), code


def _schedule_view(schedules, entry: ScheduleEntry) -> dict:
    data = entry.to_dict()
    next_run = schedules.get_next_run_time(entry.name)
    data["nextRun"] = next_run.isoformat() if next_run else None
    return data


def build_app(controller, schedules, events=None, registry=None) -> Flask:
    """Construct the Flask application serving the JSON API.

    The device routes need ``registry``; without it they answer 404.
    """
    app = Flask(__name__)

    @app.errorhandler(IrrigationError)
    def handle_irrigation_error(e: IrrigationError):
        logger.error("%s: %s", type(e).__name__, e)
        return _error(str(e), e.http_status)

    # ------------------------------------------------------------------
    # Stations

    @app.get("/controller/stations")
    def api_stations():
        return _ok(controller.get_stations())

    @app.get("/controller/stations/<station_id>/status")
    def api_station_status(station_id: str):
        status = controller.get_status(station_id)
        if status is None:
            return _error(f"Station with id {station_id} not found", 404)
        return _ok(status.to_dict())

    @app.put("/controller/stations/<station_id>/operation")
    def api_station_operation(station_id: str):
        """Turn a station on or off.

        Expects ``{"action": "on" | "off"}`` and optionally
        ``durationMinutes`` to override the station's maximum run time.
        """
        data = request.get_json(force=True, silent=True) or {}
        action = str(data.get("action", "")).lower()
        if action not in ("on", "off"):
            return _error("Invalid request", 400)
        duration = data.get("durationMinutes")
        if duration is not None:
            try:
                duration = int(duration)
            except (TypeError, ValueError):
                return _error("durationMinutes must be a number", 400)
            if duration < 0:
                return _error("durationMinutes must not be negative", 400)
        controller.switch_on_off(station_id, action == "on", duration)
        return _ok({"stationId": station_id, "status": action}, 201)

    # ------------------------------------------------------------------
    # Devices

    @app.get("/devices")
    def api_devices():
        if registry is None:
            return _error("No device registry", 404)
        return _ok([d.to_dict() for d in registry.devices])

    @app.get("/devices/<device_id>")
    def api_device(device_id: str):
        device = registry.get_device(device_id) if registry is not None else None
        if device is None:
            return _error(f"Device with id {device_id} not found", 404)
        return _ok(device.to_dict())

    @app.post("/devices")
    def api_device_put():
        """Add or replace a device.

        Stations are built when the controller starts, so a change takes
        effect on the next start.
        """
        if registry is None:
            return _error("No device registry", 404)
        data = request.get_json(force=True, silent=True)
        if not isinstance(data, dict):
            return _error("Invalid request", 400)
        try:
            device = Device.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            return _error(f"Invalid device: {e}", 400)
        registry.put_device(device)
        return _ok(device.to_dict())

    # ------------------------------------------------------------------
    # Schedules

    @app.get("/schedules")
    def api_schedules():
        return _ok([_schedule_view(schedules, e) for e in schedules.get_schedules()])

    @app.get("/schedules/<name>")
    def api_schedule(name: str):
        entry = schedules.get_schedule(name)
        if entry is None:
            raise ScheduleNotFound(name)
        return _ok(_schedule_view(schedules, entry))

    @app.get("/schedules/<device_id>/<name>/new")
    def api_schedule_new(device_id: str, name: str):
        return _ok(schedules.new_schedule(name, device_id).to_dict())

    @app.put("/schedules/<name>")
    def api_schedule_update(name: str):
        data = request.get_json(force=True, silent=True) or {}
        if data.get("name") != name:
            return _error(f"Name in request body ({data.get('name')}) does not match name in path ({name})", 400)
        try:
            entry = ScheduleEntry.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            return _error(f"Invalid schedule: {e}", 400)
        saved = schedules.update_schedule(entry)
        return _ok(_schedule_view(schedules, saved), 201)

    @app.delete("/schedules/<name>")
    def api_schedule_delete(name: str):
        schedules.delete_schedule(name)
        return _ok({"deleted": name})

    # ------------------------------------------------------------------
    # Events

    @app.get("/events")
    def api_events():
        if events is None:
            return _ok([])
        args = request.args
        try:
            event_type = args.get("type")
            query = EventQuery(
                date_from=args.get("from", type=int),
                date_to=args.get("to", type=int),
                event_type=EventType(event_type) if event_type else None,
                event_source=args.get("source"),
                device_id=args.get("deviceId"),
                limit=args.get("limit", type=int),
                offset=args.get("offset", type=int),
            )
        except ValueError as e:
            return _error(str(e), 400)
        return _ok([e.to_dict() for e in events.get_events(query)])

    return app
