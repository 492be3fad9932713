"""Controller configuration.

Settings live in a JSON file, ``config.json`` in the working directory
unless ``IRRIGATION_CONFIG`` points elsewhere.  The file is created with
defaults on first run and any key it lacks is filled in from
:data:`DEFAULT_CONFIG`, so upgrading never requires editing it by hand.
"""
from __future__ import annotations

import copy
import json
import os

DEFAULT_CONFIG = {
    # Directory holding devices.json, schedules.json and the event log.
    # Relative file names below are resolved against it.
    "data_dir": "data",
    "devices_file": "devices.json",
    "schedules_file": "schedules.json",
    "event_db": "eventlog.sqlite",
    # Web API defaults.  IRRIGATION_HOST overrides the host.
    "web": {"host": "0.0.0.0", "port": 8000},
    # gpiozero pin factory: "mock", "native" or null for gpiozero's choice.
    "gpio": {"pin_factory": None},
    "log_level": "INFO",
}


def config_path() -> str:
    return os.environ.get("IRRIGATION_CONFIG") or os.path.join(os.getcwd(), "config.json")


def _merge_defaults(cfg: dict, defaults: dict) -> None:
    for key, value in defaults.items():
        if key not in cfg:
            cfg[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(cfg[key], dict):
            _merge_defaults(cfg[key], value)


def load_config(path: str | None = None) -> dict:
    """Load the JSON config from disk, creating it with defaults if needed."""
    path = path or config_path()
    if not os.path.exists(path):
        save_config(DEFAULT_CONFIG, path)
        cfg = copy.deepcopy(DEFAULT_CONFIG)
    else:
        with open(path, "r") as f:
            cfg = json.load(f)
        _merge_defaults(cfg, DEFAULT_CONFIG)

    if os.environ.get("IRRIGATION_DATA_DIR"):
        cfg["data_dir"] = os.environ["IRRIGATION_DATA_DIR"]
    if os.environ.get("IRRIGATION_HOST"):
        cfg["web"]["host"] = os.environ["IRRIGATION_HOST"]
    return cfg


def save_config(cfg: dict, path: str | None = None) -> None:
    """Atomically save the configuration to disk."""
    path = path or config_path()
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(cfg, f, indent=2)
    os.replace(tmp, path)


def data_file(cfg: dict, key: str) -> str:
    """Resolve one of the data file settings against ``data_dir``."""
    return os.path.join(cfg["data_dir"], cfg[key])
