"""Schedule persistence: the whole schedule set lives in schedules.json."""
from __future__ import annotations

import logging
import os
from typing import Iterable, List

from .errors import IrrigationError, StorageFailure
from .jsonfile import read_json, write_json
from .models import ScheduleEntry

logger = logging.getLogger(__name__)


class ScheduleStore:
    def __init__(self, path: str):
        self.path = path

    def load_all(self) -> List[ScheduleEntry]:
        """Return every stored schedule.

        A missing file means no schedules have been saved yet.  A file that
        exists but cannot be parsed raises StorageFailure.
        """
        if not os.path.exists(self.path):
            logger.info("%s does not exist yet, starting with no schedules", self.path)
            return []
        data = read_json(self.path)
        if not isinstance(data, list):
            raise StorageFailure(f"{self.path}: expected a list of schedules")
        try:
            return [ScheduleEntry.from_dict(d) for d in data]
        except (KeyError, TypeError, ValueError, IrrigationError) as e:
            raise StorageFailure(f"{self.path}: bad schedule record: {e}") from e

    def save_all(self, entries: Iterable[ScheduleEntry]) -> None:
        write_json(self.path, [e.to_dict() for e in entries])
