"""
Push-to-pull adapters: something pushes readings (a websocket, a REST call, a
callback) and the engine pulls the newest one on its own schedule.
Each pushed value is handed out once; a pull with nothing new returns None.
"""

from typing import Any, Dict, List, Optional

from ..detection_core import SensorReading
from ..gaze import GazeReading


class LatestReadingSource:
    """Newest reading per person"""

    def __init__(self):
        self._latest: Dict[str, SensorReading] = {}
        self.pushed = 0

    def push(self, reading: SensorReading):
        self._latest[reading.person_id] = reading
        self.pushed += 1

    def get_reading(self) -> Optional[List[SensorReading]]:
        if not self._latest:
            return None
        readings = list(self._latest.values())
        self._latest.clear()
        return readings


class LatestGazeSource:
    def __init__(self):
        self._latest: Optional[GazeReading] = None
        self.pushed = 0

    def push(self, gaze: GazeReading):
        self._latest = gaze
        self.pushed += 1

    def get_gaze(self) -> Optional[GazeReading]:
        gaze, self._latest = self._latest, None
        return gaze


class InteractionQueue:
    """Pending touch events (optional person id each)"""

    def __init__(self):
        self._pending: List[Optional[str]] = []

    def push(self, person_id: Optional[str] = None):
        self._pending.append(person_id)

    def get_interactions(self) -> List[Any]:
        pending, self._pending = self._pending, []
        return pending
