"""
Operator-facing diagnostics: signal freshness, dropout counters and a ring
buffer of warnings shown on the debug overlay.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger("engageos.diagnostics")


@dataclass(frozen=True)
class DiagnosticsSnapshot:
    last_reading_at: Optional[float]
    last_gaze_at: Optional[float]
    reading_stale: bool
    gaze_stale: bool
    reading_dropouts: int
    gaze_dropouts: int
    persistence_failures: int
    dropped_records: int
    rejected_threshold_sets: int
    suppressed_feedback: int
    warnings: Tuple[Tuple[float, str], ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_reading_at": self.last_reading_at,
            "last_gaze_at": self.last_gaze_at,
            "reading_stale": self.reading_stale,
            "gaze_stale": self.gaze_stale,
            "reading_dropouts": self.reading_dropouts,
            "gaze_dropouts": self.gaze_dropouts,
            "persistence_failures": self.persistence_failures,
            "dropped_records": self.dropped_records,
            "rejected_threshold_sets": self.rejected_threshold_sets,
            "suppressed_feedback": self.suppressed_feedback,
            "warnings": [{"timestamp": ts, "message": msg} for ts, msg in self.warnings],
        }


class Diagnostics:
    def __init__(self, reading_stale_ms: float = 3000.0, gaze_stale_ms: float = 1000.0,
                 max_warnings: int = 50):
        self.reading_stale_ms = reading_stale_ms
        self.gaze_stale_ms = gaze_stale_ms
        self.last_reading_at: Optional[float] = None
        self.last_gaze_at: Optional[float] = None
        self.reading_dropouts = 0
        self.gaze_dropouts = 0
        self.persistence_failures = 0
        self.dropped_records = 0
        self.rejected_threshold_sets = 0
        self.suppressed_feedback = 0
        self.warnings: deque = deque(maxlen=max_warnings)

    def reading_received(self, now: float):
        self.last_reading_at = now

    def gaze_received(self, now: float):
        self.last_gaze_at = now

    def warn(self, message: str, now: Optional[float] = None):
        ts = now if now is not None else time.time() * 1000.0
        self.warnings.append((ts, message))
        logger.warning(message)

    def _stale(self, last: Optional[float], window: float, now: float) -> bool:
        return last is None or now - last > window

    def snapshot(self, now: float) -> DiagnosticsSnapshot:
        return DiagnosticsSnapshot(
            last_reading_at=self.last_reading_at,
            last_gaze_at=self.last_gaze_at,
            reading_stale=self._stale(self.last_reading_at, self.reading_stale_ms, now),
            gaze_stale=self._stale(self.last_gaze_at, self.gaze_stale_ms, now),
            reading_dropouts=self.reading_dropouts,
            gaze_dropouts=self.gaze_dropouts,
            persistence_failures=self.persistence_failures,
            dropped_records=self.dropped_records,
            rejected_threshold_sets=self.rejected_threshold_sets,
            suppressed_feedback=self.suppressed_feedback,
            warnings=tuple(self.warnings),
        )
