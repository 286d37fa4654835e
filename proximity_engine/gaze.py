"""
Gaze Engagement Scorer
Turns a gaze direction + confidence into a signed engagement adjustment.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

GAZE_MIN_CONFIDENCE = 30.0
LOOKING_REWARD = 20.0
LOOKING_AWAY_PENALTY = -30.0


class GazeDirection(str, Enum):
    LOOKING_AT_SCREEN = "looking-at-screen"
    LOOKING_AWAY = "looking-away"
    UNKNOWN = "unknown"
    NONE = "none"

    @classmethod
    def parse(cls, value: Any) -> "GazeDirection":
        """Lenient parse; anything unrecognised is NONE"""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.NONE
        try:
            return cls(str(value))
        except ValueError:
            return cls.NONE


@dataclass(frozen=True)
class GazeReading:
    """Gaze input record (one face)"""
    direction: GazeDirection
    confidence: float
    face_detected: bool = True
    person_id: Optional[str] = None
    timestamp: Optional[float] = None


def _clamp_confidence(confidence: Any) -> Optional[float]:
    try:
        c = float(confidence)
    except (TypeError, ValueError):
        return None
    if math.isnan(c):
        return None
    return max(0.0, min(100.0, c))


def score(direction: Any, confidence: Any) -> float:
    """
    Signed engagement adjustment in [-30, +20].

    Looking away is penalised harder than looking at the screen is rewarded;
    below 30% confidence the signal is ignored.
    """
    c = _clamp_confidence(confidence)
    if c is None or c < GAZE_MIN_CONFIDENCE:
        return 0.0

    d = GazeDirection.parse(direction)
    if d is GazeDirection.LOOKING_AT_SCREEN:
        return LOOKING_REWARD * (c / 100.0)
    if d is GazeDirection.LOOKING_AWAY:
        return LOOKING_AWAY_PENALTY * (c / 100.0)
    return 0.0


def score_reading(reading: Optional[GazeReading]) -> float:
    if reading is None or not reading.face_detected:
        return 0.0
    return score(reading.direction, reading.confidence)
