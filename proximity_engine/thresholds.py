"""
Threshold sets and the per-bucket calibration book.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidThresholdSet

logger = logging.getLogger("engageos.thresholds")

DEFAULT_BUCKET = "default"


def bucket_key(period: Optional[str], lighting: Optional[str]) -> str:
    """Environmental bucket key, e.g. "afternoon:normal" """
    if not period and not lighting:
        return DEFAULT_BUCKET
    return f"{period or 'any'}:{lighting or 'any'}"


@dataclass(frozen=True)
class ThresholdSet:
    """Calibration read by the state machine every tick"""
    ambient_floor: float
    walkup_threshold: float
    stare_dwell_ms: float
    baseline: float = 0.0

    def validate(self) -> "ThresholdSet":
        values = (self.ambient_floor, self.walkup_threshold, self.stare_dwell_ms, self.baseline)
        if any(not isinstance(v, (int, float)) or math.isnan(v) for v in values):
            raise InvalidThresholdSet(f"non-numeric threshold value in {self}")
        if not 0 <= self.ambient_floor <= 100 or not 0 <= self.walkup_threshold <= 100:
            raise InvalidThresholdSet(
                f"thresholds out of 0-100 range "
                f"(ambient_floor={self.ambient_floor}, walkup_threshold={self.walkup_threshold})"
            )
        if self.ambient_floor >= self.walkup_threshold:
            raise InvalidThresholdSet(
                f"ambient_floor {self.ambient_floor:.1f} must be below "
                f"walkup_threshold {self.walkup_threshold:.1f}"
            )
        if self.stare_dwell_ms <= 0:
            raise InvalidThresholdSet(f"stare_dwell_ms must be positive, got {self.stare_dwell_ms}")
        if not 0 <= self.baseline <= 100:
            raise InvalidThresholdSet(f"baseline out of range: {self.baseline}")
        return self

    def to_dict(self) -> Dict[str, float]:
        return {k: round(v, 2) for k, v in asdict(self).items()}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ThresholdSet":
        try:
            return cls(
                ambient_floor=float(data["ambient_floor"]),
                walkup_threshold=float(data["walkup_threshold"]),
                stare_dwell_ms=float(data["stare_dwell_ms"]),
                baseline=float(data.get("baseline", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidThresholdSet(f"malformed threshold record: {exc}") from exc


class ThresholdBook:
    """
    Current ThresholdSet per environmental bucket.
    Buckets that were never calibrated read the defaults.
    """

    def __init__(self, defaults: ThresholdSet):
        self.defaults = defaults.validate()
        self._sets: Dict[str, ThresholdSet] = {}

    def get(self, key: str) -> ThresholdSet:
        return self._sets.get(key, self.defaults)

    def has(self, key: str) -> bool:
        return key in self._sets

    def apply(self, key: str, candidate: ThresholdSet) -> bool:
        """Install a candidate set; invalid sets are discarded and the prior set kept"""
        try:
            candidate.validate()
        except InvalidThresholdSet as exc:
            logger.warning(
                "Rejected threshold set for bucket %s (%s); keeping %s",
                key, exc.reason, self.get(key),
            )
            return False
        self._sets[key] = candidate
        logger.info("Thresholds for bucket %s -> %s", key, candidate.to_dict())
        return True

    def reset(self):
        self._sets.clear()

    def buckets(self) -> Dict[str, ThresholdSet]:
        return dict(self._sets)
