"""
Environmental context: calibration invalidation checks, bucketing helpers and
learning-pattern analysis over captured sessions.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

EARTH_RADIUS_M = 6371e3

TIME_OF_DAY_PERIODS = ("morning", "afternoon", "evening", "night")
LIGHTING_CONDITIONS = ("bright", "normal", "dim", "dark")
DAY_TYPES = ("weekday", "weekend")


@dataclass(frozen=True)
class EnvironmentContext:
    """Where and under which conditions the kiosk is currently running"""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    lighting_level: Optional[float] = None  # mean frame brightness 0-255
    hour_of_day: Optional[int] = None
    day_of_week: Optional[int] = None       # 0 = Sunday

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EnvironmentContext":
        def pick(*names):
            for n in names:
                if data.get(n) is not None:
                    return data[n]
            return None

        def num(value, cast=float):
            return None if value is None else cast(value)

        return cls(
            latitude=num(pick("latitude", "lat")),
            longitude=num(pick("longitude", "lng", "lon")),
            lighting_level=num(pick("lighting_level", "lighting")),
            hour_of_day=num(pick("hour_of_day", "hour"), int),
            day_of_week=num(pick("day_of_week", "day"), int),
        )

    @classmethod
    def now(cls, at: Optional[datetime] = None, **kwargs) -> "EnvironmentContext":
        ts = at or datetime.now()
        # datetime.weekday(): Monday = 0; sessions use Sunday = 0
        kwargs.setdefault("hour_of_day", ts.hour)
        kwargs.setdefault("day_of_week", (ts.weekday() + 1) % 7)
        return cls(**kwargs)

    @property
    def lighting_condition(self) -> Optional[str]:
        if self.lighting_level is None:
            return None
        return lighting_condition(self.lighting_level)

    @property
    def time_of_day(self) -> Optional[str]:
        if self.hour_of_day is None:
            return None
        return time_of_day_period(self.hour_of_day)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "lighting_level": self.lighting_level,
            "hour_of_day": self.hour_of_day,
            "day_of_week": self.day_of_week,
        }


@dataclass(frozen=True)
class ResetDecision:
    should_reset: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self):
        return {"should_reset": self.should_reset, "reasons": list(self.reasons)}


# ============================================================================
# GEO / CONTEXT CHANGE
# ============================================================================

def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (math.sin(d_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def has_location_changed(prev_lat, prev_lng, cur_lat, cur_lng, threshold_m: float = 100.0) -> bool:
    if None in (prev_lat, prev_lng, cur_lat, cur_lng):
        return False
    return haversine_m(prev_lat, prev_lng, cur_lat, cur_lng) > threshold_m


def should_reset_learning(
    previous: EnvironmentContext,
    current: EnvironmentContext,
    location_threshold_m: float = 100.0,
    lighting_threshold: float = 100.0,
    hour_threshold: float = 12.0,
) -> ResetDecision:
    """
    Decide whether learned thresholds no longer describe the environment.
    A field missing on either side skips that check.
    """
    reasons = []

    if has_location_changed(previous.latitude, previous.longitude,
                            current.latitude, current.longitude,
                            location_threshold_m):
        reasons.append("location_changed")

    if previous.lighting_level is not None and current.lighting_level is not None:
        if abs(previous.lighting_level - current.lighting_level) > lighting_threshold:
            reasons.append("lighting_environment_changed")

    if previous.hour_of_day is not None and current.hour_of_day is not None:
        if abs(previous.hour_of_day - current.hour_of_day) > hour_threshold:
            reasons.append("timezone_changed")

    return ResetDecision(should_reset=bool(reasons), reasons=reasons)


# ============================================================================
# BUCKETING
# ============================================================================

def time_of_day_period(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def day_type(day_of_week: int) -> str:
    return "weekend" if day_of_week in (0, 6) else "weekday"


def lighting_condition(level: float) -> str:
    if level > 200:
        return "bright"
    if level > 120:
        return "normal"
    if level > 60:
        return "dim"
    return "dark"


def estimate_weather_from_lighting(level: float, hour: int) -> Optional[str]:
    """Daytime-only heuristic; at night lighting says nothing about weather"""
    if not 6 <= hour <= 20:
        return None
    if level > 200:
        return "sunny"
    if level > 140:
        return "partly_cloudy"
    if level > 80:
        return "cloudy"
    return "stormy"


# ============================================================================
# PATTERN ANALYSIS
# ============================================================================

def _session_field(session: Any, name: str, default=None):
    if isinstance(session, Mapping):
        return session.get(name, default)
    return getattr(session, name, default)


def _is_engaged(outcome: Any) -> bool:
    value = getattr(outcome, "value", outcome)
    return value in ("engaged", "converted")


@dataclass
class BucketStats:
    engaged: int = 0
    total: int = 0

    @property
    def rate(self) -> float:
        return self.engaged / self.total if self.total else 0.0

    def to_dict(self):
        return {"engaged": self.engaged, "total": self.total, "rate": round(self.rate, 4)}


@dataclass
class PatternAnalysis:
    by_time_of_day: Dict[str, BucketStats]
    by_lighting: Dict[str, BucketStats]
    by_day_type: Dict[str, BucketStats]
    best_time_of_day: Optional[Dict[str, Any]] = None
    worst_time_of_day: Optional[Dict[str, Any]] = None
    best_lighting: Optional[Dict[str, Any]] = None
    worst_lighting: Optional[Dict[str, Any]] = None
    weekday_vs_weekend: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patterns": {
                "by_time_of_day": {k: v.to_dict() for k, v in self.by_time_of_day.items()},
                "by_lighting": {k: v.to_dict() for k, v in self.by_lighting.items()},
                "by_day_type": {k: v.to_dict() for k, v in self.by_day_type.items()},
            },
            "insights": {
                "best_time_of_day": self.best_time_of_day,
                "worst_time_of_day": self.worst_time_of_day,
                "best_lighting": self.best_lighting,
                "worst_lighting": self.worst_lighting,
                "weekday_vs_weekend": self.weekday_vs_weekend,
            },
        }


def _extremes(buckets: Dict[str, BucketStats], label: str, min_samples: int):
    eligible = [(name, s) for name, s in buckets.items() if s.total >= min_samples]
    if not eligible:
        return None, None

    def describe(name, s):
        return {label: name, "rate": s.rate, "engaged": s.engaged, "total": s.total}

    best = max(eligible, key=lambda item: item[1].rate)
    worst = min(eligible, key=lambda item: item[1].rate)
    return describe(*best), describe(*worst)


def analyze_learning_patterns(sessions: Iterable[Any], min_samples: int = 10) -> PatternAnalysis:
    """
    Engagement rate per time-of-day period, lighting bucket and day type.
    Buckets with fewer than `min_samples` sessions never produce insights.
    Sessions may be LearningSession objects or plain mappings.
    """
    analysis = PatternAnalysis(
        by_time_of_day={p: BucketStats() for p in TIME_OF_DAY_PERIODS},
        by_lighting={c: BucketStats() for c in LIGHTING_CONDITIONS},
        by_day_type={d: BucketStats() for d in DAY_TYPES},
    )

    for session in sessions:
        engaged = _is_engaged(_session_field(session, "outcome"))
        hour = _session_field(session, "hour_of_day")
        dow = _session_field(session, "day_of_week")
        lighting = _session_field(session, "lighting_condition") or "normal"

        targets = []
        if hour is not None:
            targets.append(analysis.by_time_of_day[time_of_day_period(int(hour))])
        if lighting in analysis.by_lighting:
            targets.append(analysis.by_lighting[lighting])
        if dow is not None:
            targets.append(analysis.by_day_type[day_type(int(dow))])

        for stats in targets:
            stats.total += 1
            if engaged:
                stats.engaged += 1

    analysis.best_time_of_day, analysis.worst_time_of_day = _extremes(
        analysis.by_time_of_day, "period", min_samples)
    analysis.best_lighting, analysis.worst_lighting = _extremes(
        analysis.by_lighting, "condition", min_samples)

    weekday = analysis.by_day_type["weekday"]
    weekend = analysis.by_day_type["weekend"]
    if weekday.total >= min_samples and weekend.total >= min_samples:
        analysis.weekday_vs_weekend = {
            "weekday_rate": weekday.rate,
            "weekend_rate": weekend.rate,
            "preference": "weekday" if weekday.rate > weekend.rate else "weekend",
        }

    return analysis
