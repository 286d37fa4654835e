"""
Engine Configuration
Every recognised option with its default. Admin-UI settings blobs are
validated against this tree at load time; unknown keys and out-of-range
values are rejected instead of falling back silently.
"""

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .thresholds import ThresholdSet


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class DetectionConfig(_Section):
    # Zone thresholds (0-100 proximity scale, higher = closer)
    ambient_floor: float = Field(30.0, ge=0, le=100)
    ambient_exit_margin: float = Field(5.0, ge=0, le=50)
    walkup_threshold: float = Field(60.0, ge=0, le=100)
    walkup_exit_margin: float = Field(10.0, ge=0, le=50)
    baseline: float = Field(0.0, ge=0, le=100)

    # Stare ("employee engaged") pattern
    stare_dwell_ms: float = Field(15000.0, gt=0, le=600000)
    stare_min_gaze_confidence: float = Field(70.0, ge=0, le=100)

    # Scheduling
    max_tick_hz: float = Field(10.0, gt=0, le=60)
    gaze_poll_hz: float = Field(5.0, gt=0, le=60)
    gaze_stale_ms: float = Field(1000.0, gt=0, le=60000)


class TrackingConfig(_Section):
    stale_ms: float = Field(3000.0, gt=0, le=60000)
    intent_history_size: int = Field(10, ge=1, le=100)
    intent_agreement: float = Field(0.7, gt=0, le=1)
    max_session_frames: int = Field(3000, ge=1, le=100000)

    # False-positive gates applied before a person can qualify for any zone
    min_track_ms: float = Field(1000.0, ge=0, le=60000)       # brief appearances
    boundary_margin: float = Field(0.1, ge=0, lt=0.5)          # frame edges, each side
    passing_lane_width: float = Field(0.2, ge=0, lt=1)         # lateral 0..width is the walkway
    max_lateral_speed: float = Field(0.8, gt=0, le=10)         # frame widths / s


class IntentConfig(_Section):
    approach_velocity: float = Field(2.0, gt=0, le=100)   # proximity units / s
    lateral_pass_speed: float = Field(0.8, gt=0, le=10)   # frame widths / s
    linger_distance: float = Field(30.0, ge=0, le=100)
    engaged_distance: float = Field(60.0, ge=0, le=100)
    engaged_dwell_ms: float = Field(2000.0, ge=0, le=600000)
    streak_saturation: int = Field(5, ge=1, le=100)
    ambiguous_confidence_cap: float = Field(40.0, ge=0, le=100)


class LearningConfig(_Section):
    learning_duration_ms: float = Field(300000.0, gt=0)
    recalibration_interval_ms: float = Field(3600000.0, gt=0)
    suppress_triggers_while_learning: bool = False
    max_accumulated_sessions: int = Field(5000, ge=1)

    # Recalibration
    min_bucket_sessions: int = Field(10, ge=1)
    min_pattern_samples: int = Field(10, ge=1)
    base_false_positive_rate: float = Field(0.10, gt=0, lt=1)
    min_false_positive_rate: float = Field(0.02, gt=0, lt=1)
    max_false_positive_rate: float = Field(0.25, gt=0, lt=1)
    baseline_quantile: float = Field(0.25, ge=0, le=1)
    ambient_quantile: float = Field(0.10, ge=0, le=1)
    engaged_quantile: float = Field(0.10, ge=0, le=1)
    ambient_margin: float = Field(5.0, ge=0, le=100)
    ambient_floor_min: float = Field(10.0, ge=0, le=100)
    ambient_floor_max: float = Field(30.0, ge=0, le=100)

    # Calibration invalidation
    location_threshold_m: float = Field(100.0, gt=0)
    lighting_change_threshold: float = Field(100.0, gt=0)
    timezone_hour_threshold: float = Field(12.0, gt=0, le=24)

    # Persistence retries
    max_write_attempts: int = Field(3, ge=1, le=100)
    max_pending_writes: int = Field(1000, ge=1)

    @model_validator(mode="after")
    def _check_ranges(self) -> "LearningConfig":
        if self.ambient_floor_min >= self.ambient_floor_max:
            raise ValueError("ambient_floor_min must be below ambient_floor_max")
        if not (self.min_false_positive_rate <= self.base_false_positive_rate
                <= self.max_false_positive_rate):
            raise ValueError("base_false_positive_rate must lie within the min/max rates")
        return self


class FeedbackConfig(_Section):
    enabled: bool = True
    auto_close_ms: float = Field(8000.0, gt=0, le=120000)


class EngagementConfig(_Section):
    """Top-level engine configuration"""

    detection: DetectionConfig = DetectionConfig()
    tracking: TrackingConfig = TrackingConfig()
    intent: IntentConfig = IntentConfig()
    learning: LearningConfig = LearningConfig()
    feedback: FeedbackConfig = FeedbackConfig()

    @model_validator(mode="after")
    def _check_thresholds(self) -> "EngagementConfig":
        if self.detection.ambient_floor >= self.detection.walkup_threshold:
            raise ValueError("detection.ambient_floor must be below detection.walkup_threshold")
        return self

    @classmethod
    def from_settings_blob(cls, blob: Optional[Mapping[str, Any]] = None) -> "EngagementConfig":
        """Validate a nested settings blob, e.g. {"detection": {"walkup_threshold": 55}}"""
        return cls.model_validate(dict(blob or {}))

    def default_thresholds(self) -> ThresholdSet:
        d = self.detection
        return ThresholdSet(
            ambient_floor=d.ambient_floor,
            walkup_threshold=d.walkup_threshold,
            stare_dwell_ms=d.stare_dwell_ms,
            baseline=d.baseline,
        )
