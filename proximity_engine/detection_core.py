"""
Proximity Detection Core - Headless/API Version
Pulls the latest proximity and gaze readings once per tick, tracks every
person in front of the kiosk and publishes an immutable DetectionSnapshot.
Use this for web APIs, background services, or integration into other projects.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from .config import EngagementConfig
from .diagnostics import Diagnostics, DiagnosticsSnapshot
from .environment import EnvironmentContext, ResetDecision
from .errors import SignalUnavailable
from .feedback import FeedbackCollector, FeedbackRecord, FeedbackUI
from .gaze import GazeDirection, GazeReading, score
from .intent import Intent, Trend, Velocity, classify, smooth_intent, trend_of
from .learning import AdaptiveThresholdLearner, LearningSession, LearningStatus, SessionFrame, SessionOutcome
from .persistence import EngagementStore, InMemoryStore, PersistenceOutbox
from .thresholds import DEFAULT_BUCKET, ThresholdBook, ThresholdSet, bucket_key
from .triggers import TriggerContext, TriggerKind, TriggerSink

logger = logging.getLogger("engageos.tracker")

VELOCITY_SMOOTHING = 0.5
RATE_LIMIT_TOLERANCE = 0.95


class ZoneState(IntEnum):
    """Ordered: a higher value is the more significant zone"""
    NONE = 0
    AMBIENT = 1
    WALKUP = 2
    STARE = 3

    @property
    def label(self) -> str:
        return self.name.lower()


ZONE_TRIGGERS = {
    ZoneState.AMBIENT: TriggerKind.AMBIENT,
    ZoneState.WALKUP: TriggerKind.WALKUP,
    ZoneState.STARE: TriggerKind.STARE,
}


# ============================================================================
# INPUT RECORDS / SOURCES
# ============================================================================

@dataclass(frozen=True)
class SensorReading:
    """One proximity measurement (0-100, higher = closer)"""
    proximity: float
    timestamp: Optional[float] = None
    person_id: str = "primary"
    lateral_position: Optional[float] = None   # 0..1 across the frame
    left: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SensorReading":
        lateral = data.get("lateral_position")
        return cls(
            proximity=float(data["proximity"]),
            timestamp=None if data.get("timestamp") is None else float(data["timestamp"]),
            person_id=str(data.get("person_id") or data.get("id") or "primary"),
            lateral_position=None if lateral is None else float(lateral),
            left=bool(data.get("left", False)),
        )


class ReadingSource(Protocol):
    def get_reading(self) -> Any:
        """SensorReading, a sequence of them, or None when nothing is available"""
        ...


class GazeSource(Protocol):
    def get_gaze(self) -> Optional[GazeReading]: ...


class InteractionSource(Protocol):
    def get_interactions(self) -> Iterable[Any]:
        """Touches since the last pull; a str item names the person"""
        ...


def _coerce_readings(raw: Any) -> List[SensorReading]:
    if raw is None:
        return []
    if isinstance(raw, SensorReading):
        return [raw]
    if isinstance(raw, Mapping):
        return [SensorReading.from_mapping(raw)]
    return [r if isinstance(r, SensorReading) else SensorReading.from_mapping(r) for r in raw]


def _coerce_gaze(raw: Any) -> Optional[GazeReading]:
    if raw is None or isinstance(raw, GazeReading):
        return raw
    return GazeReading(
        direction=GazeDirection.parse(raw.get("direction")),
        confidence=float(raw.get("confidence") or 0.0),
        face_detected=bool(raw.get("face_detected", raw.get("faceDetected", True))),
        person_id=raw.get("person_id"),
        timestamp=raw.get("timestamp"),
    )


# ============================================================================
# STATE TRACKERS
# ============================================================================

class DwellTimer:
    """Measures how long a condition has held without interruption (ms)"""

    def __init__(self, threshold_ms: float):
        self.threshold_ms = threshold_ms
        self.start_time: Optional[float] = None

    def update(self, condition_active: bool, now: float) -> Tuple[bool, float]:
        if condition_active:
            if self.start_time is None:
                self.start_time = now
            elapsed = now - self.start_time
            return elapsed >= self.threshold_ms, elapsed
        self.start_time = None
        return False, 0.0


@dataclass
class TrackedPerson:
    id: str
    distance: float
    first_seen_at: float
    last_updated_at: float
    velocity: Velocity = Velocity()
    gaze_direction: GazeDirection = GazeDirection.NONE
    gaze_confidence: float = 0.0
    gaze_at: Optional[float] = None
    intent: Intent = Intent.PASSING
    confidence: float = 0.0
    ambiguous: bool = False

    zone: ZoneState = ZoneState.NONE
    zone_confirmed_at: float = 0.0
    peak_zone: ZoneState = ZoneState.NONE
    last_above_floor_at: float = 0.0
    last_reading_ts: float = 0.0               # source clock
    lateral_position: Optional[float] = None
    trend: Trend = Trend.STEADY
    trend_streak: int = 0
    intent_history: Deque[Intent] = field(default_factory=lambda: deque(maxlen=10))
    reached_engaged: bool = False
    lingered: bool = False
    stare_timer: DwellTimer = field(default_factory=lambda: DwellTimer(15000.0), repr=False)
    engaged_timer: DwellTimer = field(default_factory=lambda: DwellTimer(2000.0), repr=False)
    stare_elapsed_ms: float = 0.0
    session: Optional[LearningSession] = None
    filtered: Optional[str] = None             # why the person cannot qualify yet

    def effective_gaze(self, now: float, stale_ms: float) -> Tuple[GazeDirection, float]:
        if self.gaze_at is None or now - self.gaze_at > stale_ms:
            return GazeDirection.NONE, 0.0
        return self.gaze_direction, self.gaze_confidence

    def is_motionless(self, radial_limit: float, lateral_limit: float) -> bool:
        return abs(self.velocity.radial) < radial_limit and abs(self.velocity.lateral) < lateral_limit

    def snapshot(self, stare_dwell_ms: float) -> "PersonSnapshot":
        return PersonSnapshot(
            id=self.id,
            distance=self.distance,
            velocity=self.velocity,
            gaze_direction=self.gaze_direction,
            gaze_confidence=self.gaze_confidence,
            intent=self.intent,
            confidence=self.confidence,
            ambiguous=self.ambiguous,
            zone=self.zone,
            first_seen_at=self.first_seen_at,
            last_updated_at=self.last_updated_at,
            stare_progress=min(1.0, self.stare_elapsed_ms / stare_dwell_ms) if stare_dwell_ms else 0.0,
            filtered=self.filtered,
        )


# ============================================================================
# PUBLISHED SNAPSHOTS
# ============================================================================

@dataclass(frozen=True)
class PersonSnapshot:
    id: str
    distance: float
    velocity: Velocity
    gaze_direction: GazeDirection
    gaze_confidence: float
    intent: Intent
    confidence: float
    ambiguous: bool
    zone: ZoneState
    first_seen_at: float
    last_updated_at: float
    stare_progress: float = 0.0
    filtered: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "distance": round(self.distance, 2),
            "velocity": {"lateral": round(self.velocity.lateral, 3),
                         "radial": round(self.velocity.radial, 3)},
            "gaze_direction": self.gaze_direction.value,
            "gaze_confidence": round(self.gaze_confidence, 1),
            "intent": self.intent.value,
            "confidence": round(self.confidence, 1),
            "ambiguous": self.ambiguous,
            "zone": self.zone.label,
            "first_seen_at": self.first_seen_at,
            "last_updated_at": self.last_updated_at,
            "stare_progress": round(self.stare_progress, 3),
            "filtered": self.filtered,
        }


@dataclass(frozen=True)
class DetectionSnapshot:
    """Immutable per-tick output; the only thing presentation code reads"""
    timestamp: float
    zone: ZoneState
    people: Tuple[PersonSnapshot, ...]
    thresholds: ThresholdSet
    bucket: str
    learning: LearningStatus
    diagnostics: DiagnosticsSnapshot
    triggered: Optional[TriggerKind] = None

    def person(self, person_id: str) -> Optional[PersonSnapshot]:
        for p in self.people:
            if p.id == person_id:
                return p
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "zone": self.zone.label,
            "people": [p.to_dict() for p in self.people],
            "thresholds": self.thresholds.to_dict(),
            "bucket": self.bucket,
            "learning": self.learning.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
            "triggered": self.triggered.value if self.triggered else None,
        }


# ============================================================================
# DETECTION ENGINE
# ============================================================================

class DetectionEngine:
    """
    Owns the tracked people, the threshold book and the learner. All of it is
    mutated only from tick() and the handful of control methods below, which
    must run on the same thread / event loop.
    """

    def __init__(
        self,
        config: Optional[EngagementConfig] = None,
        reading_source: Optional[ReadingSource] = None,
        gaze_source: Optional[GazeSource] = None,
        trigger_sink: Optional[TriggerSink] = None,
        store: Optional[EngagementStore] = None,
        feedback_ui: Optional[FeedbackUI] = None,
        clock: Optional[Callable[[], float]] = None,
        interaction_source: Optional[InteractionSource] = None,
    ):
        self.config = config or EngagementConfig()
        self.reading_source = reading_source
        self.gaze_source = gaze_source
        self.interaction_source = interaction_source
        self.trigger_sink = trigger_sink
        self._clock = clock or (lambda: time.time() * 1000.0)

        self._initialize_state()
        self._initialize_learning(store or InMemoryStore())
        self._initialize_feedback(feedback_ui)

    def _initialize_state(self):
        det = self.config.detection
        self.diagnostics = Diagnostics(
            reading_stale_ms=self.config.tracking.stale_ms,
            gaze_stale_ms=det.gaze_stale_ms,
        )
        self.people: Dict[str, TrackedPerson] = {}
        self.zone = ZoneState.NONE
        self.context: Optional[EnvironmentContext] = None
        self.bucket = DEFAULT_BUCKET
        self.triggers_requested = 0

        self._min_tick_interval = 1000.0 / det.max_tick_hz * RATE_LIMIT_TOLERANCE
        self._gaze_interval = 1000.0 / det.gaze_poll_hz * RATE_LIMIT_TOLERANCE
        self._last_tick_at: Optional[float] = None
        self._last_gaze_poll_at: Optional[float] = None
        self._snapshot: Optional[DetectionSnapshot] = None

    def _initialize_learning(self, store: EngagementStore):
        self.book = ThresholdBook(self.config.default_thresholds())
        self.outbox = PersistenceOutbox(
            store,
            max_attempts=self.config.learning.max_write_attempts,
            diagnostics=self.diagnostics,
            max_pending=self.config.learning.max_pending_writes,
        )
        self.learner = AdaptiveThresholdLearner(
            self.config.learning, self.book, self.outbox, self.diagnostics,
        )
        self._loaded_buckets = set()
        self._use_stored_thresholds = True
        self._load_bucket(self.bucket)

    def _initialize_feedback(self, feedback_ui: Optional[FeedbackUI]):
        self.feedback: Optional[FeedbackCollector] = None
        if feedback_ui is not None:
            self.feedback = FeedbackCollector(
                feedback_ui,
                on_record=self._on_feedback,
                auto_close_ms=self.config.feedback.auto_close_ms,
                enabled=self.config.feedback.enabled,
                clock=self._clock,
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def thresholds(self) -> ThresholdSet:
        return self.book.get(self.bucket)

    @property
    def snapshot(self) -> Optional[DetectionSnapshot]:
        return self._snapshot

    def now(self) -> float:
        return self._clock()

    def tick(self, now: Optional[float] = None) -> DetectionSnapshot:
        """
        Run one detection cycle and return the published snapshot.
        Calls arriving faster than max_tick_hz return the previous snapshot.
        """
        now = self._clock() if now is None else now
        if (self._snapshot is not None and self._last_tick_at is not None
                and now - self._last_tick_at < self._min_tick_interval):
            return self._snapshot
        self._last_tick_at = now

        triggered = None
        try:
            triggered = self._process(now)
        except Exception:
            logger.exception("Detection tick failed; holding previous state")
            self.diagnostics.warn("detection tick failed; state held", now)
        self._publish(now, triggered)
        return self._snapshot

    def update_context(self, context: EnvironmentContext, now: Optional[float] = None) -> ResetDecision:
        """Switch environmental bucket and run the calibration-invalidation check"""
        now = self._clock() if now is None else now
        self.context = context
        self.bucket = bucket_key(context.time_of_day, context.lighting_condition)
        decision = self.learner.check_context(context, now)
        if decision.should_reset:
            # Stored sets describe the previous environment
            self._use_stored_thresholds = False
            self.diagnostics.warn(
                "calibration reset: " + ", ".join(decision.reasons), now,
            )
        else:
            self._load_bucket(self.bucket)
        return decision

    def refresh_context(self, context: EnvironmentContext) -> bool:
        """
        Follow clock and lighting drift (hour, weekday, camera brightness).
        Re-buckets without the calibration-reset check, which is meant for
        relocation and would otherwise fire at every midnight.
        Returns True when the active bucket changed.
        """
        keep = self.context or EnvironmentContext()
        context = EnvironmentContext(
            latitude=keep.latitude,
            longitude=keep.longitude,
            lighting_level=context.lighting_level if context.lighting_level is not None else keep.lighting_level,
            hour_of_day=context.hour_of_day,
            day_of_week=context.day_of_week,
        )
        self.context = context
        self.learner.context = context
        bucket = bucket_key(context.time_of_day, context.lighting_condition)
        if bucket == self.bucket:
            return False
        logger.info("Bucket %s -> %s", self.bucket, bucket)
        self.bucket = bucket
        self._load_bucket(bucket)
        return True

    def start_learning(self, now: Optional[float] = None) -> LearningStatus:
        now = self._clock() if now is None else now
        self.learner.start_learning(now)
        return self.learner.status(now)

    def cancel_learning(self, now: Optional[float] = None) -> LearningStatus:
        now = self._clock() if now is None else now
        self.learner.cancel_learning()
        return self.learner.status(now)

    def record_interaction(self, person_id: Optional[str] = None, now: Optional[float] = None) -> bool:
        """
        Touch on the screen: the person converts and their session closes
        as engaged. Without an id the closest tracked person is used.
        """
        now = self._clock() if now is None else now
        person = self.people.get(person_id) if person_id else self._closest_person()
        if person is None:
            logger.debug("Interaction with nobody tracked (person_id=%s)", person_id)
            return False
        logger.info("Interaction from %s at distance %.1f", person.id, person.distance)
        if person.session is not None:
            self._close_session(person, SessionOutcome.ENGAGED, now, converted=True)
        return True

    def shutdown(self, now: Optional[float] = None):
        """Close every open session as it stands and flush pending writes"""
        now = self._clock() if now is None else now
        for person in list(self.people.values()):
            self._evict(person, now, reason="shutdown")
        self.zone = ZoneState.NONE
        self.outbox.flush()
        if self.feedback is not None:
            self.feedback.cancel()
        self._publish(now, None)
        logger.info("Detection engine shut down (%d write(s) still pending)", len(self.outbox))

    # ------------------------------------------------------------------
    # Tick pipeline
    # ------------------------------------------------------------------

    def _process(self, now: float) -> Optional[TriggerKind]:
        self.learner.poll(now)
        thresholds = self.thresholds
        updated = set()

        for reading in self._pull_readings(now):
            person = self._apply_reading(reading, now, thresholds)
            if person is not None:
                updated.add(person.id)

        gaze = self._pull_gaze(now)
        if gaze is not None:
            self._apply_gaze(gaze, now)

        for person in self.people.values():
            self._classify(person, now, person.id in updated)
            self._update_zone(person, now, thresholds)
            if person.session is not None and person.id in updated:
                direction, confidence = person.effective_gaze(now, self.config.detection.gaze_stale_ms)
                person.session.add_frame(SessionFrame(now, person.distance, direction.value, confidence))

        for person_id in self._pull_interactions():
            self.record_interaction(person_id, now)

        self._evict_stale(now, thresholds)

        previous = self.zone
        self.zone = max((p.zone for p in self.people.values()), default=ZoneState.NONE)
        if self.zone != previous:
            logger.info("Zone %s -> %s (%d tracked)", previous.label, self.zone.label, len(self.people))
        if self.zone > previous:
            return self._request_trigger(self.zone, now, thresholds)
        return None

    def _signal_lost(self, error: SignalUnavailable):
        if error.source == "gaze":
            self.diagnostics.gaze_dropouts += 1
        else:
            self.diagnostics.reading_dropouts += 1
        logger.debug("Signal unavailable (%s); holding state", error)

    def _pull_readings(self, now: float) -> List[SensorReading]:
        if self.reading_source is None:
            return []
        try:
            readings = _coerce_readings(self.reading_source.get_reading())
            if not readings:
                raise SignalUnavailable("proximity")
        except SignalUnavailable as err:
            self._signal_lost(err)
            return []
        except Exception as exc:
            self._signal_lost(SignalUnavailable("proximity", str(exc)))
            return []
        self.diagnostics.reading_received(now)
        return readings

    def _pull_gaze(self, now: float) -> Optional[GazeReading]:
        if self.gaze_source is None:
            return None
        if self._last_gaze_poll_at is not None and now - self._last_gaze_poll_at < self._gaze_interval:
            return None
        self._last_gaze_poll_at = now
        try:
            gaze = _coerce_gaze(self.gaze_source.get_gaze())
            if gaze is None:
                raise SignalUnavailable("gaze")
        except SignalUnavailable as err:
            self._signal_lost(err)
            return None
        except Exception as exc:
            self._signal_lost(SignalUnavailable("gaze", str(exc)))
            return None
        self.diagnostics.gaze_received(now)
        return gaze

    def _pull_interactions(self) -> List[Optional[str]]:
        if self.interaction_source is None:
            return []
        try:
            events = list(self.interaction_source.get_interactions() or ())
        except Exception as exc:
            logger.debug("Interaction source unavailable: %s", exc)
            return []
        return [e if isinstance(e, str) else None for e in events]

    def _apply_reading(self, reading: SensorReading, now: float,
                       thresholds: ThresholdSet) -> Optional[TrackedPerson]:
        person = self.people.get(reading.person_id)

        if reading.left:
            if person is not None:
                self._evict(person, now, reason="left")
            return None

        ts = reading.timestamp if reading.timestamp is not None else now
        proximity = max(0.0, min(100.0, reading.proximity))

        if person is None:
            if proximity < thresholds.ambient_floor:
                return None
            person = self._track(reading.person_id, proximity, ts, now)
        elif ts <= person.last_reading_ts:
            return None  # repeated latest reading
        else:
            dt_s = (ts - person.last_reading_ts) / 1000.0
            radial = (proximity - person.distance) / dt_s
            lateral = person.velocity.lateral
            if reading.lateral_position is not None and person.lateral_position is not None:
                lateral = (reading.lateral_position - person.lateral_position) / dt_s
            person.velocity = Velocity(
                lateral=VELOCITY_SMOOTHING * lateral + (1 - VELOCITY_SMOOTHING) * person.velocity.lateral,
                radial=VELOCITY_SMOOTHING * radial + (1 - VELOCITY_SMOOTHING) * person.velocity.radial,
            )
            person.distance = proximity
            person.last_reading_ts = ts
            person.last_updated_at = now

        if reading.lateral_position is not None:
            person.lateral_position = reading.lateral_position
        if proximity >= thresholds.ambient_floor - self.config.detection.ambient_exit_margin:
            person.last_above_floor_at = now
        return person

    def _track(self, person_id: str, proximity: float, ts: float, now: float) -> TrackedPerson:
        tracking = self.config.tracking
        person = TrackedPerson(
            id=person_id,
            distance=proximity,
            first_seen_at=now,
            last_updated_at=now,
            zone_confirmed_at=now,
            last_above_floor_at=now,
            last_reading_ts=ts,
            intent_history=deque(maxlen=tracking.intent_history_size),
            stare_timer=DwellTimer(self.thresholds.stare_dwell_ms),
            engaged_timer=DwellTimer(self.config.intent.engaged_dwell_ms),
        )
        person.session = LearningSession.open(
            person_id, now, bucket=self.bucket, context=self.context,
            max_frames=tracking.max_session_frames,
        )
        self.people[person_id] = person
        logger.info("Tracking %s (proximity %.1f)", person_id, proximity)
        return person

    def _apply_gaze(self, gaze: GazeReading, now: float):
        person = self.people.get(gaze.person_id) if gaze.person_id else self._closest_person()
        if person is None:
            return
        if gaze.face_detected:
            person.gaze_direction = GazeDirection.parse(gaze.direction)
            person.gaze_confidence = max(0.0, min(100.0, float(gaze.confidence)))
        else:
            person.gaze_direction = GazeDirection.NONE
            person.gaze_confidence = 0.0
        person.gaze_at = now

    def _classify(self, person: TrackedPerson, now: float, fresh: bool):
        cfg = self.config.intent
        direction, confidence = person.effective_gaze(now, self.config.detection.gaze_stale_ms)
        adjustment = score(direction, confidence)

        if fresh:
            trend = trend_of(person.velocity, cfg)
            person.trend_streak = person.trend_streak + 1 if trend == person.trend else 1
            person.trend = trend

        near_and_looking = adjustment > 0 and person.distance >= cfg.engaged_distance
        _, dwell = person.engaged_timer.update(near_and_looking, now)

        result = classify(person.distance, person.velocity, adjustment,
                          streak=person.trend_streak, dwell_ms=dwell, config=cfg)
        if fresh:
            person.intent_history.append(result.intent)
        smoothed = smooth_intent(person.intent_history, self.config.tracking.intent_agreement) or result.intent

        person.intent = smoothed
        person.confidence = result.confidence
        person.ambiguous = result.ambiguous and smoothed == result.intent
        if smoothed is Intent.LINGERING:
            person.lingered = True
        elif smoothed is Intent.ENGAGED:
            person.reached_engaged = True

    def _update_zone(self, person: TrackedPerson, now: float, thresholds: ThresholdSet):
        det = self.config.detection
        direction, confidence = person.effective_gaze(now, det.gaze_stale_ms)
        looking = direction is GazeDirection.LOOKING_AT_SCREEN
        d = person.distance

        ambient_ok = d >= (thresholds.ambient_floor - det.ambient_exit_margin
                           if person.zone >= ZoneState.AMBIENT else thresholds.ambient_floor)
        walkup_ok = looking and d >= (thresholds.walkup_threshold - det.walkup_exit_margin
                                      if person.zone >= ZoneState.WALKUP else thresholds.walkup_threshold)
        person.filtered = self._filter_reason(person, now)
        if person.filtered is not None:
            ambient_ok = walkup_ok = False
        staring = walkup_ok and (
            person.zone == ZoneState.STARE
            or (person.is_motionless(self.config.intent.approach_velocity,
                                     self.config.intent.lateral_pass_speed)
                and confidence >= det.stare_min_gaze_confidence)
        )
        person.stare_timer.threshold_ms = thresholds.stare_dwell_ms
        reached, person.stare_elapsed_ms = person.stare_timer.update(staring, now)

        if reached:
            qualified = ZoneState.STARE
        elif walkup_ok:
            qualified = ZoneState.WALKUP
        elif ambient_ok:
            qualified = ZoneState.AMBIENT
        else:
            qualified = ZoneState.NONE

        if qualified >= person.zone:
            if qualified > person.zone:
                logger.debug("%s: %s -> %s", person.id, person.zone.label, qualified.label)
            person.zone = qualified
            person.zone_confirmed_at = now
        elif now - person.zone_confirmed_at > self.config.tracking.stale_ms:
            # Held for the stale window without requalifying
            logger.debug("%s: %s -> %s", person.id, person.zone.label, qualified.label)
            person.zone = qualified
            person.zone_confirmed_at = now
        person.peak_zone = max(person.peak_zone, person.zone)

    def _filter_reason(self, person: TrackedPerson, now: float) -> Optional[str]:
        """Brief appearances, frame edges, the passing lane and fast lateral movers never qualify"""
        cfg = self.config.tracking
        if now - person.first_seen_at < cfg.min_track_ms:
            return "brief"
        x = person.lateral_position
        if x is not None:
            if x < cfg.boundary_margin or x > 1.0 - cfg.boundary_margin:
                return "boundary"
            if x < cfg.passing_lane_width:
                return "passing_lane"
        if abs(person.velocity.lateral) > cfg.max_lateral_speed:
            return "fast"
        return None

    def _evict_stale(self, now: float, thresholds: ThresholdSet):
        stale_ms = self.config.tracking.stale_ms
        for person in list(self.people.values()):
            if now - person.last_updated_at > stale_ms:
                self._evict(person, now, reason="no update")
            elif now - person.last_above_floor_at > stale_ms:
                self._evict(person, now, reason="below floor")

    def _evict(self, person: TrackedPerson, now: float, reason: str):
        self.people.pop(person.id, None)
        if person.session is not None:
            self._close_session(person, self._session_outcome(person), now)
        logger.info("Stopped tracking %s (%s, peak zone %s)", person.id, reason, person.peak_zone.label)

    @staticmethod
    def _session_outcome(person: TrackedPerson) -> SessionOutcome:
        if person.peak_zone >= ZoneState.STARE or person.reached_engaged:
            return SessionOutcome.ENGAGED
        if person.peak_zone >= ZoneState.WALKUP or person.lingered:
            return SessionOutcome.ABANDONED
        return SessionOutcome.PASSING

    def _close_session(self, person: TrackedPerson, outcome: SessionOutcome, now: float,
                       converted: bool = False):
        session, person.session = person.session, None
        session.close(outcome, now, converted=converted)
        self.learner.record_session(session)
        self.outbox.save_session(session)
        logger.debug("Session %s closed as %s (%d frames)", session.id, outcome.value, len(session.frames))

    def _closest_person(self) -> Optional[TrackedPerson]:
        return max(self.people.values(), key=lambda p: p.distance, default=None)

    # ------------------------------------------------------------------
    # Triggers / feedback
    # ------------------------------------------------------------------

    def _request_trigger(self, zone: ZoneState, now: float, thresholds: ThresholdSet) -> Optional[TriggerKind]:
        kind = ZONE_TRIGGERS[zone]
        if self.learner.is_learning and self.config.learning.suppress_triggers_while_learning:
            logger.debug("Trigger %s suppressed during learning mode", kind.value)
            return None

        person = max(
            (p for p in self.people.values() if p.zone == zone),
            key=lambda p: p.distance,
        )
        threshold = {
            ZoneState.AMBIENT: thresholds.ambient_floor,
            ZoneState.WALKUP: thresholds.walkup_threshold,
            ZoneState.STARE: thresholds.stare_dwell_ms,
        }[zone]
        context = TriggerContext(
            kind=kind,
            person_id=person.id,
            proximity=person.distance,
            threshold=threshold,
            baseline=thresholds.baseline,
            intent=person.intent.value,
            confidence=person.confidence,
            gaze_direction=person.gaze_direction.value,
            gaze_confidence=person.gaze_confidence,
            bucket=self.bucket,
            timestamp=now,
            learning=self.learner.is_learning,
        )
        if person.session is not None:
            person.session.triggers.append(kind.value)

        self.triggers_requested += 1
        logger.info("Trigger %s for %s (proximity %.1f, intent %s)",
                    kind.value, person.id, person.distance, person.intent.value)
        if self.trigger_sink is not None:
            try:
                self.trigger_sink.request_trigger(kind, context)
            except Exception:
                logger.exception("Trigger sink failed for %s", kind.value)

        if self.feedback is not None and not self.feedback.request(context):
            self.diagnostics.suppressed_feedback = self.feedback.suppressed
        return kind

    def _on_feedback(self, record: FeedbackRecord):
        self.learner.record_feedback(record, self.bucket)
        self.outbox.save_feedback(record)

    # ------------------------------------------------------------------
    # Thresholds / snapshots
    # ------------------------------------------------------------------

    def _load_bucket(self, bucket: str):
        if not self._use_stored_thresholds or bucket in self._loaded_buckets:
            return
        self._loaded_buckets.add(bucket)
        stored = self.outbox.load_thresholds(bucket)
        if stored is not None and not self.book.has(bucket):
            if self.book.apply(bucket, stored):
                logger.info("Loaded stored thresholds for bucket %s", bucket)
            else:
                self.diagnostics.rejected_threshold_sets += 1

    def _publish(self, now: float, triggered: Optional[TriggerKind]):
        stare_dwell = self.thresholds.stare_dwell_ms
        self._snapshot = DetectionSnapshot(
            timestamp=now,
            zone=self.zone,
            people=tuple(p.snapshot(stare_dwell) for p in self.people.values()),
            thresholds=self.thresholds,
            bucket=self.bucket,
            learning=self.learner.status(now),
            diagnostics=self.diagnostics.snapshot(now),
            triggered=triggered,
        )
