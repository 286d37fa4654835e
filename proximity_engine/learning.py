"""
Adaptive Threshold Learner

Learning mode is a fixed window (5 minutes by default) during which closed
sessions and feedback are only accumulated. When the window ends, every
environmental bucket with enough data gets a freshly computed ThresholdSet;
afterwards the learner recalibrates periodically in live mode.
"""

import logging
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence

import numpy as np

from .config import LearningConfig
from .diagnostics import Diagnostics
from .environment import EnvironmentContext, ResetDecision, analyze_learning_patterns, should_reset_learning
from .persistence import PersistenceOutbox
from .thresholds import DEFAULT_BUCKET, ThresholdBook, ThresholdSet

logger = logging.getLogger("engageos.learning")


class SessionOutcome(str, Enum):
    PASSING = "passing"
    ABANDONED = "abandoned"
    ENGAGED = "engaged"


class LearnerMode(str, Enum):
    LIVE = "live"
    LEARNING = "learning"


# ============================================================================
# SESSIONS
# ============================================================================

@dataclass(frozen=True)
class SessionFrame:
    timestamp: float
    proximity: float
    gaze: str = "none"
    gaze_confidence: float = 0.0


@dataclass
class LearningSession:
    """One behavioural episode of one tracked person"""
    person_id: str
    started_at: float
    bucket: str = DEFAULT_BUCKET
    hour_of_day: Optional[int] = None
    day_of_week: Optional[int] = None
    lighting_condition: Optional[str] = None
    frames: Deque[SessionFrame] = field(default_factory=deque)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    outcome: Optional[SessionOutcome] = None
    ended_at: Optional[float] = None
    converted: bool = False
    triggers: List[str] = field(default_factory=list)

    @classmethod
    def open(cls, person_id: str, now: float, bucket: str = DEFAULT_BUCKET,
             context: Optional[EnvironmentContext] = None, max_frames: int = 3000) -> "LearningSession":
        return cls(
            person_id=person_id,
            started_at=now,
            bucket=bucket,
            hour_of_day=context.hour_of_day if context else None,
            day_of_week=context.day_of_week if context else None,
            lighting_condition=context.lighting_condition if context else None,
            frames=deque(maxlen=max_frames),
        )

    def add_frame(self, frame: SessionFrame):
        self.frames.append(frame)

    @property
    def closed(self) -> bool:
        return self.outcome is not None

    @property
    def peak_proximity(self) -> float:
        return max((f.proximity for f in self.frames), default=0.0)

    @property
    def duration_ms(self) -> float:
        end = self.ended_at if self.ended_at is not None else (
            self.frames[-1].timestamp if self.frames else self.started_at)
        return max(0.0, end - self.started_at)

    def close(self, outcome: SessionOutcome, now: float, converted: bool = False):
        self.outcome = outcome
        self.ended_at = now
        self.converted = converted

    def to_dict(self, include_frames: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "person_id": self.person_id,
            "bucket": self.bucket,
            "outcome": self.outcome.value if self.outcome else None,
            "converted": self.converted,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "hour_of_day": self.hour_of_day,
            "day_of_week": self.day_of_week,
            "lighting_condition": self.lighting_condition,
            "peak_proximity": round(self.peak_proximity, 2),
            "triggers": list(self.triggers),
        }
        if include_frames:
            data["frames"] = [
                {"timestamp": f.timestamp, "proximity": f.proximity,
                 "gaze": f.gaze, "gaze_confidence": f.gaze_confidence}
                for f in self.frames
            ]
        return data


# ============================================================================
# STATUS
# ============================================================================

def format_countdown(remaining_ms: float) -> str:
    """Operator countdown, e.g. 272000 -> '4:32'"""
    total = max(0, int(remaining_ms // 1000))
    minutes, seconds = divmod(total, 60)
    return f"{minutes}:{seconds:02d}"


@dataclass(frozen=True)
class LearningStatus:
    mode: LearnerMode
    started_at: Optional[float]
    remaining_ms: float
    progress: float
    sessions: int
    feedback: int
    recalibrations: int
    last_recalibration_at: Optional[float]

    @property
    def countdown(self) -> str:
        return format_countdown(self.remaining_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "started_at": self.started_at,
            "remaining_ms": round(self.remaining_ms),
            "countdown": self.countdown,
            "progress": round(self.progress, 3),
            "sessions": self.sessions,
            "feedback": self.feedback,
            "recalibrations": self.recalibrations,
            "last_recalibration_at": self.last_recalibration_at,
        }


# ============================================================================
# LEARNER
# ============================================================================

class AdaptiveThresholdLearner:
    def __init__(
        self,
        config: LearningConfig,
        book: ThresholdBook,
        outbox: Optional[PersistenceOutbox] = None,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.config = config
        self.book = book
        self.outbox = outbox
        self.diagnostics = diagnostics

        self.mode = LearnerMode.LIVE
        self.learning_started_at: Optional[float] = None
        self.last_recalibration_at: Optional[float] = None
        self.recalibrations = 0
        self.context: Optional[EnvironmentContext] = None
        self.last_reset: Optional[ResetDecision] = None

        self._sessions: Dict[str, Deque[LearningSession]] = defaultdict(self._bounded)
        self._feedback: Dict[str, Deque[Any]] = defaultdict(self._bounded)
        self.history: Deque[LearningSession] = self._bounded()

    def _bounded(self) -> deque:
        return deque(maxlen=self.config.max_accumulated_sessions)

    @property
    def is_learning(self) -> bool:
        return self.mode is LearnerMode.LEARNING

    # ------------------------------------------------------------------
    # Mode control
    # ------------------------------------------------------------------

    def start_learning(self, now: float):
        """Enter (or restart) learning mode with empty accumulations"""
        self._sessions.clear()
        self._feedback.clear()
        self.mode = LearnerMode.LEARNING
        self.learning_started_at = now
        logger.info("Learning mode started (%s)", format_countdown(self.config.learning_duration_ms))
        self._flush_outbox()

    def cancel_learning(self):
        """Abort without applying anything"""
        if not self.is_learning:
            return
        self._sessions.clear()
        self._feedback.clear()
        self.mode = LearnerMode.LIVE
        self.learning_started_at = None
        logger.info("Learning mode cancelled; accumulated data discarded")

    def _finish_learning(self, now: float) -> Dict[str, ThresholdSet]:
        applied = self._recalibrate_all(now)
        self.mode = LearnerMode.LIVE
        self.learning_started_at = None
        logger.info("Learning mode complete; %d bucket(s) recalibrated", len(applied))
        self._flush_outbox()
        return applied

    def _flush_outbox(self):
        if self.outbox is not None:
            self.outbox.flush()

    def status(self, now: float) -> LearningStatus:
        sessions = sum(len(v) for v in self._sessions.values())
        feedback = sum(len(v) for v in self._feedback.values())
        if self.is_learning:
            elapsed = now - self.learning_started_at
            duration = self.config.learning_duration_ms
            remaining = max(0.0, duration - elapsed)
            progress = min(1.0, max(0.0, elapsed / duration))
        else:
            remaining, progress = 0.0, 0.0
        return LearningStatus(
            mode=self.mode,
            started_at=self.learning_started_at,
            remaining_ms=remaining,
            progress=progress,
            sessions=sessions,
            feedback=feedback,
            recalibrations=self.recalibrations,
            last_recalibration_at=self.last_recalibration_at,
        )

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def record_session(self, session: LearningSession):
        if not session.closed:
            raise ValueError("only closed sessions can be recorded")
        self._sessions[session.bucket].append(session)
        self.history.append(session)

    def record_feedback(self, record, bucket: str = DEFAULT_BUCKET):
        self._feedback[bucket].append(record)

    def feedback_for(self, bucket: str) -> List[Any]:
        return list(self._feedback.get(bucket, ()))

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def poll(self, now: float) -> Dict[str, ThresholdSet]:
        """Called every tick; returns the sets applied during this call"""
        if self.is_learning:
            if now - self.learning_started_at >= self.config.learning_duration_ms:
                return self._finish_learning(now)
            return {}
        if self.last_recalibration_at is None:
            self.last_recalibration_at = now
            return {}
        if now - self.last_recalibration_at >= self.config.recalibration_interval_ms:
            applied = self._recalibrate_all(now)
            # Periodic recalibration is also the live-mode retry point
            self._flush_outbox()
            return applied
        return {}

    def _recalibrate_all(self, now: float) -> Dict[str, ThresholdSet]:
        applied = {}
        for bucket, sessions in list(self._sessions.items()):
            try:
                candidate = self._recalibrate_bucket(bucket, sessions)
            except Exception as exc:
                # A failing bucket keeps its previous set
                logger.exception("Recalibration of bucket %s failed; keeping its thresholds", bucket)
                if self.diagnostics is not None:
                    self.diagnostics.warn(f"recalibration failed for {bucket}: {exc}", now)
                continue
            if candidate is not None:
                applied[bucket] = candidate
        self.last_recalibration_at = now
        self.recalibrations += 1
        return applied

    def _recalibrate_bucket(self, bucket: str, sessions) -> Optional[ThresholdSet]:
        """Applies and persists the bucket's candidate; None when nothing was applied"""
        previous = self.book.get(bucket)
        candidate = self.recalibrate(sessions, self._feedback.get(bucket, ()), previous)
        if candidate is None:
            return None
        if not self.book.apply(bucket, candidate):
            if self.diagnostics is not None:
                self.diagnostics.rejected_threshold_sets += 1
            return None
        if self.outbox is not None:
            self.outbox.save_thresholds(bucket, candidate)
        return candidate

    # ------------------------------------------------------------------
    # Calibration math
    # ------------------------------------------------------------------

    def target_false_positive_rate(self, feedback: Iterable[Any]) -> float:
        """
        Base rate scaled by the share of walkup triggers visitors confirmed;
        more 'incorrect' answers make the walkup threshold stricter.
        """
        cfg = self.config
        answers = [
            r.was_correct for r in feedback
            if getattr(r, "trigger_type", None) == "walkup" and isinstance(getattr(r, "was_correct", None), bool)
        ]
        if not answers:
            return cfg.base_false_positive_rate
        correct_ratio = sum(answers) / len(answers)
        rate = cfg.base_false_positive_rate * 2.0 * correct_ratio
        return float(min(cfg.max_false_positive_rate, max(cfg.min_false_positive_rate, rate)))

    def recalibrate(
        self,
        sessions: Sequence[LearningSession],
        feedback: Iterable[Any],
        previous: ThresholdSet,
    ) -> Optional[ThresholdSet]:
        """
        Compute a candidate ThresholdSet from one bucket's sessions.
        Returns None when there is not enough data; the candidate is not
        validated here (ThresholdBook.apply does that).
        """
        cfg = self.config
        closed = [s for s in sessions if s.closed and s.frames]
        if len(closed) < cfg.min_bucket_sessions:
            return None

        samples = np.fromiter((f.proximity for s in closed for f in s.frames), dtype=float)
        peaks = np.array([s.peak_proximity for s in closed], dtype=float)

        baseline = float(np.quantile(samples, cfg.baseline_quantile))
        ambient = max(baseline + cfg.ambient_margin, float(np.quantile(peaks, cfg.ambient_quantile)))
        ambient = min(cfg.ambient_floor_max, max(cfg.ambient_floor_min, ambient))

        passing = np.array([s.peak_proximity for s in closed if s.outcome is SessionOutcome.PASSING])
        committed = np.array([s.peak_proximity for s in closed if s.outcome is not SessionOutcome.PASSING])
        fpr = self.target_false_positive_rate(feedback)

        if passing.size:
            # Only `fpr` of passers-by should still reach the walkup zone
            walkup = float(np.quantile(passing, 1.0 - fpr))
        elif committed.size:
            walkup = float(np.quantile(committed, cfg.engaged_quantile))
        else:
            walkup = previous.walkup_threshold

        candidate = ThresholdSet(
            ambient_floor=round(ambient, 2),
            walkup_threshold=round(walkup, 2),
            stare_dwell_ms=previous.stare_dwell_ms,
            baseline=round(baseline, 2),
        )
        logger.debug(
            "Recalibration candidate from %d sessions (%d passing, fpr=%.3f): %s",
            len(closed), passing.size, fpr, candidate.to_dict(),
        )
        return candidate

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def check_context(self, current: EnvironmentContext, now: float) -> ResetDecision:
        """
        Compare with the previous context; on a reset, learned thresholds are
        cleared and learning restarts from empty.
        """
        previous, self.context = self.context, current
        if previous is None:
            return ResetDecision(should_reset=False)

        cfg = self.config
        decision = should_reset_learning(
            previous, current,
            location_threshold_m=cfg.location_threshold_m,
            lighting_threshold=cfg.lighting_change_threshold,
            hour_threshold=cfg.timezone_hour_threshold,
        )
        if decision.should_reset:
            self.last_reset = decision
            logger.warning("Environment changed (%s); restarting learning", ", ".join(decision.reasons))
            self.book.reset()
            self.history.clear()
            self.start_learning(now)
        return decision

    def insights(self, min_samples: Optional[int] = None):
        return analyze_learning_patterns(
            self.history, min_samples=min_samples or self.config.min_pattern_samples,
        )
