"""
EngageOS Engine → Database Bridge
=================================
SQLAlchemy implementation of the engine's ``EngagementStore``.

Every write opens its own short-lived session. Failures are rolled back and
raised as ``PersistenceWriteFailure`` so the engine's outbox can keep the
record and retry it at the next learning boundary.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session as SASession

from app.core.database import SessionLocal
from app.models.learning import FeedbackRow, LearningSessionRow, ThresholdSetRow
from proximity_engine.errors import PersistenceWriteFailure
from proximity_engine.thresholds import ThresholdSet

logger = logging.getLogger("engageos.persistence.sql")


class SqlEngagementStore:
    """Tenant-scoped store backed by the application database"""

    def __init__(self, session_factory: Callable[[], SASession] = SessionLocal,
                 tenant_id: str = "default"):
        self.session_factory = session_factory
        self.tenant_id = tenant_id

    # ─────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────

    def save_session(self, session) -> None:
        data = session.to_dict(include_frames=True)
        db: SASession = self.session_factory()
        try:
            row = db.get(LearningSessionRow, data["id"])
            if row is None:
                row = LearningSessionRow(id=data["id"], tenant_id=self.tenant_id)
                db.add(row)
            row.person_id = data["person_id"]
            row.bucket = data["bucket"]
            row.outcome = data["outcome"]
            row.converted = data["converted"]
            row.started_at = data["started_at"]
            row.ended_at = data["ended_at"]
            row.hour_of_day = data["hour_of_day"]
            row.day_of_week = data["day_of_week"]
            row.lighting_condition = data["lighting_condition"]
            row.peak_proximity = data["peak_proximity"]
            row.frame_count = len(data["frames"])
            row.frames = data["frames"]
            row.triggers = data["triggers"]
            db.commit()
            logger.debug("Session %s stored (%s)", row.id, row.outcome)
        except Exception as exc:
            db.rollback()
            raise PersistenceWriteFailure("session", str(exc)) from exc
        finally:
            db.close()

    def save_feedback(self, record) -> None:
        db: SASession = self.session_factory()
        try:
            db.add(FeedbackRow(tenant_id=self.tenant_id, **record.to_dict()))
            db.commit()
        except Exception as exc:
            db.rollback()
            raise PersistenceWriteFailure("feedback", str(exc)) from exc
        finally:
            db.close()

    def save_thresholds(self, bucket_key: str, thresholds: ThresholdSet) -> None:
        db: SASession = self.session_factory()
        try:
            row = (
                db.query(ThresholdSetRow)
                .filter(ThresholdSetRow.tenant_id == self.tenant_id,
                        ThresholdSetRow.bucket_key == bucket_key)
                .first()
            )
            if row is None:
                row = ThresholdSetRow(tenant_id=self.tenant_id, bucket_key=bucket_key)
                db.add(row)
            row.ambient_floor = thresholds.ambient_floor
            row.walkup_threshold = thresholds.walkup_threshold
            row.stare_dwell_ms = thresholds.stare_dwell_ms
            row.baseline = thresholds.baseline
            db.commit()
            logger.info("Thresholds for bucket %s stored", bucket_key)
        except Exception as exc:
            db.rollback()
            raise PersistenceWriteFailure("thresholds", str(exc)) from exc
        finally:
            db.close()

    # ─────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────

    def load_thresholds(self, bucket_key: str) -> Optional[Dict[str, float]]:
        db: SASession = self.session_factory()
        try:
            row = (
                db.query(ThresholdSetRow)
                .filter(ThresholdSetRow.tenant_id == self.tenant_id,
                        ThresholdSetRow.bucket_key == bucket_key)
                .first()
            )
            return row.to_dict() if row else None
        finally:
            db.close()

    def recent_sessions(self, limit: int = 100) -> List[LearningSessionRow]:
        db: SASession = self.session_factory()
        try:
            return (
                db.query(LearningSessionRow)
                .filter(LearningSessionRow.tenant_id == self.tenant_id)
                .order_by(LearningSessionRow.started_at.desc())
                .limit(limit)
                .all()
            )
        finally:
            db.close()

    def session_summaries(self, limit: int = 5000) -> List[Dict[str, Any]]:
        """Slim rows for pattern analysis (no frames)"""
        db: SASession = self.session_factory()
        try:
            rows = (
                db.query(
                    LearningSessionRow.outcome,
                    LearningSessionRow.hour_of_day,
                    LearningSessionRow.day_of_week,
                    LearningSessionRow.lighting_condition,
                )
                .filter(LearningSessionRow.tenant_id == self.tenant_id)
                .order_by(LearningSessionRow.started_at.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "outcome": outcome,
                    "hour_of_day": hour,
                    "day_of_week": day,
                    "lighting_condition": lighting,
                }
                for outcome, hour, day, lighting in rows
            ]
        finally:
            db.close()

    def feedback_summary(self) -> Dict[str, Dict[str, int]]:
        db: SASession = self.session_factory()
        try:
            summary: Dict[str, Dict[str, int]] = {}
            rows = (
                db.query(FeedbackRow.trigger_type, FeedbackRow.was_correct)
                .filter(FeedbackRow.tenant_id == self.tenant_id)
                .all()
            )
            for trigger_type, was_correct in rows:
                bucket = summary.setdefault(trigger_type, {"correct": 0, "incorrect": 0})
                bucket["correct" if was_correct else "incorrect"] += 1
            return summary
        finally:
            db.close()
