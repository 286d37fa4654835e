"""
Learning Models
Behavioural sessions, feedback answers and learned threshold sets.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, JSON, UniqueConstraint
from datetime import datetime
from app.core.database import Base


class LearningSessionRow(Base):
    __tablename__ = "learning_sessions"

    id = Column(String(32), primary_key=True, index=True)  # engine session id (uuid hex)
    tenant_id = Column(String(64), nullable=False, index=True)
    person_id = Column(String(64), nullable=False)
    bucket = Column(String(64), nullable=False, index=True)  # "period:lighting" or "default"
    outcome = Column(String(20), nullable=False)  # passing, abandoned, engaged
    converted = Column(Boolean, default=False)
    started_at = Column(Float, nullable=False)  # epoch ms
    ended_at = Column(Float, nullable=True)
    hour_of_day = Column(Integer, nullable=True)
    day_of_week = Column(Integer, nullable=True)  # 0 = Sunday
    lighting_condition = Column(String(20), nullable=True)
    peak_proximity = Column(Float, default=0.0)
    frame_count = Column(Integer, default=0)
    frames = Column(JSON, nullable=True)
    triggers = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class FeedbackRow(Base):
    __tablename__ = "feedback_records"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    trigger_type = Column(String(20), nullable=False)  # ambient, walkup
    was_correct = Column(Boolean, nullable=False)
    proximity_level = Column(Float, default=0.0)
    threshold = Column(Float, default=0.0)
    baseline = Column(Float, default=0.0)
    intent = Column(String(20), nullable=True)
    confidence = Column(Float, default=0.0)
    timestamp = Column(Float, nullable=False)  # epoch ms
    created_at = Column(DateTime, default=datetime.utcnow)


class ThresholdSetRow(Base):
    __tablename__ = "threshold_sets"
    __table_args__ = (UniqueConstraint("tenant_id", "bucket_key", name="uq_threshold_bucket"),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    bucket_key = Column(String(64), nullable=False)
    ambient_floor = Column(Float, nullable=False)
    walkup_threshold = Column(Float, nullable=False)
    stare_dwell_ms = Column(Float, nullable=False)
    baseline = Column(Float, default=0.0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "ambient_floor": self.ambient_floor,
            "walkup_threshold": self.walkup_threshold,
            "stare_dwell_ms": self.stare_dwell_ms,
            "baseline": self.baseline,
        }
