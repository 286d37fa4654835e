"""
Pydantic Schemas for API request/response validation
"""

from pydantic import BaseModel, Field, StrictBool
from typing import Optional, List, Dict
from datetime import datetime


# ── Sensor Input Schemas ─────────────────────────────────
class ReadingIn(BaseModel):
    proximity: float = Field(..., ge=0, le=100)
    timestamp: Optional[float] = None  # epoch ms; server time when omitted
    person_id: str = "primary"
    lateral_position: Optional[float] = Field(None, ge=0, le=1)
    left: bool = False


class ReadingBatch(BaseModel):
    readings: List[ReadingIn]


class GazeIn(BaseModel):
    direction: str = "none"  # looking-at-screen, looking-away, unknown, none
    confidence: float = Field(0.0, ge=0, le=100)
    face_detected: bool = True
    person_id: Optional[str] = None
    timestamp: Optional[float] = None


class InteractionIn(BaseModel):
    person_id: Optional[str] = None


class ContextIn(BaseModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    lighting_level: Optional[float] = Field(None, ge=0, le=255)
    hour_of_day: Optional[int] = Field(None, ge=0, le=23)
    day_of_week: Optional[int] = Field(None, ge=0, le=6)  # 0 = Sunday


class FeedbackAnswerIn(BaseModel):
    was_correct: StrictBool


# ── Response Schemas ─────────────────────────────────────
class AcceptedResponse(BaseModel):
    accepted: int


class ThresholdSetResponse(BaseModel):
    ambient_floor: float
    walkup_threshold: float
    stare_dwell_ms: float
    baseline: float


class ThresholdsResponse(BaseModel):
    bucket: str
    active: ThresholdSetResponse
    buckets: Dict[str, ThresholdSetResponse]


class ContextResponse(BaseModel):
    bucket: str
    should_reset: bool
    reasons: List[str]


class LearningStatusResponse(BaseModel):
    mode: str
    started_at: Optional[float] = None
    remaining_ms: float
    countdown: str
    progress: float
    sessions: int
    feedback: int
    recalibrations: int
    last_recalibration_at: Optional[float] = None


class StoredSessionResponse(BaseModel):
    id: str
    person_id: str
    bucket: str
    outcome: str
    converted: bool
    started_at: float
    ended_at: Optional[float] = None
    hour_of_day: Optional[int] = None
    day_of_week: Optional[int] = None
    lighting_condition: Optional[str] = None
    peak_proximity: float
    frame_count: int
    created_at: datetime

    class Config:
        from_attributes = True
