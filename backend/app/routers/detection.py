"""
Proximity Router
Sensor ingest, detection snapshots, learning mode control and feedback answers.

Handlers are async so every engine call runs on the event loop that ticks it.
"""

import json
import logging
from typing import List
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from app.models.schemas import (
    AcceptedResponse, ContextIn, ContextResponse, FeedbackAnswerIn, GazeIn, InteractionIn,
    LearningStatusResponse, ReadingBatch, StoredSessionResponse, ThresholdsResponse,
)
from app.services.engine_service import get_engine_service
from app.services.persistence_bridge import SqlEngagementStore
from app.services.websocket_manager import CHANNELS, ws_manager
from proximity_engine.detection_core import SensorReading
from proximity_engine.environment import EnvironmentContext, analyze_learning_patterns
from proximity_engine.gaze import GazeDirection, GazeReading

logger = logging.getLogger("engageos.proximity_router")

router = APIRouter(prefix="/api/proximity", tags=["Proximity"])
ws_router = APIRouter(tags=["WebSocket"])


# ── Snapshot / thresholds ────────────────────────────────
@router.get("/snapshot")
async def get_snapshot():
    engine = get_engine_service().engine
    snapshot = engine.snapshot
    if snapshot is None:
        raise HTTPException(status_code=503, detail="No detection cycle has run yet")
    return snapshot.to_dict()


@router.get("/thresholds", response_model=ThresholdsResponse)
async def get_thresholds():
    engine = get_engine_service().engine
    return {
        "bucket": engine.bucket,
        "active": engine.thresholds.to_dict(),
        "buckets": {k: v.to_dict() for k, v in engine.book.buckets().items()},
    }


@router.get("/diagnostics")
async def get_diagnostics():
    service = get_engine_service()
    engine = service.engine
    data = engine.diagnostics.snapshot(engine.now()).to_dict()
    data["pending_writes"] = len(engine.outbox)
    data["loop_running"] = service.running
    if engine.feedback is not None:
        data["feedback"] = engine.feedback.stats()
    if isinstance(service.store, SqlEngagementStore):
        data["stored_feedback"] = service.store.feedback_summary()
    return data


# ── Sensor ingest ────────────────────────────────────────
@router.post("/readings", response_model=AcceptedResponse)
async def push_readings(batch: ReadingBatch):
    source = get_engine_service().readings
    for r in batch.readings:
        source.push(SensorReading(
            proximity=r.proximity,
            timestamp=r.timestamp,
            person_id=r.person_id,
            lateral_position=r.lateral_position,
            left=r.left,
        ))
    return {"accepted": len(batch.readings)}


@router.post("/gaze", response_model=AcceptedResponse)
async def push_gaze(gaze: GazeIn):
    get_engine_service().gaze.push(GazeReading(
        direction=GazeDirection.parse(gaze.direction),
        confidence=gaze.confidence,
        face_detected=gaze.face_detected,
        person_id=gaze.person_id,
        timestamp=gaze.timestamp,
    ))
    return {"accepted": 1}


@router.post("/interaction", response_model=AcceptedResponse)
async def push_interaction(interaction: InteractionIn):
    get_engine_service().interactions.push(interaction.person_id)
    return {"accepted": 1}


@router.post("/context", response_model=ContextResponse)
async def update_context(context: ContextIn):
    engine = get_engine_service().engine
    decision = engine.update_context(EnvironmentContext.from_mapping(context.model_dump()))
    if decision.should_reset:
        logger.warning(f"Calibration reset by context update: {decision.reasons}")
    return {"bucket": engine.bucket, **decision.to_dict()}


# ── Learning mode ────────────────────────────────────────
@router.get("/learning", response_model=LearningStatusResponse)
async def learning_status():
    engine = get_engine_service().engine
    return engine.learner.status(engine.now()).to_dict()


@router.post("/learning", response_model=LearningStatusResponse)
async def start_learning():
    return get_engine_service().engine.start_learning().to_dict()


@router.delete("/learning", response_model=LearningStatusResponse)
async def cancel_learning():
    return get_engine_service().engine.cancel_learning().to_dict()


@router.get("/insights")
async def get_insights(source: str = Query(default="memory", pattern="^(memory|stored)$"),
                 min_samples: int = Query(default=10, ge=1)):
    """Pattern analysis over in-memory history, or over every stored session"""
    service = get_engine_service()
    if source == "stored":
        if not isinstance(service.store, SqlEngagementStore):
            raise HTTPException(status_code=400, detail="No database-backed store configured")
        analysis = analyze_learning_patterns(service.store.session_summaries(), min_samples=min_samples)
    else:
        analysis = service.engine.learner.insights(min_samples)
    return analysis.to_dict()


@router.get("/sessions", response_model=List[StoredSessionResponse])
async def stored_sessions(limit: int = Query(default=50, ge=1, le=500)):
    service = get_engine_service()
    if not isinstance(service.store, SqlEngagementStore):
        return []
    return service.store.recent_sessions(limit)


# ── Feedback answers ─────────────────────────────────────
@router.post("/feedback/{prompt_id}")
async def answer_feedback(prompt_id: str, answer: FeedbackAnswerIn):
    if not get_engine_service().feedback_ui.resolve(prompt_id, answer.was_correct):
        raise HTTPException(status_code=404, detail="Feedback prompt not found or already closed")
    return {"prompt_id": prompt_id, "was_correct": answer.was_correct}


# ── WebSocket channels ───────────────────────────────────
def handle_feedback_message(msg: str) -> bool:
    """Apply a {"type": "feedback_answer", ...} message; True when it settled a prompt"""
    try:
        data = json.loads(msg)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON message on feedback channel")
        return False
    if not isinstance(data, dict) or data.get("type") != "feedback_answer":
        return False
    was_correct = data.get("was_correct")
    if was_correct is not None and not isinstance(was_correct, bool):
        logger.warning(f"Ignoring feedback answer with non-boolean was_correct: {was_correct!r}")
        return False
    return get_engine_service().feedback_ui.resolve(str(data.get("prompt_id", "")), was_correct)


@ws_router.websocket("/ws/proximity/{channel}")
async def websocket_channel(websocket: WebSocket, channel: str):
    """detection: snapshots, triggers: trigger requests, feedback: prompts + answers"""
    if channel not in CHANNELS:
        await websocket.close(code=1008)
        return
    await ws_manager.connect(websocket, channel)
    try:
        while True:
            msg = await websocket.receive_text()
            if channel == "feedback":
                handle_feedback_message(msg)
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(websocket, channel)
