"""
EngageOS Proximity Engine
Engagement detection for the kiosk: gaze scoring, intent classification,
NONE/AMBIENT/WALKUP/STARE zones and adaptive threshold learning.

Usage (headless, pull-based):
    from proximity_engine import DetectionEngine, EngagementConfig
    from proximity_engine.sources import LatestReadingSource, LatestGazeSource

    readings, gaze = LatestReadingSource(), LatestGazeSource()
    engine = DetectionEngine(EngagementConfig(), reading_source=readings, gaze_source=gaze)
    readings.push(SensorReading(proximity=72.0))
    snapshot = engine.tick()
    print(snapshot.to_dict())

Usage (camera, asyncio):
    from proximity_engine.sources.camera import FrameGrabber, CameraProximitySource, FaceMeshGazeSource

    grabber = FrameGrabber(0)
    grabber.start()
    engine = DetectionEngine(
        reading_source=CameraProximitySource(grabber),
        gaze_source=FaceMeshGazeSource(grabber),
    )
    await SensorLoop(engine).run()
"""

from .config import EngagementConfig
from .detection_core import DetectionEngine, DetectionSnapshot, SensorReading, ZoneState
from .environment import EnvironmentContext, analyze_learning_patterns, should_reset_learning
from .errors import EngagementError, InvalidThresholdSet, PersistenceWriteFailure, SignalUnavailable
from .feedback import FeedbackAnswer, FeedbackCollector, FeedbackRecord
from .gaze import GazeDirection, GazeReading, score
from .intent import Intent, classify
from .learning import AdaptiveThresholdLearner, LearningSession, SessionOutcome
from .loop import SensorLoop
from .persistence import InMemoryStore, PersistenceOutbox
from .thresholds import ThresholdBook, ThresholdSet
from .triggers import TriggerContext, TriggerKind

__all__ = [
    "EngagementConfig",
    "DetectionEngine",
    "DetectionSnapshot",
    "SensorReading",
    "ZoneState",
    "EnvironmentContext",
    "analyze_learning_patterns",
    "should_reset_learning",
    "EngagementError",
    "InvalidThresholdSet",
    "PersistenceWriteFailure",
    "SignalUnavailable",
    "FeedbackAnswer",
    "FeedbackCollector",
    "FeedbackRecord",
    "GazeDirection",
    "GazeReading",
    "score",
    "Intent",
    "classify",
    "AdaptiveThresholdLearner",
    "LearningSession",
    "SessionOutcome",
    "SensorLoop",
    "InMemoryStore",
    "PersistenceOutbox",
    "ThresholdBook",
    "ThresholdSet",
    "TriggerContext",
    "TriggerKind",
]
