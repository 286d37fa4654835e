"""
Shared fixtures: scripted sensor feeds and an engine factory driven by an
explicit millisecond clock.
"""

import os

# Backend settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENGINE_AUTOSTART"] = "false"
os.environ["CAMERA_ENABLED"] = "false"
os.environ["TOUCH_ENABLED"] = "false"
os.environ["ENGINE_SETTINGS_FILE"] = ""

import pytest

from proximity_engine.config import EngagementConfig
from proximity_engine.detection_core import DetectionEngine, SensorReading
from proximity_engine.gaze import GazeDirection, GazeReading
from proximity_engine.persistence import InMemoryStore
from proximity_engine.sources.queue_sources import InteractionQueue
from proximity_engine.triggers import RecordingTriggerSink


class ProximityFeed:
    """Reading source whose per-person values persist until changed"""

    def __init__(self):
        self.values = {}
        self.fail = False

    def set(self, proximity, person_id="primary", lateral_position=None):
        self.values[person_id] = SensorReading(proximity=proximity, person_id=person_id,
                                               lateral_position=lateral_position)

    def leave(self, person_id="primary"):
        self.values[person_id] = SensorReading(proximity=0.0, person_id=person_id, left=True)

    def clear(self):
        self.values.clear()

    def get_reading(self):
        if self.fail:
            raise RuntimeError("sensor offline")
        if not self.values:
            return None
        readings = list(self.values.values())
        # Exit markers are delivered once
        for r in readings:
            if r.left:
                del self.values[r.person_id]
        return readings


class GazeFeed:
    def __init__(self):
        self.gaze = None

    def look(self, direction=GazeDirection.LOOKING_AT_SCREEN, confidence=90.0, person_id=None):
        self.gaze = GazeReading(direction=direction, confidence=confidence, person_id=person_id)

    def clear(self):
        self.gaze = None

    def get_gaze(self):
        return self.gaze


# Scenario tests qualify people on their first reading; TestFalsePositiveGates turns these back on
OPEN_GATES = {"min_track_ms": 0, "boundary_margin": 0, "passing_lane_width": 0, "max_lateral_speed": 10}


def with_open_gates(blob):
    blob = dict(blob or {})
    blob["tracking"] = {**OPEN_GATES, **blob.get("tracking", {})}
    return blob


class EngineHarness:
    def __init__(self, blob=None, store=None, feedback_ui=None, gates=False):
        self.feed = ProximityFeed()
        self.gaze = GazeFeed()
        self.interactions = InteractionQueue()
        self.sink = RecordingTriggerSink()
        self.store = store if store is not None else InMemoryStore()
        self.engine = DetectionEngine(
            EngagementConfig.from_settings_blob(blob if gates else with_open_gates(blob)),
            reading_source=self.feed,
            gaze_source=self.gaze,
            trigger_sink=self.sink,
            store=self.store,
            feedback_ui=feedback_ui,
            clock=lambda: 0.0,
            interaction_source=self.interactions,
        )

    def run(self, start, end, step=100):
        """Tick every `step` ms from start to end inclusive; returns the last snapshot"""
        snapshot = None
        t = start
        while t <= end:
            snapshot = self.engine.tick(now=float(t))
            t += step
        return snapshot


@pytest.fixture
def harness():
    def build(blob=None, **kwargs):
        return EngineHarness(blob, **kwargs)
    return build
