"""
Tests for signal-source helpers that do not need camera hardware.
"""

from types import SimpleNamespace

import numpy as np
import pytest

from proximity_engine.detection_core import SensorReading
from proximity_engine.gaze import GazeDirection, GazeReading
from proximity_engine.sources.gaze_landmarks import (
    FaceLandmarks, HeadPose, gaze_from_iris, gaze_from_landmarks, head_pose_from_landmarks,
    is_looking_at_camera,
)
from proximity_engine.sources.motion import MotionProximityEstimator, lighting_level, to_gray
from proximity_engine.sources.queue_sources import InteractionQueue, LatestGazeSource, LatestReadingSource


class TestMotion:
    def test_first_frame_has_no_estimate(self):
        est = MotionProximityEstimator()
        assert est.estimate(np.full((40, 40), 128, dtype=np.uint8)) is None

    def test_static_mid_grey_is_zero(self):
        est = MotionProximityEstimator()
        frame = np.full((40, 40), 128, dtype=np.uint8)
        est.estimate(frame)
        assert est.estimate(frame) == pytest.approx(0.0)

    def test_brightness_presence_term(self):
        est = MotionProximityEstimator()
        frame = np.full((40, 40, 3), 28, dtype=np.uint8)
        est.estimate(frame)
        assert est.estimate(frame) == pytest.approx(50.0)
        assert est.last_motion == 0.0

    def test_motion_term(self):
        est = MotionProximityEstimator(sensitivity=15, sample_step=1)
        before = np.full((10, 10), 128, dtype=np.uint8)
        after = before.copy()
        after[:, :3] = 255  # 30% of pixels change a lot
        est.estimate(before)
        proximity = est.estimate(after)
        assert est.last_motion == pytest.approx(30.0)
        assert proximity == pytest.approx(30.0 + abs(est.last_brightness - 128) / 2)

    def test_capped_at_100(self):
        est = MotionProximityEstimator(sample_step=1)
        est.estimate(np.zeros((10, 10), dtype=np.uint8))
        assert est.estimate(np.full((10, 10), 255, dtype=np.uint8)) == 100.0

    def test_shape_change_restarts(self):
        est = MotionProximityEstimator()
        est.estimate(np.zeros((10, 10), dtype=np.uint8))
        assert est.estimate(np.zeros((20, 20), dtype=np.uint8)) is None

    def test_lighting_level(self):
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        frame[..., 0] = 90
        assert lighting_level(frame) == pytest.approx(30.0)
        assert to_gray(frame).shape == (4, 4)


def face(left_iris=0.5, right_iris=0.5, nose_x=0.5, nose_y=0.45):
    """478 landmarks with both eyes 0.1 wide; iris positions as a 0-1 ratio"""
    pts = [SimpleNamespace(x=0.5, y=0.45) for _ in range(478)]
    pts[FaceLandmarks.LEFT_EYE_OUTER] = SimpleNamespace(x=0.30, y=0.4)
    pts[FaceLandmarks.LEFT_EYE_INNER] = SimpleNamespace(x=0.40, y=0.4)
    pts[FaceLandmarks.RIGHT_EYE_INNER] = SimpleNamespace(x=0.60, y=0.4)
    pts[FaceLandmarks.RIGHT_EYE_OUTER] = SimpleNamespace(x=0.70, y=0.4)
    pts[FaceLandmarks.LEFT_IRIS] = SimpleNamespace(x=0.30 + 0.1 * left_iris, y=0.4)
    pts[FaceLandmarks.RIGHT_IRIS] = SimpleNamespace(x=0.60 + 0.1 * right_iris, y=0.4)
    pts[FaceLandmarks.NOSE_TIP] = SimpleNamespace(x=nose_x, y=nose_y)
    return pts


class TestIrisGaze:
    def test_centred(self):
        direction, confidence = gaze_from_iris(face(0.5, 0.5))
        assert direction is GazeDirection.LOOKING_AT_SCREEN
        assert confidence == pytest.approx(100.0)

    def test_slightly_off_centre(self):
        direction, confidence = gaze_from_iris(face(0.6, 0.6))
        assert direction is GazeDirection.LOOKING_AT_SCREEN
        assert confidence == pytest.approx(80.0)

    def test_looking_away(self):
        direction, confidence = gaze_from_iris(face(0.9, 0.9))
        assert direction is GazeDirection.LOOKING_AWAY
        assert confidence == pytest.approx(30.0)

    def test_in_between_is_unknown(self):
        assert gaze_from_iris(face(0.7, 0.7)) == (GazeDirection.UNKNOWN, 50.0)

    def test_without_iris_landmarks(self):
        assert gaze_from_iris(face()[:468]) == (GazeDirection.NONE, 0.0)
        assert gaze_from_iris(None) == (GazeDirection.NONE, 0.0)


class TestHeadPose:
    def test_frontal(self):
        pose = head_pose_from_landmarks(face())
        assert pose.yaw == pytest.approx(0.0)
        assert is_looking_at_camera(pose)

    def test_turned_head_overrides_iris(self):
        # Nose 0.2 right of the eye centre over a 0.4 eye span -> yaw 45
        landmarks = face(0.5, 0.5, nose_x=0.7)
        assert head_pose_from_landmarks(landmarks).yaw == pytest.approx(45.0)
        direction, confidence = gaze_from_landmarks(landmarks)
        assert direction is GazeDirection.LOOKING_AWAY
        assert confidence == pytest.approx(50.0 * 45.0 / 35.0)

    def test_limits(self):
        assert is_looking_at_camera(HeadPose(yaw=35, pitch=-25, roll=0))
        assert not is_looking_at_camera(HeadPose(yaw=0, pitch=26, roll=0))
        assert not is_looking_at_camera(None)


class TestQueueSources:
    def test_latest_reading_per_person_once(self):
        src = LatestReadingSource()
        src.push(SensorReading(40, person_id="a"))
        src.push(SensorReading(45, person_id="a"))
        src.push(SensorReading(50, person_id="b"))
        readings = src.get_reading()
        assert sorted((r.person_id, r.proximity) for r in readings) == [("a", 45), ("b", 50)]
        assert src.get_reading() is None
        assert src.pushed == 3

    def test_latest_gaze_once(self):
        src = LatestGazeSource()
        src.push(GazeReading(GazeDirection.LOOKING_AWAY, 40))
        src.push(GazeReading(GazeDirection.LOOKING_AT_SCREEN, 80))
        assert src.get_gaze().direction is GazeDirection.LOOKING_AT_SCREEN
        assert src.get_gaze() is None

    def test_interactions_drain(self):
        q = InteractionQueue()
        q.push()
        q.push("b")
        assert q.get_interactions() == [None, "b"]
        assert q.get_interactions() == []
