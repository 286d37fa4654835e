"""
Unit tests for the intent classifier.

Tests cover:
- Trend detection from radial velocity
- Distance / gaze rules for each label
- Confidence composition and the ambiguity cap
- Temporal smoothing
"""

import pytest

from proximity_engine.config import IntentConfig
from proximity_engine.intent import Intent, Trend, Velocity, classify, smooth_intent, trend_of


STILL = Velocity()


class TestTrend:
    def test_thresholds(self):
        cfg = IntentConfig()
        assert trend_of(Velocity(radial=2.0), cfg) is Trend.APPROACH
        assert trend_of(Velocity(radial=-2.0), cfg) is Trend.RECEDE
        assert trend_of(Velocity(radial=1.9), cfg) is Trend.STEADY


class TestLabels:
    def test_receding_is_leaving(self):
        assert classify(70, Velocity(radial=-5.0), 20.0).intent is Intent.LEAVING

    def test_approaching(self):
        assert classify(40, Velocity(radial=5.0), 0.0).intent is Intent.APPROACHING

    def test_approaching_sideways_without_gaze_is_passing(self):
        result = classify(40, Velocity(lateral=1.0, radial=5.0), 0.0)
        assert result.intent is Intent.PASSING

    def test_far_is_passing(self):
        assert classify(20, STILL, 20.0).intent is Intent.PASSING

    def test_lateral_movement_is_passing(self):
        assert classify(50, Velocity(lateral=1.2), 20.0).intent is Intent.PASSING

    def test_looking_near_is_lingering_until_dwell(self):
        assert classify(70, STILL, 18.0, dwell_ms=500).intent is Intent.LINGERING
        assert classify(70, STILL, 18.0, dwell_ms=2000).intent is Intent.ENGAGED

    def test_engaged_needs_distance(self):
        assert classify(50, STILL, 18.0, dwell_ms=5000).intent is Intent.LINGERING

    def test_looking_away_near_is_passing(self):
        assert classify(50, STILL, -20.0).intent is Intent.PASSING


class TestConfidence:
    def test_streak_drives_base_confidence(self):
        assert classify(20, STILL, 0.0, streak=1).confidence == pytest.approx(48.0)
        assert classify(20, STILL, 0.0, streak=5).confidence == pytest.approx(80.0)
        assert classify(20, STILL, 0.0, streak=50).confidence == pytest.approx(80.0)

    def test_supporting_gaze_adds(self):
        result = classify(50, STILL, 15.0, streak=1)
        assert result.intent is Intent.LINGERING
        assert result.confidence == pytest.approx(63.0)

    def test_away_gaze_supports_passing(self):
        result = classify(50, STILL, -21.0, streak=1)
        assert result.intent is Intent.PASSING
        assert result.confidence == pytest.approx(62.0)

    def test_away_gaze_undermines_approach(self):
        result = classify(40, Velocity(radial=5.0), -21.0, streak=5)
        assert result.intent is Intent.APPROACHING
        assert result.confidence == pytest.approx(66.0)

    def test_ambiguous_is_capped(self):
        result = classify(50, STILL, 0.0, streak=5)
        assert result.intent is Intent.LINGERING
        assert result.ambiguous
        assert result.confidence <= 40.0

    def test_always_in_range(self):
        for adj in (-30.0, 0.0, 20.0):
            for streak in (1, 3, 10):
                c = classify(90, Velocity(radial=10.0), adj, streak=streak).confidence
                assert 0.0 <= c <= 100.0


class TestSmoothing:
    def test_majority_wins(self):
        history = [Intent.LINGERING] * 3 + [Intent.PASSING]
        assert smooth_intent(history) is Intent.LINGERING

    def test_no_majority_keeps_latest(self):
        history = [Intent.LINGERING, Intent.PASSING, Intent.LINGERING, Intent.PASSING]
        assert smooth_intent(history) is Intent.PASSING

    def test_empty(self):
        assert smooth_intent([]) is None
