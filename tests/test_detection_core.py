"""
Tests for the detection state machine and the DetectionEngine tick.

Tests cover:
- Zone priority across several people
- Hysteresis and the stale hold window
- Stale eviction and signal dropouts
- Trigger emission (once per rise of the global zone)
- Session outcomes and touch conversion
- Threshold loading per environmental bucket and clock refresh
- False-positive gates (brief, boundary, passing lane, lateral speed)
"""

import pytest

from proximity_engine.detection_core import DwellTimer, SensorReading, ZoneState
from proximity_engine.environment import EnvironmentContext
from proximity_engine.gaze import GazeDirection
from proximity_engine.learning import SessionOutcome
from proximity_engine.thresholds import ThresholdSet
from proximity_engine.triggers import TriggerKind


FAST_STARE = {"detection": {"stare_dwell_ms": 1000}}


class TestDwellTimer:
    def test_accumulates_and_resets(self):
        timer = DwellTimer(1000)
        assert timer.update(True, 0) == (False, 0)
        assert timer.update(True, 600) == (False, 600)
        assert timer.update(True, 1000) == (True, 1000)
        assert timer.update(False, 1100) == (False, 0.0)
        assert timer.update(True, 1200) == (False, 0)


class TestZoneEntry:
    """Zones from proximity and gaze."""

    def test_below_floor_is_not_tracked(self, harness):
        h = harness()
        h.feed.set(20)
        snapshot = h.run(0, 500)
        assert snapshot.zone is ZoneState.NONE
        assert snapshot.people == ()
        assert h.sink.requests == []

    def test_ambient(self, harness):
        h = harness()
        h.feed.set(35)
        snapshot = h.run(0, 0)
        assert snapshot.zone is ZoneState.AMBIENT
        assert snapshot.triggered is TriggerKind.AMBIENT
        assert h.sink.kinds == [TriggerKind.AMBIENT]

    def test_walkup_requires_gaze(self, harness):
        h = harness()
        h.feed.set(70)
        assert h.run(0, 0).zone is ZoneState.AMBIENT

        h.gaze.look(GazeDirection.LOOKING_AWAY, 90)
        assert h.run(200, 200).zone is ZoneState.AMBIENT

        h.gaze.look(GazeDirection.LOOKING_AT_SCREEN, 90)
        assert h.run(400, 400).zone is ZoneState.WALKUP
        assert h.sink.kinds == [TriggerKind.AMBIENT, TriggerKind.WALKUP]

    def test_stare_after_dwell(self, harness):
        h = harness(FAST_STARE)
        h.feed.set(70)
        h.gaze.look(confidence=90)

        assert h.run(0, 900).zone is ZoneState.WALKUP
        snapshot = h.run(1000, 1000)
        assert snapshot.zone is ZoneState.STARE
        assert snapshot.person("primary").stare_progress == pytest.approx(1.0)
        # Straight to WALKUP; AMBIENT is never requested on the same rise
        assert h.sink.kinds == [TriggerKind.WALKUP, TriggerKind.STARE]

    def test_stare_needs_confident_gaze(self, harness):
        h = harness(FAST_STARE)
        h.feed.set(70)
        h.gaze.look(confidence=60)
        assert h.run(0, 3000).zone is ZoneState.WALKUP

    def test_stare_dwell_restarts_when_gaze_breaks(self, harness):
        h = harness(FAST_STARE)
        h.feed.set(70)
        h.gaze.look(confidence=90)
        h.run(0, 600)
        h.gaze.look(GazeDirection.LOOKING_AWAY, 90)
        h.run(700, 800)
        h.gaze.look(confidence=90)
        # Dwell restarted at 1000; the walkup zone is still held
        assert h.run(1000, 1900).zone is ZoneState.WALKUP
        assert h.run(2000, 2000).zone is ZoneState.STARE


class TestPriority:
    def test_stare_wins_over_other_people(self, harness):
        h = harness(FAST_STARE)
        h.feed.set(70, person_id="a")
        h.feed.set(35, person_id="b")
        h.gaze.look(confidence=95, person_id="a")

        snapshot = h.run(0, 1500)
        assert snapshot.zone is ZoneState.STARE
        assert snapshot.person("a").zone is ZoneState.STARE
        assert snapshot.person("b").zone is ZoneState.AMBIENT
        assert h.sink.kinds == [TriggerKind.WALKUP, TriggerKind.STARE]

    def test_global_zone_never_below_best_person(self, harness):
        h = harness(FAST_STARE)
        h.feed.set(70, person_id="a")
        h.gaze.look(confidence=95, person_id="a")
        h.run(0, 1000)
        for t in range(1100, 2100, 100):
            h.feed.set(30 + (t % 300) / 10, person_id=f"p{t}")
            snapshot = h.engine.tick(now=float(t))
            assert snapshot.zone is ZoneState.STARE


class TestHysteresis:
    def test_walkup_held_through_short_drop(self, harness):
        h = harness()
        h.feed.set(70)
        h.gaze.look()
        assert h.run(0, 0).zone is ZoneState.WALKUP

        h.feed.set(45)
        for t in range(100, 3001, 100):
            assert h.engine.tick(now=float(t)).zone is ZoneState.WALKUP
        assert h.run(3100, 3100).zone is ZoneState.AMBIENT
        assert h.sink.kinds == [TriggerKind.WALKUP]

    def test_oscillation_inside_exit_margin(self, harness):
        h = harness()
        h.gaze.look()
        for i, t in enumerate(range(0, 5000, 100)):
            h.feed.set(62 if i % 2 else 55)
            h.engine.tick(now=float(t))
        assert h.engine.zone is ZoneState.WALKUP
        assert h.sink.kinds == [TriggerKind.AMBIENT, TriggerKind.WALKUP]

    def test_ambient_exit_margin(self, harness):
        h = harness()
        h.feed.set(35)
        h.run(0, 0)
        h.feed.set(27)
        assert h.run(100, 5000).zone is ZoneState.AMBIENT

    def test_zone_rises_again_after_drop(self, harness):
        h = harness()
        h.feed.set(35)
        h.run(0, 0)
        h.feed.set(20)
        assert h.run(100, 3000).zone is ZoneState.AMBIENT
        assert h.run(3100, 3100).zone is ZoneState.NONE
        h.feed.set(40)
        assert h.run(3200, 3200).zone is ZoneState.AMBIENT
        assert h.sink.kinds == [TriggerKind.AMBIENT, TriggerKind.AMBIENT]


class TestEviction:
    def test_no_update_evicts_after_stale_window(self, harness):
        h = harness()
        h.feed.set(35)
        h.run(0, 0)
        h.feed.clear()

        snapshot = h.run(100, 3000)
        assert snapshot.zone is ZoneState.AMBIENT
        assert snapshot.person("primary") is not None
        assert snapshot.diagnostics.reading_dropouts == 30

        snapshot = h.run(3100, 3100)
        assert snapshot.people == ()
        assert snapshot.zone is ZoneState.NONE
        assert len(h.store.sessions) == 1
        assert len(h.engine.learner.history) == 1

    def test_evicted_person_no_longer_counts(self, harness):
        h = harness()
        h.gaze.look(person_id="a")
        h.feed.set(70, person_id="a")
        h.feed.set(35, person_id="b")
        h.run(0, 0)
        del h.feed.values["a"]
        snapshot = h.run(100, 3100)
        assert [p.id for p in snapshot.people] == ["b"]
        assert snapshot.zone is ZoneState.AMBIENT

    def test_left_marker_evicts_immediately(self, harness):
        h = harness()
        h.feed.set(35)
        h.run(0, 0)
        h.feed.leave()
        snapshot = h.run(100, 100)
        assert snapshot.people == ()
        assert h.store.sessions[0].outcome is not None

    def test_sensor_exception_holds_state(self, harness):
        h = harness()
        h.feed.set(35)
        h.run(0, 0)
        h.feed.fail = True
        snapshot = h.run(100, 1000)
        assert snapshot.zone is ZoneState.AMBIENT
        assert snapshot.diagnostics.reading_dropouts == 10
        assert snapshot.diagnostics.reading_stale is False


class TestSessions:
    def _leave_after(self, h, end):
        h.run(0, end)
        h.feed.leave()
        h.run(end + 100, end + 100)
        return h.store.sessions[-1]

    def test_passing(self, harness):
        h = harness()
        h.feed.set(35)
        h.gaze.look(GazeDirection.LOOKING_AWAY, 90)
        assert self._leave_after(h, 500).outcome is SessionOutcome.PASSING

    def test_walkup_then_leave_is_abandoned(self, harness):
        h = harness()
        h.feed.set(70)
        h.gaze.look()
        session = self._leave_after(h, 500)
        assert session.outcome is SessionOutcome.ABANDONED
        assert session.triggers == ["walkup"]
        assert len(session.frames) == 6

    def test_stare_is_engaged(self, harness):
        h = harness(FAST_STARE)
        h.feed.set(70)
        h.gaze.look()
        assert self._leave_after(h, 1200).outcome is SessionOutcome.ENGAGED

    def test_touch_converts(self, harness):
        h = harness()
        h.feed.set(70)
        h.gaze.look()
        h.run(0, 300)
        h.interactions.push()
        h.run(400, 400)

        session = h.store.sessions[-1]
        assert session.outcome is SessionOutcome.ENGAGED
        assert session.converted
        # Person stays tracked; no second session on exit
        h.feed.leave()
        h.run(500, 500)
        assert len(h.store.sessions) == 1

    def test_interaction_with_nobody(self, harness):
        h = harness()
        assert h.engine.record_interaction(now=0.0) is False

    def test_session_carries_context(self, harness):
        h = harness()
        h.engine.update_context(EnvironmentContext(hour_of_day=14, day_of_week=2, lighting_level=150), now=0.0)
        h.feed.set(35)
        session = self._leave_after(h, 200)
        assert session.bucket == "afternoon:normal"
        assert session.hour_of_day == 14
        assert session.lighting_condition == "normal"


class TestTickScheduling:
    def test_rate_limited(self, harness):
        h = harness()
        h.feed.set(35)
        first = h.engine.tick(now=0.0)
        assert h.engine.tick(now=50.0) is first
        assert h.engine.tick(now=96.0) is not first

    def test_trigger_sink_failure_is_contained(self, harness):
        h = harness()

        def explode(kind, context):
            raise RuntimeError("ui gone")

        h.engine.trigger_sink.request_trigger = explode
        h.feed.set(35)
        snapshot = h.run(0, 0)
        assert snapshot.zone is ZoneState.AMBIENT
        assert h.engine.triggers_requested == 1

    def test_trigger_context(self, harness):
        h = harness()
        h.feed.set(70)
        h.gaze.look(confidence=80)
        h.run(0, 0)
        kind, context = h.sink.requests[0]
        assert kind is TriggerKind.WALKUP
        assert context.proximity == 70
        assert context.threshold == 60
        assert context.gaze_direction == "looking-at-screen"
        assert context.to_dict()["kind"] == "walkup"

    def test_suppressed_while_learning(self, harness):
        h = harness({"learning": {"suppress_triggers_while_learning": True}})
        h.engine.start_learning(now=0.0)
        h.feed.set(35)
        snapshot = h.run(0, 500)
        assert snapshot.zone is ZoneState.AMBIENT
        assert h.sink.requests == []

    def test_readings_accept_mappings(self, harness):
        h = harness()
        h.engine.reading_source = type("Src", (), {
            "get_reading": lambda self: [{"proximity": 40, "id": "kid"}],
        })()
        assert h.run(0, 0).person("kid").distance == 40


class TestBuckets:
    def test_stored_thresholds_load_on_bucket_switch(self, harness):
        h = harness()
        h.store.thresholds["afternoon:normal"] = ThresholdSet(25, 50, 15000, 5)
        h.engine.update_context(EnvironmentContext(hour_of_day=14, lighting_level=150), now=0.0)
        assert h.engine.bucket == "afternoon:normal"
        assert h.engine.thresholds.walkup_threshold == 50

    def test_invalid_stored_thresholds_rejected(self, harness):
        h = harness()
        h.store.thresholds["afternoon:normal"] = {"ambient_floor": 60, "walkup_threshold": 40,
                                                  "stare_dwell_ms": 15000}
        h.engine.update_context(EnvironmentContext(hour_of_day=14, lighting_level=150), now=0.0)
        assert h.engine.thresholds.walkup_threshold == 60
        assert h.engine.diagnostics.rejected_threshold_sets == 1

    def test_context_reset_restarts_learning(self, harness):
        h = harness()
        h.engine.update_context(EnvironmentContext(latitude=41.88, longitude=-87.63), now=0.0)
        decision = h.engine.update_context(EnvironmentContext(latitude=41.89, longitude=-87.64), now=10.0)
        assert decision.should_reset
        assert h.engine.learner.is_learning
        assert "calibration reset" in h.engine.diagnostics.warnings[-1][1]

    def test_clock_refresh_advances_bucket(self, harness):
        h = harness()
        h.store.thresholds["afternoon:any"] = ThresholdSet(25, 50, 15000, 5)
        h.engine.update_context(EnvironmentContext(hour_of_day=9, day_of_week=1), now=0.0)
        assert h.engine.bucket == "morning:any"

        assert h.engine.refresh_context(EnvironmentContext(hour_of_day=14, day_of_week=1))
        assert h.engine.bucket == "afternoon:any"
        assert h.engine.thresholds.walkup_threshold == 50
        assert not h.engine.refresh_context(EnvironmentContext(hour_of_day=15, day_of_week=1))

        h.feed.set(35)
        h.run(0, 200)
        h.feed.leave()
        h.run(300, 300)
        assert h.store.sessions[-1].hour_of_day == 15
        assert h.store.sessions[-1].bucket == "afternoon:any"

    def test_clock_refresh_never_resets_calibration(self, harness):
        h = harness()
        h.engine.update_context(EnvironmentContext(latitude=41.88, longitude=-87.63,
                                                   lighting_level=150, hour_of_day=23), now=0.0)
        assert not h.engine.refresh_context(EnvironmentContext(hour_of_day=0, day_of_week=3))
        assert h.engine.bucket == "night:normal"
        assert not h.engine.learner.is_learning
        assert h.engine.context.latitude == 41.88
        assert h.engine.context.lighting_level == 150

    def test_lighting_refresh_rebuckets(self, harness):
        h = harness()
        h.engine.update_context(EnvironmentContext(lighting_level=150, hour_of_day=14), now=0.0)
        assert h.engine.refresh_context(EnvironmentContext(lighting_level=100, hour_of_day=14))
        assert h.engine.bucket == "afternoon:dim"


class TestSensorReading:
    def test_from_mapping(self):
        r = SensorReading.from_mapping({"proximity": "55", "timestamp": 10, "lateral_position": 0.2})
        assert r.proximity == 55.0
        assert r.timestamp == 10.0
        assert r.person_id == "primary"


class TestFalsePositiveGates:
    """Brief appearances, frame edges, the passing lane and fast lateral movers."""

    def test_brief_appearance_never_triggers(self, harness):
        h = harness(gates=True)
        h.feed.set(70)
        h.gaze.look()
        snapshot = h.run(0, 900)
        assert snapshot.zone is ZoneState.NONE
        assert snapshot.person("primary").filtered == "brief"

        h.feed.leave()
        h.run(1000, 1000)
        assert h.sink.requests == []
        assert h.store.sessions[-1].ended_at == 1000.0

    def test_qualifies_after_min_track(self, harness):
        h = harness(gates=True)
        h.feed.set(35)
        assert h.run(0, 900).zone is ZoneState.NONE
        snapshot = h.run(1000, 1000)
        assert snapshot.zone is ZoneState.AMBIENT
        assert snapshot.person("primary").filtered is None
        assert h.sink.kinds == [TriggerKind.AMBIENT]

    @pytest.mark.parametrize("lateral, reason", [
        (0.05, "boundary"),
        (0.95, "boundary"),
        (0.15, "passing_lane"),
        (0.5, None),
    ])
    def test_lateral_position(self, harness, lateral, reason):
        h = harness({"tracking": {"min_track_ms": 0}}, gates=True)
        h.feed.set(35, lateral_position=lateral)
        snapshot = h.run(0, 0)
        assert snapshot.person("primary").filtered == reason
        assert snapshot.zone is (ZoneState.NONE if reason else ZoneState.AMBIENT)
        assert snapshot.to_dict()["people"][0]["filtered"] == reason

    def test_fast_lateral_mover(self, harness):
        h = harness({"tracking": {"min_track_ms": 0}}, gates=True)
        h.feed.set(35, lateral_position=0.3)
        h.run(0, 0)
        h.feed.set(35, lateral_position=0.6)
        snapshot = h.run(100, 100)
        # 3 frame widths / s, smoothed to 1.5
        assert snapshot.person("primary").filtered == "fast"

        # Standing still lets the smoothed speed settle under the limit
        snapshot = h.run(200, 300)
        assert snapshot.person("primary").filtered is None

    def test_gates_are_configurable(self, harness):
        h = harness({"tracking": {"min_track_ms": 0, "passing_lane_width": 0.0}}, gates=True)
        h.feed.set(35, lateral_position=0.15)
        assert h.run(0, 0).zone is ZoneState.AMBIENT
