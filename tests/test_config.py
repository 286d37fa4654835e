"""
Tests for configuration loading: engine config tree and service settings.
"""

import json

import pytest
from pydantic import ValidationError

from proximity_engine.config import EngagementConfig


class TestEngagementConfig:
    def test_defaults(self):
        cfg = EngagementConfig()
        assert cfg.detection.ambient_floor == 30
        assert cfg.detection.walkup_threshold == 60
        assert cfg.detection.stare_dwell_ms == 15000
        assert cfg.tracking.stale_ms == 3000
        assert cfg.tracking.min_track_ms == 1000
        assert (cfg.tracking.boundary_margin, cfg.tracking.passing_lane_width) == (0.1, 0.2)
        assert cfg.tracking.max_lateral_speed == 0.8
        assert cfg.learning.max_pending_writes == 1000
        assert cfg.learning.learning_duration_ms == 300000
        assert cfg.feedback.auto_close_ms == 8000

    def test_blob_overrides(self):
        cfg = EngagementConfig.from_settings_blob({"detection": {"walkup_threshold": 55}})
        assert cfg.detection.walkup_threshold == 55
        assert cfg.default_thresholds().walkup_threshold == 55

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            EngagementConfig.from_settings_blob({"detection": {"walkup_treshold": 55}})
        with pytest.raises(ValidationError):
            EngagementConfig.from_settings_blob({"billing": {}})

    def test_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            EngagementConfig.from_settings_blob({"detection": {"ambient_floor": 140}})
        with pytest.raises(ValidationError):
            EngagementConfig.from_settings_blob({"feedback": {"auto_close_ms": 0}})

    def test_floor_must_be_below_walkup(self):
        with pytest.raises(ValidationError):
            EngagementConfig.from_settings_blob({"detection": {"ambient_floor": 60, "walkup_threshold": 60}})

    def test_false_positive_bounds(self):
        with pytest.raises(ValidationError):
            EngagementConfig.from_settings_blob({"learning": {"base_false_positive_rate": 0.5}})

    def test_frozen(self):
        cfg = EngagementConfig()
        with pytest.raises(ValidationError):
            cfg.detection.ambient_floor = 10


class TestServiceSettings:
    def test_env_values_feed_engine_config(self):
        from app.core.config import Settings

        settings = Settings(WALKUP_THRESHOLD=65, STALE_MS=2500, FEEDBACK_TIMEOUT_MS=5000, MIN_TRACK_MS=500)
        cfg = settings.engagement_config()
        assert cfg.detection.walkup_threshold == 65
        assert cfg.tracking.stale_ms == 2500
        assert cfg.tracking.min_track_ms == 500
        assert cfg.feedback.auto_close_ms == 5000

    def test_settings_blob_overrides_env(self, tmp_path):
        from app.core.config import Settings

        blob = tmp_path / "engine.json"
        blob.write_text(json.dumps({"detection": {"walkup_threshold": 52}, "intent": {"linger_distance": 25}}))
        cfg = Settings(WALKUP_THRESHOLD=65, ENGINE_SETTINGS_FILE=str(blob)).engagement_config()
        assert cfg.detection.walkup_threshold == 52
        assert cfg.detection.ambient_floor == 30
        assert cfg.intent.linger_distance == 25

    def test_bad_blob_rejected(self, tmp_path):
        from app.core.config import Settings

        blob = tmp_path / "engine.json"
        blob.write_text(json.dumps({"detection": {"stare_seconds": 10}}))
        with pytest.raises(ValidationError):
            Settings(ENGINE_SETTINGS_FILE=str(blob)).engagement_config()

    def test_cors_list(self):
        from app.core.config import Settings

        assert Settings(CORS_ORIGINS="http://a, http://b").cors_origins_list == ["http://a", "http://b"]
