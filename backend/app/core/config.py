"""
EngageOS Configuration
Central configuration loaded from environment variables.
"""

import json
from pathlib import Path
from typing import Any, Dict, List

from pydantic_settings import BaseSettings

from proximity_engine.config import EngagementConfig


class Settings(BaseSettings):
    # App
    APP_NAME: str = "EngageOS"
    ENGAGE_ENV: str = "development"
    DEBUG: bool = True
    TENANT_ID: str = "default"

    # Database
    DATABASE_URL: str = "sqlite:///./engageos.db"

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000,http://localhost:8000"

    # Engine scheduling
    ENGINE_AUTOSTART: bool = True
    TICK_HZ: float = 10.0
    GAZE_POLL_HZ: float = 5.0
    CONTEXT_REFRESH_S: float = 60.0  # clock / lighting re-bucketing

    # Default thresholds (0-100 proximity scale)
    AMBIENT_FLOOR: float = 30.0
    WALKUP_THRESHOLD: float = 60.0
    STARE_DWELL_MS: float = 15000.0
    STALE_MS: float = 3000.0
    MIN_TRACK_MS: float = 1000.0

    # Learning / persistence
    LEARNING_DURATION_MS: float = 300000.0
    SUPPRESS_TRIGGERS_WHILE_LEARNING: bool = False
    MAX_WRITE_ATTEMPTS: int = 3

    # Feedback prompts
    FEEDBACK_ENABLED: bool = True
    FEEDBACK_TIMEOUT_MS: float = 8000.0

    # Admin-UI settings blob (JSON file, nested like EngagementConfig)
    ENGINE_SETTINGS_FILE: str = ""

    # Local hardware (needs the vision / kiosk extras)
    CAMERA_ENABLED: bool = False
    CAMERA_INDEX: int = 0
    TOUCH_ENABLED: bool = False

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent.parent

    def settings_blob(self) -> Dict[str, Any]:
        if not self.ENGINE_SETTINGS_FILE:
            return {}
        p = Path(self.ENGINE_SETTINGS_FILE)
        if not p.is_absolute():
            p = self.base_dir / p
        with open(p, "r", encoding="utf-8") as f:
            return json.load(f)

    def engagement_config(self) -> EngagementConfig:
        """
        Environment values form the base; the admin settings blob overrides
        them section by section. Validation errors propagate.
        """
        base = {
            "detection": {
                "ambient_floor": self.AMBIENT_FLOOR,
                "walkup_threshold": self.WALKUP_THRESHOLD,
                "stare_dwell_ms": self.STARE_DWELL_MS,
                "max_tick_hz": self.TICK_HZ,
                "gaze_poll_hz": self.GAZE_POLL_HZ,
            },
            "tracking": {"stale_ms": self.STALE_MS, "min_track_ms": self.MIN_TRACK_MS},
            "learning": {
                "learning_duration_ms": self.LEARNING_DURATION_MS,
                "suppress_triggers_while_learning": self.SUPPRESS_TRIGGERS_WHILE_LEARNING,
                "max_write_attempts": self.MAX_WRITE_ATTEMPTS,
            },
            "feedback": {
                "enabled": self.FEEDBACK_ENABLED,
                "auto_close_ms": self.FEEDBACK_TIMEOUT_MS,
            },
        }
        for section, values in self.settings_blob().items():
            if isinstance(values, dict) and isinstance(base.get(section), dict):
                base[section] = {**base[section], **values}
            else:
                base[section] = values
        return EngagementConfig.from_settings_blob(base)

    class Config:
        env_file = Path(__file__).resolve().parent.parent.parent / ".env"
        extra = "allow"


settings = Settings()
