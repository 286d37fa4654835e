"""
EngageOS Engine Service
Owns the single DetectionEngine of this kiosk and the asyncio loop that ticks it.

Sensor input arrives either from local hardware (camera / touch, behind the
vision and kiosk extras) or is pushed over the REST API into the queue
sources. Snapshots are streamed on the "detection" websocket channel.
"""

import logging
from datetime import datetime
from typing import Optional

from app.core.config import settings
from app.services.kiosk_adapters import WebsocketFeedbackUI, WebsocketTriggerSink
from app.services.persistence_bridge import SqlEngagementStore
from app.services.websocket_manager import ws_manager
from proximity_engine.config import EngagementConfig
from proximity_engine.detection_core import DetectionEngine, DetectionSnapshot
from proximity_engine.environment import EnvironmentContext
from proximity_engine.loop import SensorLoop
from proximity_engine.sources.queue_sources import InteractionQueue, LatestGazeSource, LatestReadingSource

logger = logging.getLogger("engageos.engine.service")


class EngineService:
    """
    Singleton wrapper around DetectionEngine.

    - Builds the engine once from Settings (env + admin settings blob).
    - start() opens local hardware if enabled and starts the SensorLoop.
    - stop() stops the loop, closes open sessions and flushes pending writes.
    """

    _instance: Optional["EngineService"] = None

    @classmethod
    def get_instance(cls) -> "EngineService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __init__(self, config: Optional[EngagementConfig] = None, store=None):
        self.config = config or settings.engagement_config()
        self.store = store if store is not None else SqlEngagementStore(tenant_id=settings.TENANT_ID)

        self.readings = LatestReadingSource()
        self.gaze = LatestGazeSource()
        self.interactions = InteractionQueue()
        self.trigger_sink = WebsocketTriggerSink(ws_manager)
        self.feedback_ui = WebsocketFeedbackUI(ws_manager)

        self._grabber = None
        self._camera = None
        self._face_mesh = None
        self._touch = None
        self._context_refreshed_at: Optional[float] = None
        reading_source, gaze_source, interaction_source = self._open_hardware()

        self.engine = DetectionEngine(
            self.config,
            reading_source=reading_source,
            gaze_source=gaze_source,
            trigger_sink=self.trigger_sink,
            store=self.store,
            feedback_ui=self.feedback_ui,
            interaction_source=interaction_source,
        )
        self.loop = SensorLoop(self.engine, on_snapshot=self._on_snapshot)
        logger.info(
            "Engine ready (bucket=%s, thresholds=%s)",
            self.engine.bucket, self.engine.thresholds.to_dict(),
        )

    def _open_hardware(self):
        reading_source, gaze_source, interaction_source = self.readings, self.gaze, self.interactions
        if settings.CAMERA_ENABLED:
            try:
                from proximity_engine.sources.camera import (
                    CameraProximitySource, FaceMeshGazeSource, FrameGrabber,
                )
                self._grabber = FrameGrabber(settings.CAMERA_INDEX)
                self._face_mesh = FaceMeshGazeSource(self._grabber)
                self._camera = CameraProximitySource(self._grabber)
                reading_source = self._camera
                gaze_source = self._face_mesh
                logger.info("Camera %d selected as proximity and gaze source", settings.CAMERA_INDEX)
            except Exception as e:
                logger.error(f"Camera sources unavailable, falling back to pushed readings: {e}")
                self._grabber = None
                self._camera = None
                self._face_mesh = None
        if settings.TOUCH_ENABLED:
            try:
                from proximity_engine.sources.touch import TouchInteractionSource
                self._touch = TouchInteractionSource()
                interaction_source = self._touch
            except Exception as e:
                logger.error(f"Touch listener unavailable: {e}")
                self._touch = None
        return reading_source, gaze_source, interaction_source

    async def _on_snapshot(self, snapshot: DetectionSnapshot):
        if (self._context_refreshed_at is None
                or snapshot.timestamp - self._context_refreshed_at >= settings.CONTEXT_REFRESH_S * 1000.0):
            self.refresh_context()
            self._context_refreshed_at = snapshot.timestamp
        if ws_manager.has_listeners("detection"):
            await ws_manager.send_snapshot(snapshot.to_dict())

    def refresh_context(self, at: Optional[datetime] = None) -> bool:
        """Hour / weekday from the clock, lighting from the camera when there is one"""
        lighting = self._camera.lighting_level if self._camera is not None else None
        return self.engine.refresh_context(EnvironmentContext.now(at, lighting_level=lighting))

    # ─────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────

    async def start(self):
        if self._grabber is not None:
            self._grabber.start()
        if self._touch is not None:
            self._touch.start()
        self.engine.update_context(EnvironmentContext.now())
        self.loop.start()

    async def stop(self):
        await self.loop.stop()
        self.engine.shutdown()
        if self._face_mesh is not None:
            self._face_mesh.close()
        if self._grabber is not None:
            self._grabber.stop()
        if self._touch is not None:
            self._touch.stop()
        logger.info("Engine service stopped")

    @property
    def running(self) -> bool:
        return self.loop.running


def get_engine_service() -> EngineService:
    return EngineService.get_instance()


def reset_engine_service(service: Optional[EngineService] = None) -> Optional[EngineService]:
    """Replace the process-wide instance (None = rebuild lazily)"""
    EngineService._instance = service
    return service
