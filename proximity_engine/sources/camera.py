"""
Camera-backed signal sources (OpenCV capture + MediaPipe face landmarker).

A FrameGrabber thread keeps only the newest frame; the proximity and gaze
sources process that frame when the engine pulls them, so the tick never waits
on the camera.
"""

import logging
import os
import threading
import time
import urllib.request
from typing import Optional, Tuple

import cv2
import mediapipe as mp
import numpy as np

from ..detection_core import SensorReading
from ..gaze import GazeDirection, GazeReading
from .gaze_landmarks import gaze_from_landmarks
from .motion import MotionProximityEstimator, lighting_level

logger = logging.getLogger("engageos.camera")


# ============================================================================
# MEDIAPIPE COMPATIBILITY LAYER
# mediapipe >= 0.10.30 removed mp.solutions; use mp.tasks API instead.
# ============================================================================

_USE_TASKS_API = not hasattr(mp, 'solutions')

_MODELS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), '.models')
_FACE_MODEL_PATH = os.path.join(_MODELS_DIR, 'face_landmarker.task')
_FACE_MODEL_URL = (
    'https://storage.googleapis.com/mediapipe-models/'
    'face_landmarker/face_landmarker/float16/latest/face_landmarker.task'
)


def _ensure_face_model():
    """Download the face landmarker .task file if not already cached."""
    if os.path.exists(_FACE_MODEL_PATH):
        return
    os.makedirs(_MODELS_DIR, exist_ok=True)
    logger.info("Downloading %s ...", os.path.basename(_FACE_MODEL_PATH))
    urllib.request.urlretrieve(_FACE_MODEL_URL, _FACE_MODEL_PATH)
    logger.info("Saved %s", _FACE_MODEL_PATH)


class FrameGrabber:
    """Background capture; `latest()` returns (frame, timestamp_ms) or (None, None)"""

    def __init__(self, camera_index: int = 0, width: int = 320, height: int = 240):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self._frame: Optional[np.ndarray] = None
        self._frame_at: Optional[float] = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._cap = None

    def start(self):
        if self._thread is not None:
            return
        self._cap = cv2.VideoCapture(self.camera_index)
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        if not self._cap.isOpened():
            logger.warning("Camera %s could not be opened", self.camera_index)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="FrameGrabber", daemon=True)
        self._thread.start()

    def _run(self):
        while not self._stop_event.is_set():
            ok, frame = self._cap.read()
            if not ok:
                time.sleep(0.05)
                continue
            with self._lock:
                self._frame = frame
                self._frame_at = time.time() * 1000.0

    def latest(self) -> Tuple[Optional[np.ndarray], Optional[float]]:
        with self._lock:
            return self._frame, self._frame_at

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._cap is not None:
            self._cap.release()
            self._cap = None


class CameraProximitySource:
    """`get_reading()` for the engine: motion proximity of the newest frame"""

    def __init__(self, grabber: FrameGrabber, sensitivity: float = 15.0, person_id: str = "primary"):
        self.grabber = grabber
        self.person_id = person_id
        self.estimator = MotionProximityEstimator(sensitivity=sensitivity)
        self._last_frame_at: Optional[float] = None
        self.lighting_level: Optional[float] = None

    def get_reading(self) -> Optional[SensorReading]:
        frame, frame_at = self.grabber.latest()
        if frame is None or frame_at == self._last_frame_at:
            return None
        self._last_frame_at = frame_at
        self.lighting_level = lighting_level(frame)
        proximity = self.estimator.estimate(frame)
        if proximity is None:
            return None
        return SensorReading(proximity=proximity, timestamp=frame_at, person_id=self.person_id)


class FaceMeshGazeSource:
    """`get_gaze()` for the engine: iris gaze of the newest frame"""

    def __init__(self, grabber: FrameGrabber, person_id: Optional[str] = "primary"):
        self.grabber = grabber
        self.person_id = person_id
        self._last_frame_at: Optional[float] = None
        self._initialize_mediapipe()

    def _initialize_mediapipe(self):
        if _USE_TASKS_API:
            _ensure_face_model()
            face_opts = mp.tasks.vision.FaceLandmarkerOptions(
                base_options=mp.tasks.BaseOptions(
                    model_asset_path=_FACE_MODEL_PATH
                ),
                running_mode=mp.tasks.vision.RunningMode.IMAGE,
                num_faces=1,
            )
            self._face_landmarker = (
                mp.tasks.vision.FaceLandmarker.create_from_options(face_opts)
            )
        else:
            self.face_mesh = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=False,
                max_num_faces=1,
                refine_landmarks=True,
                min_detection_confidence=0.5,
                min_tracking_confidence=0.5
            )

    def _detect(self, frame: np.ndarray):
        frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        if _USE_TASKS_API:
            mp_image = mp.Image(
                image_format=mp.ImageFormat.SRGB,
                data=np.ascontiguousarray(frame_rgb),
            )
            result = self._face_landmarker.detect(mp_image)
            return result.face_landmarks[0] if result.face_landmarks else None
        result = self.face_mesh.process(frame_rgb)
        if not result.multi_face_landmarks:
            return None
        return result.multi_face_landmarks[0].landmark

    def get_gaze(self) -> Optional[GazeReading]:
        frame, frame_at = self.grabber.latest()
        if frame is None or frame_at == self._last_frame_at:
            return None
        self._last_frame_at = frame_at

        landmarks = self._detect(frame)
        if landmarks is None:
            return GazeReading(GazeDirection.NONE, 0.0, face_detected=False,
                               person_id=self.person_id, timestamp=frame_at)
        direction, confidence = gaze_from_landmarks(landmarks)
        return GazeReading(direction, confidence, face_detected=True,
                           person_id=self.person_id, timestamp=frame_at)

    def close(self):
        """Release resources"""
        obj = getattr(self, '_face_landmarker', None) or getattr(self, 'face_mesh', None)
        if obj is not None and hasattr(obj, 'close'):
            obj.close()
