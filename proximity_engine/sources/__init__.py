"""
Signal sources feeding the DetectionEngine.

The camera and touch modules need the `vision` / `kiosk` extras and are not
imported here.
"""

from .motion import MotionProximityEstimator, lighting_level
from .gaze_landmarks import gaze_from_iris, gaze_from_landmarks, head_pose_from_landmarks, is_looking_at_camera
from .queue_sources import InteractionQueue, LatestGazeSource, LatestReadingSource

__all__ = [
    "MotionProximityEstimator",
    "lighting_level",
    "gaze_from_iris",
    "gaze_from_landmarks",
    "head_pose_from_landmarks",
    "is_looking_at_camera",
    "InteractionQueue",
    "LatestGazeSource",
    "LatestReadingSource",
]
