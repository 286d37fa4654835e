"""
Gaze and head pose from MediaPipe face-mesh landmarks.
Landmarks are anything with normalised .x / .y attributes, indexed like the
478-point refined face mesh.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from ..gaze import GazeDirection


class FaceLandmarks:
    """Landmark indices used for gaze / head pose"""
    NOSE_TIP = 1
    LEFT_EYE_OUTER = 33
    LEFT_EYE_INNER = 133
    RIGHT_EYE_OUTER = 263
    RIGHT_EYE_INNER = 362
    LEFT_IRIS = 468
    RIGHT_IRIS = 473


YAW_LIMIT = 35.0
PITCH_LIMIT = 25.0


@dataclass(frozen=True)
class HeadPose:
    yaw: float
    pitch: float
    roll: float


def _iris_ratio(landmarks, outer: int, inner: int, iris: int) -> Optional[float]:
    left = min(landmarks[outer].x, landmarks[inner].x)
    width = abs(landmarks[outer].x - landmarks[inner].x)
    if width <= 0:
        return None
    return (landmarks[iris].x - left) / width


def gaze_from_iris(landmarks: Sequence) -> Tuple[GazeDirection, float]:
    """
    Horizontal iris position between the eye corners, averaged over both eyes
    (0 = one corner, 0.5 = centred, 1 = other corner).
    """
    if landmarks is None or len(landmarks) <= FaceLandmarks.RIGHT_IRIS:
        return GazeDirection.NONE, 0.0

    ratios = [
        _iris_ratio(landmarks, FaceLandmarks.LEFT_EYE_OUTER, FaceLandmarks.LEFT_EYE_INNER, FaceLandmarks.LEFT_IRIS),
        _iris_ratio(landmarks, FaceLandmarks.RIGHT_EYE_OUTER, FaceLandmarks.RIGHT_EYE_INNER, FaceLandmarks.RIGHT_IRIS),
    ]
    ratios = [r for r in ratios if r is not None]
    if not ratios:
        return GazeDirection.UNKNOWN, 0.0
    pos = sum(ratios) / len(ratios)

    if 0.35 <= pos <= 0.65:
        centredness = 1.0 - abs(pos - 0.5) * 2.0
        return GazeDirection.LOOKING_AT_SCREEN, centredness * 100.0
    if pos < 0.25 or pos > 0.75:
        awayness = abs(pos - 0.5) * 2.0 - 0.5
        return GazeDirection.LOOKING_AWAY, max(0.0, min(100.0, awayness * 100.0))
    return GazeDirection.UNKNOWN, 50.0


def head_pose_from_landmarks(landmarks: Sequence) -> Optional[HeadPose]:
    """Coarse yaw / pitch / roll in degrees from nose and eye corners"""
    if not landmarks or len(landmarks) <= FaceLandmarks.RIGHT_EYE_OUTER:
        return None
    nose = landmarks[FaceLandmarks.NOSE_TIP]
    left = landmarks[FaceLandmarks.LEFT_EYE_OUTER]
    right = landmarks[FaceLandmarks.RIGHT_EYE_OUTER]

    eye_center_x = (left.x + right.x) / 2
    eye_center_y = (left.y + right.y) / 2
    eye_distance = abs(left.x - right.x)

    yaw = (nose.x - eye_center_x) / eye_distance * 90.0 if eye_distance > 0 else 0.0
    pitch = (nose.y - eye_center_y) * 100.0
    dx, dy = right.x - left.x, right.y - left.y
    roll = math.degrees(math.atan2(dy, dx)) if dx != 0 else 0.0
    return HeadPose(yaw=yaw, pitch=pitch, roll=roll)


def is_looking_at_camera(pose: Optional[HeadPose]) -> bool:
    if pose is None:
        return False
    return abs(pose.yaw) <= YAW_LIMIT and abs(pose.pitch) <= PITCH_LIMIT


def gaze_from_landmarks(landmarks: Sequence) -> Tuple[GazeDirection, float]:
    """Iris gaze, overridden to looking-away when the head is turned off-axis"""
    direction, confidence = gaze_from_iris(landmarks)
    pose = head_pose_from_landmarks(landmarks)
    if pose is not None and not is_looking_at_camera(pose):
        off_axis = max(abs(pose.yaw) / YAW_LIMIT, abs(pose.pitch) / PITCH_LIMIT)
        return GazeDirection.LOOKING_AWAY, min(100.0, 50.0 * off_axis)
    return direction, confidence
