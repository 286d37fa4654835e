"""Frame-difference proximity estimation (no ML model needed)."""

from typing import Optional

import numpy as np


def to_gray(frame: np.ndarray) -> np.ndarray:
    """Channel mean as float32; accepts HxW or HxWxC uint8 frames"""
    arr = np.asarray(frame, dtype=np.float32)
    if arr.ndim == 3:
        arr = arr[..., :3].mean(axis=2)
    return arr


def lighting_level(frame: np.ndarray) -> float:
    """Mean brightness 0-255; feeds EnvironmentContext.lighting_level"""
    return float(to_gray(frame).mean())


class MotionProximityEstimator:
    """
    Motion score from sampled pixel differences between consecutive frames,
    plus a presence term from how far the mean brightness is from mid-grey
    (a body close to the lens blocks or reflects light).
    """

    def __init__(self, sensitivity: float = 15.0, sample_step: int = 2):
        self.sensitivity = sensitivity
        self.sample_step = sample_step
        self._previous: Optional[np.ndarray] = None
        self.last_motion = 0.0
        self.last_brightness = 0.0

    def reset(self):
        self._previous = None

    def estimate(self, frame: np.ndarray) -> Optional[float]:
        """Proximity 0-100, or None for the very first frame"""
        gray = to_gray(frame)[::self.sample_step, ::self.sample_step]
        previous, self._previous = self._previous, gray
        if previous is None or previous.shape != gray.shape:
            return None

        diff = np.abs(gray - previous)
        motion = float((diff > self.sensitivity).mean() * 100.0)
        brightness = float(gray.mean())
        self.last_motion = motion
        self.last_brightness = brightness
        return min(100.0, motion + abs(brightness - 128.0) / 2.0)
