"""
Engine error taxonomy.

None of these are allowed to escape a detection tick; they exist so that the
places that *can* fail (sources, stores, calibration) report failures with a
precise type that the engine catches and degrades on.
"""


class EngagementError(Exception):
    """Base class for proximity engine errors"""


class SignalUnavailable(EngagementError):
    """A sensor or gaze source produced no usable reading for a tick"""

    def __init__(self, source: str, reason: str = "no reading"):
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


class PersistenceWriteFailure(EngagementError):
    """A store rejected or failed a write"""

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"failed to save {kind}: {reason}")


class InvalidThresholdSet(EngagementError):
    """A computed or loaded ThresholdSet violates its invariants"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)
