"""
Outbound trigger requests (ambient audio, walkup greeting, stare check-in).
The engine only requests a trigger; how it is realised is up to the sink.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol


class TriggerKind(str, Enum):
    AMBIENT = "ambient"
    WALKUP = "walkup"
    STARE = "stare"


# Triggers whose correctness the visitor can be asked about
FEEDBACK_ELIGIBLE = (TriggerKind.AMBIENT, TriggerKind.WALKUP)


@dataclass(frozen=True)
class TriggerContext:
    """Detection parameters active when a trigger fired"""
    kind: TriggerKind
    person_id: Optional[str]
    proximity: float
    threshold: float
    baseline: float
    intent: Optional[str]
    confidence: float
    gaze_direction: str
    gaze_confidence: float
    bucket: str
    timestamp: float
    learning: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "person_id": self.person_id,
            "proximity": round(self.proximity, 2),
            "threshold": round(self.threshold, 2),
            "baseline": round(self.baseline, 2),
            "intent": self.intent,
            "confidence": round(self.confidence, 1),
            "gaze_direction": self.gaze_direction,
            "gaze_confidence": round(self.gaze_confidence, 1),
            "bucket": self.bucket,
            "timestamp": self.timestamp,
            "learning": self.learning,
        }


class TriggerSink(Protocol):
    def request_trigger(self, kind: TriggerKind, context: TriggerContext) -> None:
        """Non-blocking; must not wait for the trigger to complete"""
        ...


class RecordingTriggerSink:
    """Keeps every request in memory (tests, headless runs)"""

    def __init__(self):
        self.requests = []

    def request_trigger(self, kind: TriggerKind, context: TriggerContext) -> None:
        self.requests.append((kind, context))

    @property
    def kinds(self):
        return [kind for kind, _ in self.requests]
