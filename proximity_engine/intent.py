"""
Intent Classifier
Fuses proximity level, its first derivative and the gaze adjustment into one
of five intent labels with a 0-100 confidence.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from .config import IntentConfig


class Intent(str, Enum):
    PASSING = "passing"
    APPROACHING = "approaching"
    LINGERING = "lingering"
    ENGAGED = "engaged"
    LEAVING = "leaving"


class Trend(str, Enum):
    APPROACH = "approach"
    RECEDE = "recede"
    STEADY = "steady"


@dataclass(frozen=True)
class Velocity:
    """lateral: frame widths / s, radial: proximity units / s (+ = approaching)"""
    lateral: float = 0.0
    radial: float = 0.0


@dataclass(frozen=True)
class IntentResult:
    intent: Intent
    confidence: float
    trend: Trend
    ambiguous: bool = False

    def to_dict(self):
        return {
            "intent": self.intent.value,
            "confidence": round(self.confidence, 1),
            "trend": self.trend.value,
            "ambiguous": self.ambiguous,
        }


def trend_of(velocity: Velocity, config: IntentConfig) -> Trend:
    if velocity.radial >= config.approach_velocity:
        return Trend.APPROACH
    if velocity.radial <= -config.approach_velocity:
        return Trend.RECEDE
    return Trend.STEADY


def classify(
    distance: float,
    velocity: Velocity,
    gaze_adjustment: float,
    streak: int = 1,
    dwell_ms: float = 0.0,
    config: Optional[IntentConfig] = None,
) -> IntentResult:
    """
    Classify one person's intent for the current tick.

    streak: consecutive ticks that showed the same trend (debounce).
    dwell_ms: how long the person has been near and gaze-confirmed.
    """
    cfg = config or IntentConfig()
    trend = trend_of(velocity, cfg)
    looking = gaze_adjustment > 0
    away = gaze_adjustment < 0
    sideways = abs(velocity.lateral) >= cfg.lateral_pass_speed
    ambiguous = False

    if trend is Trend.RECEDE:
        intent = Intent.LEAVING
    elif trend is Trend.APPROACH:
        intent = Intent.PASSING if sideways and not looking else Intent.APPROACHING
    elif distance < cfg.linger_distance or sideways:
        intent = Intent.PASSING
    elif looking:
        if distance >= cfg.engaged_distance and dwell_ms >= cfg.engaged_dwell_ms:
            intent = Intent.ENGAGED
        else:
            intent = Intent.LINGERING
    elif away:
        intent = Intent.PASSING
    else:
        # Near and still, but nothing says where they are looking
        intent = Intent.LINGERING
        ambiguous = True

    # Trend consistency: 40..80
    consistency = min(max(streak, 1), cfg.streak_saturation) / cfg.streak_saturation
    confidence = 40.0 + 40.0 * consistency

    # Gaze agreement: up to +20 when the gaze supports the label
    if intent in (Intent.APPROACHING, Intent.LINGERING, Intent.ENGAGED) and looking:
        confidence += gaze_adjustment
    elif intent in (Intent.PASSING, Intent.LEAVING) and away:
        confidence += abs(gaze_adjustment) * (2.0 / 3.0)
    elif intent in (Intent.APPROACHING, Intent.LINGERING) and away:
        confidence -= abs(gaze_adjustment) * (2.0 / 3.0)

    if ambiguous:
        confidence = min(confidence, cfg.ambiguous_confidence_cap)

    return IntentResult(
        intent=intent,
        confidence=max(0.0, min(100.0, confidence)),
        trend=trend,
        ambiguous=ambiguous,
    )


def smooth_intent(history: Sequence[Intent], agreement: float = 0.7) -> Optional[Intent]:
    """
    Temporal majority vote: the dominant label wins only with `agreement`
    share of the history; otherwise the most recent label is kept.
    """
    if not history:
        return None
    counts = Counter(history)
    label, count = counts.most_common(1)[0]
    if count >= len(history) * agreement:
        return label
    return history[-1]
