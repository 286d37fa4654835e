"""
Feedback Collector
Asks the visitor whether a just-fired ambient/walkup trigger was right.
One prompt at a time; a prompt that is not answered within the auto-close
window is dropped without producing a record.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from .triggers import FEEDBACK_ELIGIBLE, TriggerContext

logger = logging.getLogger("engageos.feedback")


@dataclass(frozen=True)
class FeedbackAnswer:
    was_correct: bool


@dataclass(frozen=True)
class FeedbackRecord:
    trigger_type: str
    was_correct: bool
    proximity_level: float
    threshold: float
    baseline: float
    intent: Optional[str]
    confidence: float
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_context(cls, context: TriggerContext, was_correct: bool, timestamp: float) -> "FeedbackRecord":
        return cls(
            trigger_type=context.kind.value,
            was_correct=was_correct,
            proximity_level=context.proximity,
            threshold=context.threshold,
            baseline=context.baseline,
            intent=context.intent,
            confidence=context.confidence,
            timestamp=timestamp,
        )


class FeedbackUI(Protocol):
    async def show_feedback_prompt(self, trigger_type: str, params: Dict[str, Any]) -> Optional[FeedbackAnswer]:
        """Resolve with the answer, or None when dismissed"""
        ...


def _was_correct(answer: Any) -> Optional[bool]:
    if isinstance(answer, FeedbackAnswer):
        return answer.was_correct if isinstance(answer.was_correct, bool) else None
    if isinstance(answer, bool):
        return answer
    if isinstance(answer, Mapping) and isinstance(answer.get("was_correct"), bool):
        return answer["was_correct"]
    return None


class FeedbackCollector:
    def __init__(
        self,
        ui: FeedbackUI,
        on_record: Optional[Callable[[FeedbackRecord], None]] = None,
        auto_close_ms: float = 8000.0,
        enabled: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.ui = ui
        self.on_record = on_record
        self.auto_close_ms = auto_close_ms
        self.enabled = enabled
        self._clock = clock or (lambda: time.time() * 1000.0)
        self._busy = False
        self._task: Optional[asyncio.Task] = None

        self.shown = 0
        self.answered = 0
        self.timeouts = 0
        self.suppressed = 0

    @property
    def active(self) -> bool:
        return self._busy

    def request(self, context: TriggerContext) -> bool:
        """
        Schedule a prompt for a trigger that just fired. Returns False when
        the trigger is not eligible, a prompt is already open, or there is no
        running event loop to host it.
        """
        if not self.enabled or context.kind not in FEEDBACK_ELIGIBLE:
            return False
        if self._busy:
            self.suppressed += 1
            logger.debug("Feedback prompt for %s suppressed; one is already open", context.kind.value)
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping feedback prompt for %s", context.kind.value)
            return False
        self._busy = True
        self._task = loop.create_task(self.collect(context))
        return True

    async def collect(self, context: TriggerContext) -> Optional[FeedbackRecord]:
        """Show one prompt and wait for it; None means nothing was recorded"""
        self._busy = True
        self.shown += 1
        try:
            try:
                answer = await asyncio.wait_for(
                    self.ui.show_feedback_prompt(context.kind.value, context.to_dict()),
                    timeout=self.auto_close_ms / 1000.0,
                )
            except asyncio.TimeoutError:
                self.timeouts += 1
                logger.info("Feedback prompt for %s auto-closed after %.0fms",
                            context.kind.value, self.auto_close_ms)
                return None
            except Exception as exc:
                logger.warning("Feedback UI failed for %s: %s", context.kind.value, exc)
                return None

            was_correct = _was_correct(answer)
            if was_correct is None:
                logger.debug("Feedback prompt for %s dismissed without an answer", context.kind.value)
                return None

            record = FeedbackRecord.from_context(context, was_correct, self._clock())
            self.answered += 1
            logger.info("Feedback: %s trigger was %s", record.trigger_type,
                        "correct" if was_correct else "incorrect")
            if self.on_record is not None:
                try:
                    self.on_record(record)
                except Exception:
                    logger.exception("Feedback record handler failed")
            return record
        finally:
            self._busy = False
            self._task = None

    def cancel(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_idle(self):
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def stats(self) -> Dict[str, int]:
        return {
            "shown": self.shown,
            "answered": self.answered,
            "timeouts": self.timeouts,
            "suppressed": self.suppressed,
        }
