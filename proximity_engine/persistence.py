"""
Persistence interface and the write-behind outbox used by the engine.

Writes are attempted immediately; a failed write is kept in memory and retried
at the next learning-mode boundary or periodic recalibration. The backlog is
bounded; the oldest pending write is dropped first. Nothing here ever raises
into the tick.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from .diagnostics import Diagnostics
from .errors import InvalidThresholdSet
from .thresholds import ThresholdSet

logger = logging.getLogger("engageos.persistence")


class EngagementStore(Protocol):
    def save_session(self, session) -> None: ...

    def save_feedback(self, record) -> None: ...

    def load_thresholds(self, bucket_key: str) -> Optional[ThresholdSet]: ...

    def save_thresholds(self, bucket_key: str, thresholds: ThresholdSet) -> None: ...


class InMemoryStore:
    """Process-local store; the default when no database is configured"""

    def __init__(self):
        self.sessions: List[Any] = []
        self.feedback: List[Any] = []
        self.thresholds: Dict[str, ThresholdSet] = {}

    def save_session(self, session) -> None:
        self.sessions.append(session)

    def save_feedback(self, record) -> None:
        self.feedback.append(record)

    def load_thresholds(self, bucket_key: str) -> Optional[ThresholdSet]:
        return self.thresholds.get(bucket_key)

    def save_thresholds(self, bucket_key: str, thresholds: ThresholdSet) -> None:
        self.thresholds[bucket_key] = thresholds


@dataclass
class PendingWrite:
    kind: str               # "session" | "feedback" | "thresholds"
    args: tuple
    attempts: int = 0
    last_error: str = ""

    def describe(self) -> str:
        first = self.args[0]
        ident = getattr(first, "id", None) or (first if isinstance(first, str) else type(first).__name__)
        return f"{self.kind} {ident}"


class PersistenceOutbox:
    def __init__(self, store: EngagementStore, max_attempts: int = 3,
                 diagnostics: Optional[Diagnostics] = None, max_pending: int = 1000):
        self.store = store
        self.max_attempts = max_attempts
        self.max_pending = max_pending
        self.diagnostics = diagnostics
        self.pending: List[PendingWrite] = []
        self.written = 0
        self.dropped = 0

    def _writer(self, kind: str) -> Callable:
        return {
            "session": self.store.save_session,
            "feedback": self.store.save_feedback,
            "thresholds": self.store.save_thresholds,
        }[kind]

    def _attempt(self, write: PendingWrite) -> bool:
        write.attempts += 1
        try:
            self._writer(write.kind)(*write.args)
        except Exception as exc:
            write.last_error = str(exc) or type(exc).__name__
            if self.diagnostics:
                self.diagnostics.persistence_failures += 1
            logger.warning(
                "Write failed for %s (attempt %d/%d): %s",
                write.describe(), write.attempts, self.max_attempts, write.last_error,
            )
            return False
        self.written += 1
        return True

    def _enqueue(self, kind: str, *args) -> bool:
        write = PendingWrite(kind=kind, args=args)
        if self._attempt(write):
            return True
        if write.attempts >= self.max_attempts:
            self._drop(write)
        else:
            self.pending.append(write)
            while len(self.pending) > self.max_pending:
                self._drop(self.pending.pop(0))
        return False

    def _drop(self, write: PendingWrite):
        self.dropped += 1
        message = (
            f"Dropped {write.describe()} after {write.attempts} failed writes: {write.last_error}"
        )
        if self.diagnostics:
            self.diagnostics.dropped_records += 1
            self.diagnostics.warn(message)
        else:
            logger.warning(message)

    # ------------------------------------------------------------------

    def save_session(self, session) -> bool:
        return self._enqueue("session", session)

    def save_feedback(self, record) -> bool:
        return self._enqueue("feedback", record)

    def save_thresholds(self, bucket_key: str, thresholds: ThresholdSet) -> bool:
        return self._enqueue("thresholds", bucket_key, thresholds)

    def load_thresholds(self, bucket_key: str) -> Optional[ThresholdSet]:
        """Read failures and malformed records read as 'nothing stored'"""
        try:
            loaded = self.store.load_thresholds(bucket_key)
        except Exception as exc:
            logger.warning("Could not load thresholds for %s: %s", bucket_key, exc)
            return None
        if loaded is None:
            return None
        if not isinstance(loaded, ThresholdSet):
            try:
                loaded = ThresholdSet.from_mapping(loaded)
            except InvalidThresholdSet as exc:
                logger.warning("Ignoring stored thresholds for %s: %s", bucket_key, exc.reason)
                return None
        return loaded

    def flush(self) -> int:
        """Retry everything pending; returns how many writes succeeded"""
        if not self.pending:
            return 0
        retry, self.pending = self.pending, []
        succeeded = 0
        for write in retry:
            if self._attempt(write):
                succeeded += 1
            elif write.attempts >= self.max_attempts:
                self._drop(write)
            else:
                self.pending.append(write)
        logger.info("Outbox flush: %d written, %d still pending", succeeded, len(self.pending))
        return succeeded

    def __len__(self):
        return len(self.pending)
