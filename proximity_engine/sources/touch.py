"""Touch / click interactions on the kiosk screen via a global pynput hook."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Deque, List

from pynput import mouse


class TouchInteractionSource:
    """
    Collects presses on the listener thread; `get_interactions()` drains them
    on the engine's thread. Touchscreens report taps as mouse presses.
    """

    def __init__(self, max_pending: int = 100) -> None:
        self._presses: Deque[float] = deque(maxlen=max_pending)
        self._lock = threading.Lock()
        self._listener = None
        self.last_press_at = None

    def start(self) -> None:
        if self._listener is not None and self._listener.running:
            return
        self._listener = mouse.Listener(on_click=self._on_click)
        self._listener.start()

    def _on_click(self, x, y, button, pressed) -> None:
        if not pressed:
            return
        now = time.time() * 1000.0
        with self._lock:
            self._presses.append(now)
            self.last_press_at = now

    def get_interactions(self) -> List[float]:
        with self._lock:
            presses = list(self._presses)
            self._presses.clear()
        return presses

    def stop(self) -> None:
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
