"""
EngageOS Kiosk Adapters
Connect the engine's trigger sink and feedback UI to the websocket channels.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Set

from app.services.websocket_manager import ConnectionManager
from proximity_engine.feedback import FeedbackAnswer
from proximity_engine.triggers import TriggerContext, TriggerKind

logger = logging.getLogger("engageos.kiosk")


class WebsocketTriggerSink:
    """
    Broadcasts trigger requests on the "triggers" channel. The engine calls
    request_trigger synchronously from inside a tick, so the send is scheduled
    as a task on the running loop.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self.sent = 0
        self._tasks: Set[asyncio.Task] = set()

    def request_trigger(self, kind: TriggerKind, context: TriggerContext) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; trigger %s not broadcast", kind.value)
            return
        task = loop.create_task(self.manager.send_trigger(kind.value, context.to_dict()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.sent += 1


class WebsocketFeedbackUI:
    """
    Shows the "was this right?" prompt on the kiosk. Each prompt gets an id;
    the answer arrives later through resolve() (REST or websocket message).
    Cancellation by the collector's auto-close timeout closes the prompt.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self._pending: Dict[str, asyncio.Future] = {}

    @property
    def open_prompts(self):
        return list(self._pending)

    async def show_feedback_prompt(self, trigger_type: str, params: Dict[str, Any]) -> Optional[FeedbackAnswer]:
        prompt_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[prompt_id] = future
        try:
            await self.manager.send_feedback_prompt(prompt_id, trigger_type, params)
            return await future
        finally:
            self._pending.pop(prompt_id, None)
            if future.cancelled() or not future.done():
                future.cancel()
                await self.manager.send_feedback_closed(prompt_id)

    def resolve(self, prompt_id: str, was_correct: Optional[bool]) -> bool:
        """Deliver an answer (None = dismissed). False if the prompt is unknown or closed"""
        if was_correct is not None and not isinstance(was_correct, bool):
            raise TypeError(f"was_correct must be a bool or None, not {type(was_correct).__name__}")
        future = self._pending.get(prompt_id)
        if future is None or future.done():
            return False
        future.get_loop().call_soon_threadsafe(
            self._settle, future, None if was_correct is None else FeedbackAnswer(was_correct)
        )
        return True

    @staticmethod
    def _settle(future: asyncio.Future, answer: Optional[FeedbackAnswer]):
        if not future.done():
            future.set_result(answer)
