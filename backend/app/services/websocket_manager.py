"""
EngageOS WebSocket Manager
Streams detection snapshots, trigger requests and feedback prompts to the kiosk UI.
"""

import logging
from typing import Dict, Set
from fastapi import WebSocket

logger = logging.getLogger("engageos.websocket")

CHANNELS = ("detection", "triggers", "feedback")


class ConnectionManager:
    """Manages WebSocket connections for real-time streaming"""

    def __init__(self):
        # Channel-based connections
        self.active_connections: Dict[str, Set[WebSocket]] = {c: set() for c in CHANNELS}

    async def connect(self, websocket: WebSocket, channel: str = "detection"):
        await websocket.accept()
        if channel not in self.active_connections:
            self.active_connections[channel] = set()
        self.active_connections[channel].add(websocket)
        logger.info(f"Client connected to channel: {channel} (total: {len(self.active_connections[channel])})")

    def disconnect(self, websocket: WebSocket, channel: str = "detection"):
        if channel in self.active_connections:
            self.active_connections[channel].discard(websocket)
        logger.info(f"Client disconnected from channel: {channel}")

    def has_listeners(self, channel: str) -> bool:
        return bool(self.active_connections.get(channel))

    async def broadcast_to_channel(self, channel: str, message: dict):
        """Send message to all clients on a channel"""
        if channel not in self.active_connections:
            return

        dead = set()
        for ws in list(self.active_connections[channel]):
            try:
                await ws.send_json(message)
            except Exception:
                dead.add(ws)

        for ws in dead:
            self.active_connections[channel].discard(ws)

    async def send_snapshot(self, snapshot: dict):
        """Per-tick detection snapshot"""
        await self.broadcast_to_channel("detection", {
            "type": "snapshot",
            "data": snapshot
        })

    async def send_trigger(self, kind: str, context: dict):
        """Ask the UI to run the content for a zone trigger"""
        await self.broadcast_to_channel("triggers", {
            "type": "trigger",
            "kind": kind,
            "data": context
        })

    async def send_feedback_prompt(self, prompt_id: str, trigger_type: str, params: dict):
        await self.broadcast_to_channel("feedback", {
            "type": "feedback_prompt",
            "prompt_id": prompt_id,
            "trigger_type": trigger_type,
            "data": params
        })

    async def send_feedback_closed(self, prompt_id: str):
        await self.broadcast_to_channel("feedback", {
            "type": "feedback_closed",
            "prompt_id": prompt_id
        })

    @property
    def total_connections(self) -> int:
        return sum(len(conns) for conns in self.active_connections.values())


# Global instance
ws_manager = ConnectionManager()
