# realtime.py — Per-conversation listener registry and fan-out
import logging
from typing import Any, Dict, List, Set

logger = logging.getLogger("certisphere.ws")


class ConversationHub:
    """Maps conversation id -> set of connected listeners.

    There is no explicit leave; a listener is dropped from every group when
    its connection goes away or a send to it fails.
    """

    def __init__(self):
        self._listeners: Dict[int, Set[Any]] = {}

    def join(self, conversation_id: int, websocket: Any) -> None:
        self._listeners.setdefault(conversation_id, set()).add(websocket)
        logger.info(f"WS joined conversation={conversation_id} listeners={len(self._listeners[conversation_id])}")

    def drop(self, websocket: Any) -> None:
        for conversation_id in list(self._listeners.keys()):
            self._listeners[conversation_id].discard(websocket)
            if not self._listeners[conversation_id]:
                del self._listeners[conversation_id]

    def listeners(self, conversation_id: int) -> List[Any]:
        return list(self._listeners.get(conversation_id, ()))

    async def publish(self, conversation_id: int, message: dict) -> int:
        """Send messageReceived to every current listener, sender included."""
        event = {"type": "messageReceived", "message": message}
        delivered = 0
        disconnected = []
        # Snapshot: joins may interleave with the awaits below
        for ws in self.listeners(conversation_id):
            try:
                await ws.send_json(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"WS send failed for conversation={conversation_id}: {e}")
                disconnected.append(ws)
        for ws in disconnected:
            self.drop(ws)
        return delivered

    def get_stats(self) -> dict:
        return {
            "conversations": len(self._listeners),
            "listeners": sum(len(group) for group in self._listeners.values()),
        }


# Global hub
hub = ConversationHub()
