# routers/websocket_router.py — Real-time conversation delivery over WebSocket
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from auth import AuthService
from conversations import conversations
from database import get_db_context
from message_channel import MessageChannel, channel as default_channel
from models import User, UserRole
from realtime import ConversationHub, hub as default_hub

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("certisphere.ws")


class RealtimeGateway:
    """Socket adapter over the message channel.

    Inbound events are ``joinConversation``, ``newMessage`` and ``ping``.
    Failures are logged server-side only; the emitting socket gets no error
    frame.
    """

    def __init__(self, hub: ConversationHub, message_channel: MessageChannel, session_factory=None):
        self.hub = hub
        self.channel = message_channel
        self.session_factory = session_factory

    async def identify(self, token: str) -> Optional[Dict[str, Any]]:
        payload = AuthService.decode_access_token(token)
        if not payload:
            return None
        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError):
            return None
        async with get_db_context(self.session_factory) as db:
            user = await db.get(User, user_id)
            if user is None:
                return None
            return {"user_id": user.id, "role": user.role.value}

    async def handle_frame(self, websocket: Any, identity: Dict[str, Any], raw: str) -> None:
        """Parses and dispatches one text frame. A bad frame never ends the connection."""
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"WS malformed frame from user={identity['user_id']}")
            return
        if not isinstance(data, dict):
            return
        try:
            await self.dispatch(websocket, identity, data)
        except Exception as e:
            logger.error(f"WS event {data.get('type')!r} failed: {e}", exc_info=True)

    async def dispatch(self, websocket: Any, identity: Dict[str, Any], data: Dict[str, Any]) -> None:
        msg_type = data.get("type", "")

        if msg_type == "ping":
            await websocket.send_json({"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()})
        elif msg_type == "joinConversation":
            await self.join(websocket, identity, data.get("conversationId"))
        elif msg_type == "newMessage":
            await self.new_message(identity, data)
        else:
            logger.warning(f"WS unknown event type={msg_type!r} from user={identity['user_id']}")

    async def join(self, websocket: Any, identity: Dict[str, Any], conversation_id: Any) -> None:
        try:
            conversation_id = int(conversation_id)
        except (TypeError, ValueError):
            logger.warning(f"WS join with invalid conversationId={conversation_id!r}")
            return
        async with get_db_context(self.session_factory) as db:
            result = await conversations.get_accessible(
                db, conversation_id, identity["user_id"], identity["role"] == UserRole.ADMIN.value,
            )
        if not result.ok:
            logger.warning(f"WS join refused for user={identity['user_id']} conversation={conversation_id}: {result.message}")
            return
        self.hub.join(conversation_id, websocket)

    async def new_message(self, identity: Dict[str, Any], data: Dict[str, Any]) -> None:
        conversation_id = data.get("conversationId")
        try:
            conversation_id = int(conversation_id)
            sender_id = int(data.get("senderId"))
        except (TypeError, ValueError):
            logger.warning(f"WS newMessage with invalid conversationId={conversation_id!r} "
                           f"or senderId={data.get('senderId')!r}")
            return
        if sender_id != identity["user_id"] or data.get("senderRole") != identity["role"]:
            logger.warning(f"WS newMessage sender mismatch for user={identity['user_id']} conversation={conversation_id}")
            return
        try:
            async with get_db_context(self.session_factory) as db:
                result = await self.channel.post_message(
                    db, conversation_id, identity["user_id"], identity["role"], data.get("content"),
                )
        except Exception as e:
            logger.error(f"WS newMessage failed for conversation={conversation_id}: {e}", exc_info=True)
            return
        if not result.ok:
            logger.warning(f"WS newMessage rejected for conversation={conversation_id}: {result.message}")
            return
        await self.hub.publish(conversation_id, result.value)


# Global gateway
gateway = RealtimeGateway(default_hub, default_channel)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
):
    """Realtime endpoint; listeners join conversations and receive messageReceived events"""
    identity = await gateway.identify(token)
    if not identity:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    await websocket.accept()
    logger.info(f"WS connected: user={identity['user_id']} role={identity['role']}")
    await websocket.send_json({
        "type": "connected",
        "user_id": identity["user_id"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })

    try:
        while True:
            raw = await websocket.receive_text()
            await gateway.handle_frame(websocket, identity, raw)
    except WebSocketDisconnect:
        logger.info(f"WS disconnected: user={identity['user_id']}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        gateway.hub.drop(websocket)


@router.get("/ws/stats")
async def websocket_stats():
    """Realtime listener statistics"""
    return gateway.hub.get_stats()
