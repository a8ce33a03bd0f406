# message_channel.py — Append messages, update conversation recency/status, fan out
"""
One operation shared by both entry points (HTTP POST and the WebSocket
``newMessage`` event). Within a call the steps always run in this order:

1. reject blank content
2. insert the message
3. bump the conversation's updated_at
4. read the status; unless it is team-chat, set answered (admin sender) or
   pending (client sender)

Concurrent senders on the same conversation may interleave; the status is
last-writer-wins.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Conversation, ConversationStatus, Message, User, UserRole, utcnow
from realtime import hub
from results import ServiceResult, validation_error, authorization_error, not_found, server_error

logger = logging.getLogger("certisphere.messages")

Publisher = Callable[[int, dict], Awaitable[Any]]


def serialize_message(msg: Message, client_code: Optional[str]) -> Dict[str, Any]:
    return {
        "id": msg.id,
        "conversation_id": msg.conversation_id,
        "sender_id": msg.sender_id,
        "sender_role": msg.sender_role.value if isinstance(msg.sender_role, UserRole) else msg.sender_role,
        "content": msg.content,
        "created_at": msg.created_at.isoformat() if msg.created_at else None,
        "client_code": client_code,
    }


def status_after_message(current: Optional[ConversationStatus], sender_role: UserRole) -> Optional[ConversationStatus]:
    if current == ConversationStatus.TEAM_CHAT:
        return current
    return ConversationStatus.ANSWERED if sender_role == UserRole.ADMIN else ConversationStatus.PENDING


class MessageChannel:
    def __init__(self, publisher: Optional[Publisher] = None):
        self.publisher = publisher

    async def post_message(
        self,
        db: AsyncSession,
        conversation_id: int,
        sender_id: int,
        sender_role: Any,
        content: Optional[str],
    ) -> ServiceResult:
        if not content or not content.strip():
            return validation_error("Message content required")
        try:
            role = UserRole(sender_role)
        except ValueError:
            return validation_error("senderRole must be 'client' or 'admin'")

        row = (await db.execute(
            select(Conversation.client_id, User.user_code)
            .join(User, User.id == Conversation.client_id)
            .where(Conversation.id == conversation_id)
        )).first()
        if row is None:
            return not_found("Conversation not found")
        owner_id, client_code = row
        if role == UserRole.CLIENT and owner_id != sender_id:
            return authorization_error("Not a participant of this conversation")

        try:
            msg = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                sender_role=role,
                content=content,
                created_at=utcnow(),
            )
            db.add(msg)
            await db.flush()

            await db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

            current = (await db.execute(
                select(Conversation.conversation_status).where(Conversation.id == conversation_id)
            )).scalar_one_or_none()
            if current != ConversationStatus.TEAM_CHAT:
                await db.execute(
                    update(Conversation)
                    .where(Conversation.id == conversation_id)
                    .values(conversation_status=status_after_message(current, role))
                    .execution_options(synchronize_session=False)
                )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Message insert failed for conversation={conversation_id}: {e}")
            return server_error()

        return ServiceResult.success(serialize_message(msg, client_code))

    async def send(
        self,
        db: AsyncSession,
        conversation_id: int,
        sender_id: int,
        sender_role: Any,
        content: Optional[str],
    ) -> ServiceResult:
        """post_message, then fan the stored message out to listeners."""
        result = await self.post_message(db, conversation_id, sender_id, sender_role, content)
        if result.ok and self.publisher is not None:
            try:
                await self.publisher(conversation_id, result.value)
            except Exception as e:
                logger.error(f"Fan-out failed for conversation={conversation_id}: {e}")
        return result

    async def list_messages(self, db: AsyncSession, conversation_id: int) -> List[Dict[str, Any]]:
        rows = (await db.execute(
            select(Message, User.user_code)
            .join(Conversation, Conversation.id == Message.conversation_id)
            .join(User, User.id == Conversation.client_id)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )).all()
        return [serialize_message(msg, client_code) for msg, client_code in rows]


channel = MessageChannel(publisher=hub.publish)


def get_message_channel() -> MessageChannel:
    return channel
