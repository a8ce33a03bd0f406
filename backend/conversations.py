# conversations.py — Conversation creation, listing, staff patch, team-chat lookup
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Certificate, Conversation, ConversationStatus, User, UserRole, utcnow
from results import (
    ServiceResult, validation_error, authorization_error, not_found, conflict, server_error,
)

logger = logging.getLogger("certisphere.conversations")


def serialize_conversation(conv: Conversation, client_code: Optional[str] = None,
                           certificate_name: Optional[str] = None) -> Dict[str, Any]:
    data = {
        "id": conv.id,
        "client_id": conv.client_id,
        "admin_id": conv.admin_id,
        "certificate_id": conv.certificate_id,
        "conversation_status": conv.conversation_status.value if conv.conversation_status else None,
        "created_at": conv.created_at.isoformat() if conv.created_at else None,
        "updated_at": conv.updated_at.isoformat() if conv.updated_at else None,
    }
    if client_code is not None:
        data["client_code"] = client_code
        data["certificate_name"] = certificate_name
    return data


class ConversationManager:

    async def create_for_client(
        self,
        db: AsyncSession,
        client_id: int,
        admin_id: Optional[int] = None,
        certificate_id: Optional[int] = None,
    ) -> ServiceResult:
        if certificate_id is not None:
            # Ownership re-checked here, never taken from the request
            owned = (await db.execute(
                select(Certificate.id).where(Certificate.id == certificate_id, Certificate.user_id == client_id)
            )).scalar_one_or_none()
            if owned is None:
                return validation_error("Invalid certificateId")
        if admin_id is not None:
            admin = await db.get(User, admin_id)
            if admin is None or admin.role != UserRole.ADMIN:
                return validation_error("admin_id must reference a staff user")

        now = utcnow()
        conv = Conversation(
            client_id=client_id,
            admin_id=admin_id,
            certificate_id=certificate_id,
            conversation_status=ConversationStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        try:
            db.add(conv)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Conversation create failed for client={client_id}: {e}")
            return server_error()
        await db.refresh(conv)
        logger.info(f"Conversation {conv.id} opened by client={client_id}")
        return ServiceResult.success(conv)

    async def create_by_staff(self, db: AsyncSession, staff_id: int, client_id: Optional[int]) -> ServiceResult:
        """Staff-opened conversation; status is left unset."""
        if not client_id:
            return validation_error("user_id is required")
        client = await db.get(User, client_id)
        if client is None:
            return not_found("Client not found")
        if client.role != UserRole.CLIENT:
            return validation_error("user_id must reference a client")

        now = utcnow()
        conv = Conversation(client_id=client_id, admin_id=staff_id, created_at=now, updated_at=now)
        try:
            db.add(conv)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Staff conversation create failed for client={client_id}: {e}")
            return server_error()
        await db.refresh(conv)
        logger.info(f"Conversation {conv.id} opened by staff={staff_id} for client={client_id}")
        return ServiceResult.success(conv)

    async def list_for_owner(self, db: AsyncSession, client_id: int) -> List[Conversation]:
        result = await db.execute(
            select(Conversation)
            .where(Conversation.client_id == client_id)
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        )
        return list(result.scalars().all())

    async def list_all(self, db: AsyncSession) -> List[Dict[str, Any]]:
        rows = (await db.execute(
            select(Conversation, User.user_code, Certificate.certificate_name)
            .join(User, User.id == Conversation.client_id)
            .outerjoin(Certificate, Certificate.id == Conversation.certificate_id)
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        )).all()
        return [serialize_conversation(conv, code, name) for conv, code, name in rows]

    async def staff_patch(
        self,
        db: AsyncSession,
        conversation_id: int,
        admin_id: Optional[int] = None,
        conversation_status: Optional[str] = None,
        update_admin: bool = False,
    ) -> ServiceResult:
        values: Dict[str, Any] = {}
        if update_admin:
            if admin_id is not None:
                admin = await db.get(User, admin_id)
                if admin is None or admin.role != UserRole.ADMIN:
                    return validation_error("admin_id must reference a staff user")
            values["admin_id"] = admin_id
        if conversation_status is not None:
            try:
                values["conversation_status"] = ConversationStatus(conversation_status)
            except ValueError:
                allowed = ", ".join(s.value for s in ConversationStatus)
                return validation_error(f"Invalid conversation_status. Must be one of: {allowed}")
        if not values:
            return validation_error("No fields to update")

        values["updated_at"] = utcnow()
        try:
            result = await db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                return not_found("Conversation not found")
            await db.commit()
        except IntegrityError:
            await db.rollback()
            return conflict("A team-chat conversation already exists")
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Conversation patch failed for id={conversation_id}: {e}")
            return server_error()

        conv = await db.get(Conversation, conversation_id, populate_existing=True)
        return ServiceResult.success(conv)

    async def team_chat(self, db: AsyncSession) -> ServiceResult:
        """The singleton staff conversation; never created implicitly."""
        result = await db.execute(
            select(Conversation)
            .where(Conversation.conversation_status == ConversationStatus.TEAM_CHAT)
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
            .limit(1)
        )
        conv = result.scalar_one_or_none()
        if conv is None:
            return not_found("Team chat not found")
        return ServiceResult.success(conv)

    async def get_accessible(self, db: AsyncSession, conversation_id: int, user_id: int,
                             is_admin: bool) -> ServiceResult:
        conv = await db.get(Conversation, conversation_id)
        if conv is None:
            return not_found("Conversation not found")
        if not is_admin and conv.client_id != user_id:
            return authorization_error("Not a participant of this conversation")
        return ServiceResult.success(conv)


conversations = ConversationManager()
