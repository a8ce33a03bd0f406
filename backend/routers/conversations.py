# routers/conversations.py — Conversations (client + staff) and their messages
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_admin_role, require_role, CurrentUser
from conversations import conversations, serialize_conversation
from database import get_db_session
from message_channel import MessageChannel, get_message_channel
from models import UserRole
from results import unwrap

router = APIRouter(prefix="/api/v1", tags=["Conversations"])


# --- Schemas ---

class ConversationCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    admin_id: Optional[int] = Field(None, alias="adminId")
    certificate_id: Optional[int] = Field(None, alias="certificateId")


class StaffConversationCreate(BaseModel):
    user_id: Optional[int] = None


class ConversationPatch(BaseModel):
    admin_id: Optional[int] = None
    conversation_status: Optional[str] = None


class MessageCreate(BaseModel):
    content: Optional[str] = None


# ============================================================
# CLIENT
# ============================================================

@router.post("/conversations", status_code=201)
async def create_conversation(
    data: ConversationCreate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_role(UserRole.CLIENT)),
):
    conv = unwrap(await conversations.create_for_client(
        db, user.id, admin_id=data.admin_id, certificate_id=data.certificate_id,
    ))
    return {"success": True, "conversation": serialize_conversation(conv)}


@router.get("/conversations")
async def list_my_conversations(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_role(UserRole.CLIENT)),
):
    rows = await conversations.list_for_owner(db, user.id)
    return {"success": True, "conversations": [serialize_conversation(c) for c in rows]}


# ============================================================
# STAFF
# ============================================================

@router.post("/admin/conversations", status_code=201)
async def staff_create_conversation(
    data: StaffConversationCreate,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    conv = unwrap(await conversations.create_by_staff(db, admin.id, data.user_id))
    return {"success": True, "conversation": serialize_conversation(conv)}


@router.get("/admin/conversations")
async def staff_list_conversations(
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    return {"success": True, "conversations": await conversations.list_all(db)}


@router.get("/admin/conversations/team-chat")
async def team_chat(
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    conv = unwrap(await conversations.team_chat(db))
    return {"success": True, "conversation": serialize_conversation(conv)}


@router.patch("/admin/conversations/{conversation_id}")
async def staff_patch_conversation(
    conversation_id: int,
    data: ConversationPatch,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    conv = unwrap(await conversations.staff_patch(
        db,
        conversation_id,
        admin_id=data.admin_id,
        conversation_status=data.conversation_status,
        update_admin="admin_id" in data.model_fields_set,
    ))
    return {"success": True, "conversation": serialize_conversation(conv)}


# ============================================================
# MESSAGES
# ============================================================

@router.get("/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: int,
    db: AsyncSession = Depends(get_db_session),
    channel: MessageChannel = Depends(get_message_channel),
    user: CurrentUser = Depends(get_current_user),
):
    unwrap(await conversations.get_accessible(db, conversation_id, user.id, user.is_admin))
    return {"success": True, "messages": await channel.list_messages(db, conversation_id)}


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def post_message(
    conversation_id: int,
    data: MessageCreate,
    db: AsyncSession = Depends(get_db_session),
    channel: MessageChannel = Depends(get_message_channel),
    user: CurrentUser = Depends(get_current_user),
):
    """Sender identity and role come from the token, never from the body"""
    message = unwrap(await channel.send(db, conversation_id, user.id, user.role, data.content))
    return {"success": True, "message": message}
