# routers/notifications.py — Notifications: staff directives, inbox, document responses
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile
from pydantic import BaseModel, StrictBool
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_admin_role, CurrentUser
from database import get_db_session
from document_store import DocumentStore, get_document_store
from email_sender import EmailSender, get_email_sender
from notification_dispatcher import notifications, serialize_notification
from results import unwrap
from side_effects import run_best_effort

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


# --- Schemas ---

class NotificationCreate(BaseModel):
    user_id: Optional[int] = None
    certificate_id: Optional[int] = None
    message: Optional[str] = None
    request_new_document: bool = False


class NotificationPatch(BaseModel):
    is_read: StrictBool


# ============================================================
# CREATE (staff)
# ============================================================

@router.post("/admin/notifications", status_code=201)
async def create_notification(
    data: NotificationCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
    admin: CurrentUser = Depends(require_admin_role),
):
    outcome = unwrap(await notifications.create(
        db,
        data.user_id,
        data.message,
        certificate_id=data.certificate_id,
        request_new_document=data.request_new_document,
    ))
    background_tasks.add_task(run_best_effort, "notification email", notifications.email_recipient, sender, outcome)
    return {"success": True, "notification": serialize_notification(outcome.notification)}


# ============================================================
# LIST
# ============================================================

@router.get("/notifications")
async def list_notifications(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    return {"success": True, **await notifications.list_for_user(db, user.id)}


@router.get("/admin/notifications")
async def list_staff_notifications(
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin_role),
):
    return {"success": True, **await notifications.list_for_user(db, admin.id)}


# ============================================================
# MARK READ
# ============================================================

@router.patch("/notifications/{notification_id}")
async def mark_read(
    notification_id: int,
    data: NotificationPatch,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    notif = unwrap(await notifications.set_read(db, notification_id, user.id, user.is_admin, data.is_read))
    return {"success": True, "notification": serialize_notification(notif)}


# ============================================================
# DOCUMENT RESPONSE
# ============================================================

@router.post("/notifications/{notification_id}/upload-document")
async def upload_requested_document(
    notification_id: int,
    document: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db_session),
    store: DocumentStore = Depends(get_document_store),
    user: CurrentUser = Depends(get_current_user),
):
    outcome = unwrap(await notifications.respond_with_document(db, store, notification_id, user.id, document))
    return {"success": True, "message": "Document uploaded and admin notified.", **outcome}
