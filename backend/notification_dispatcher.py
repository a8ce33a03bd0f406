# notification_dispatcher.py — User directives, forced certificate transitions, email side channel
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import UploadFile
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from certificate_lifecycle import certificates
from document_store import DocumentStore
from email_sender import EmailSender
from models import Certificate, Document, Notification, User, utcnow
from results import (
    ServiceResult, validation_error, authorization_error, not_found, server_error,
)

logger = logging.getLogger("certisphere.notifications")

EMAIL_SUBJECT = "New Notification from CertiSphere"


@dataclass
class DispatchOutcome:
    notification: Notification
    recipient_email: Optional[str]
    recipient_name: Optional[str]
    forced_transition: bool


def serialize_notification(n: Notification) -> Dict[str, Any]:
    return {
        "id": n.id,
        "user_id": n.user_id,
        "certificate_id": n.certificate_id,
        "message": n.message,
        "is_read": n.is_read,
        "request_new_document": n.request_new_document,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


class NotificationDispatcher:

    async def create(
        self,
        db: AsyncSession,
        user_id: Optional[int],
        message: Optional[str],
        certificate_id: Optional[int] = None,
        request_new_document: bool = False,
    ) -> ServiceResult:
        """Insert a notification; when it requests a document for a certificate,
        force that certificate into Additional Documents Required in the same
        transaction."""
        if not user_id or not message or not message.strip():
            return validation_error("Missing user_id or message")
        recipient = await db.get(User, user_id)
        if recipient is None:
            return not_found("Recipient not found")
        if certificate_id is not None and await db.get(Certificate, certificate_id) is None:
            return not_found("Certificate not found")

        notif = Notification(
            user_id=user_id,
            certificate_id=certificate_id,
            message=message,
            is_read=False,
            request_new_document=bool(request_new_document),
            created_at=utcnow(),
        )
        forced = False
        try:
            db.add(notif)
            await db.flush()
            if request_new_document and certificate_id is not None:
                forced = await certificates.force_additional_documents(db, certificate_id)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Notification create failed for user={user_id}: {e}")
            return server_error()

        await db.refresh(notif)
        if forced:
            logger.info(f"Certificate {certificate_id} moved to Additional Documents Required by notification {notif.id}")
        return ServiceResult.success(DispatchOutcome(
            notification=notif,
            recipient_email=recipient.contact_email,
            recipient_name=recipient.first_name,
            forced_transition=forced,
        ))

    @staticmethod
    async def email_recipient(sender: EmailSender, outcome: DispatchOutcome) -> None:
        if not outcome.recipient_email:
            return
        body = (
            f"Hello {outcome.recipient_name or ''},\n\n"
            f"{outcome.notification.message}\n\n"
            "Please log in to view details.\n\n"
            "CertiSphere Team"
        )
        await sender.send(outcome.recipient_email, EMAIL_SUBJECT, body)

    async def list_for_user(self, db: AsyncSession, user_id: int) -> Dict[str, Any]:
        result = await db.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        rows = [serialize_notification(n) for n in result.scalars().all()]
        return {
            "notifications": rows,
            "unread_count": sum(0 if n["is_read"] else 1 for n in rows),
        }

    async def set_read(self, db: AsyncSession, notification_id: int, user_id: int,
                       is_admin: bool, is_read: bool) -> ServiceResult:
        notif = await db.get(Notification, notification_id)
        if notif is None:
            return not_found("Notification not found")
        if notif.user_id != user_id and not is_admin:
            return authorization_error("Not allowed")
        notif.is_read = is_read
        await db.commit()
        await db.refresh(notif)
        return ServiceResult.success(notif)

    async def respond_with_document(
        self,
        db: AsyncSession,
        store: DocumentStore,
        notification_id: int,
        user_id: int,
        upload: Optional[UploadFile],
    ) -> ServiceResult:
        """Store a document requested by a notification and tell the assigned admin."""
        result = await db.execute(
            select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
        )
        notif = result.scalar_one_or_none()
        if notif is None:
            return not_found("Notification not found or not yours")
        if not notif.certificate_id:
            return validation_error("Notification has no certificate")
        if not notif.request_new_document:
            return validation_error("Notification did not request a new document")
        if upload is None or not upload.filename:
            return validation_error("No file provided")

        certificate_id = notif.certificate_id
        path = await store.save(upload, certificate_id, user_id)
        try:
            db.add(Document(
                certificate_id=certificate_id,
                user_id=user_id,
                file_name=upload.filename,
                file_path=path,
                uploaded_at=utcnow(),
            ))
            admin_id = (await db.execute(
                select(Certificate.assigned_admin_id).where(Certificate.id == certificate_id)
            )).scalar_one_or_none()
            if admin_id:
                db.add(Notification(
                    user_id=admin_id,
                    certificate_id=certificate_id,
                    message=f"User uploaded a new document for certificate #{certificate_id}",
                    is_read=False,
                    request_new_document=False,
                    created_at=utcnow(),
                ))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Document response failed for notification={notification_id}: {e}")
            return server_error()

        logger.info(f"Document uploaded for certificate={certificate_id} via notification={notification_id}")
        return ServiceResult.success({"certificate_id": certificate_id, "admin_notified": bool(admin_id)})


notifications = NotificationDispatcher()
