# accounts.py — Time-boxed reset/deletion/profile tokens and the account deletion cascade
import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService
from email_sender import EmailSender
from models import Certificate, Conversation, Document, Message, Notification, User, utcnow
from results import (
    ServiceResult, validation_error, authentication_error, not_found, conflict, server_error,
)

logger = logging.getLogger("certisphere.accounts")

PASSWORD_RESET_TOKEN_HOURS = int(os.getenv("PASSWORD_RESET_TOKEN_HOURS", "1"))
ACCOUNT_DELETION_TOKEN_HOURS = int(os.getenv("ACCOUNT_DELETION_TOKEN_HOURS", "24"))
PROFILE_CHANGE_TOKEN_HOURS = int(os.getenv("PROFILE_CHANGE_TOKEN_HOURS", "1"))
SERVER_URL = os.getenv("SERVER_URL", "http://localhost:8000")
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")
MIN_PASSWORD_LENGTH = 8

PROFILE_FIELDS = (
    "business_name", "business_type", "industry",
    "first_name", "last_name", "contact_email", "phone_number",
)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def token_expired(expires_at: Optional[datetime]) -> bool:
    expires_at = _as_aware(expires_at)
    return expires_at is None or utcnow() > expires_at


def _deletion_steps(user_id: int) -> List:
    """Statements removing everything that references the user, children first."""
    own_conversations = select(Conversation.id).where(Conversation.client_id == user_id)
    own_certificates = select(Certificate.id).where(Certificate.user_id == user_id)
    return [
        delete(Message).where(Message.conversation_id.in_(own_conversations)),
        delete(Message).where(Message.sender_id == user_id),
        delete(Conversation).where(Conversation.client_id == user_id),
        update(Conversation).where(Conversation.admin_id == user_id).values(admin_id=None),
        update(Conversation).where(Conversation.certificate_id.in_(own_certificates)).values(certificate_id=None),
        update(Certificate).where(Certificate.assigned_admin_id == user_id).values(assigned_admin_id=None),
        delete(Notification).where(or_(
            Notification.user_id == user_id, Notification.certificate_id.in_(own_certificates),
        )),
        delete(Document).where(or_(
            Document.user_id == user_id, Document.certificate_id.in_(own_certificates),
        )),
        delete(Certificate).where(Certificate.user_id == user_id),
        delete(User).where(User.id == user_id),
    ]


class AccountService:

    # --------------------------------------------------------
    # Password reset
    # --------------------------------------------------------

    async def request_password_reset(self, db: AsyncSession, contact_email: Optional[str]) -> ServiceResult:
        """Issues a reset token. Unknown addresses succeed silently with no token."""
        if not contact_email:
            return validation_error("contact_email is required")
        result = await db.execute(select(User).where(User.contact_email == contact_email))
        user = result.scalar_one_or_none()
        if user is None:
            logger.info("Password reset requested for unknown address")
            return ServiceResult.success(None)

        token, expires = AuthService.issue_one_time_token(timedelta(hours=PASSWORD_RESET_TOKEN_HOURS))
        user.reset_token = token
        user.reset_token_expires = expires
        await db.commit()
        return ServiceResult.success(user)

    @staticmethod
    async def email_reset_link(sender: EmailSender, contact_email: str, token: str) -> None:
        link = f"{CLIENT_URL}/reset-password?token={token}"
        body = (
            "Hello,\n\n"
            "We received a password reset request for your account.\n\n"
            f"Open the link below to reset your password:\n{link}\n\n"
            f"This link will expire in {PASSWORD_RESET_TOKEN_HOURS} hour(s).\n\n"
            "If you didn't request a password reset, you can ignore this message.\n"
        )
        await sender.send(contact_email, "Password Reset Request", body)

    async def reset_password(self, db: AsyncSession, token: Optional[str],
                             new_password: Optional[str]) -> ServiceResult:
        if not token or not new_password:
            return validation_error("Missing token or new password")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            return validation_error(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        result = await db.execute(select(User).where(User.reset_token == token))
        user = result.scalar_one_or_none()
        if user is None:
            return validation_error("Invalid or expired reset token")
        if token_expired(user.reset_token_expires):
            return validation_error("Reset token has expired")

        user.password_hash = AuthService.hash_password(new_password)
        user.reset_token = None
        user.reset_token_expires = None
        await db.commit()
        logger.info(f"Password reset for user={user.id}")
        return ServiceResult.success(user)

    async def request_password_change(self, db: AsyncSession, user_id: int,
                                      old_password: Optional[str]) -> ServiceResult:
        """Signed-in variant of the reset flow: the current password unlocks a reset link."""
        if not old_password:
            return validation_error("Old password required")
        user = await db.get(User, user_id)
        if user is None:
            return not_found("User not found")
        if not AuthService.verify_password(old_password, user.password_hash):
            return authentication_error("Old password is incorrect")

        token, expires = AuthService.issue_one_time_token(timedelta(hours=PASSWORD_RESET_TOKEN_HOURS))
        user.reset_token = token
        user.reset_token_expires = expires
        await db.commit()
        return ServiceResult.success(user)

    @staticmethod
    async def email_password_change_link(sender: EmailSender, contact_email: str,
                                         client_code: str, token: str) -> None:
        link = f"{CLIENT_URL}/reset-password?token={token}"
        body = (
            f"Hello {client_code},\n\n"
            "We received a request to change your password.\n"
            f"Open the link below to set a new one:\n\n{link}\n\n"
            f"The link expires in {PASSWORD_RESET_TOKEN_HOURS} hour(s). "
            "If you didn't request this, just ignore the e-mail."
        )
        await sender.send(contact_email, "Confirm your password change", body)

    # --------------------------------------------------------
    # Profile
    # --------------------------------------------------------

    async def get_profile(self, db: AsyncSession, user_id: int) -> ServiceResult:
        user = await db.get(User, user_id)
        if user is None:
            return not_found("User not found")
        return ServiceResult.success(user)

    async def request_profile_change(self, db: AsyncSession, user_id: int,
                                     changes: Dict[str, Any]) -> ServiceResult:
        """Parks the edits on the user until the emailed link confirms them."""
        changes = {k: v for k, v in changes.items() if k in PROFILE_FIELDS}
        if not changes:
            return validation_error("No valid fields supplied")
        if "contact_email" in changes:
            email = (changes["contact_email"] or "").strip()
            if not email:
                return validation_error("contact_email cannot be empty")
            changes["contact_email"] = email

        user = await db.get(User, user_id)
        if user is None:
            return not_found("User not found")
        if "contact_email" in changes and changes["contact_email"] != user.contact_email:
            taken = await db.execute(
                select(User.id).where(User.contact_email == changes["contact_email"], User.id != user_id)
            )
            if taken.first() is not None:
                return conflict("contact_email already in use")

        token, expires = AuthService.issue_one_time_token(timedelta(hours=PROFILE_CHANGE_TOKEN_HOURS))
        user.profile_token = token
        user.profile_token_expires = expires
        user.pending_profile = changes
        await db.commit()
        return ServiceResult.success(user)

    @staticmethod
    async def email_profile_change_link(sender: EmailSender, contact_email: str,
                                        first_name: Optional[str], token: str) -> None:
        link = f"{SERVER_URL}/api/v1/profile/verify/{token}"
        body = (
            f"Hello {first_name or ''},\n\n"
            "We received a request to update your profile.\n"
            f"To apply the changes, open the link below:\n\n{link}\n\n"
            "If you did not request this, just ignore the e-mail.\n"
            f"This link expires in {PROFILE_CHANGE_TOKEN_HOURS} hour(s)."
        )
        await sender.send(contact_email, "Confirm your profile changes", body)

    async def confirm_profile_change(self, db: AsyncSession, token: Optional[str]) -> ServiceResult:
        token = (token or "").strip()
        if not token:
            return validation_error("Invalid or expired token")
        result = await db.execute(select(User).where(User.profile_token == token))
        user = result.scalar_one_or_none()
        if user is None or token_expired(user.profile_token_expires):
            return validation_error("Invalid or expired token")

        for field, value in (user.pending_profile or {}).items():
            if field in PROFILE_FIELDS:
                setattr(user, field, value)
        user.profile_token = None
        user.profile_token_expires = None
        user.pending_profile = None
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            return conflict("contact_email already in use")

        logger.info(f"Profile updated for user={user.id}")
        return ServiceResult.success(user)

    # --------------------------------------------------------
    # Account deletion
    # --------------------------------------------------------

    async def request_deletion(self, db: AsyncSession, user_id: int) -> ServiceResult:
        user = await db.get(User, user_id)
        if user is None:
            return not_found("User not found")
        token, expires = AuthService.issue_one_time_token(timedelta(hours=ACCOUNT_DELETION_TOKEN_HOURS))
        user.delete_token = token
        user.delete_token_expires = expires
        await db.commit()
        return ServiceResult.success(user)

    @staticmethod
    async def email_deletion_link(sender: EmailSender, contact_email: str,
                                  first_name: Optional[str], token: str) -> None:
        link = f"{SERVER_URL}/api/v1/account/confirm-deletion/{token}"
        body = (
            f"Hi {first_name or ''},\n\n"
            "You asked us to delete your CertiSphere account.\n"
            f"Open the link below to confirm (valid for {ACCOUNT_DELETION_TOKEN_HOURS} h):\n\n"
            f"{link}\n\n"
            "If you didn't request this, simply ignore the e-mail."
        )
        await sender.send(contact_email, "Confirm your account deletion", body)

    async def confirm_deletion(self, db: AsyncSession, token: Optional[str]) -> ServiceResult:
        """All-or-nothing removal of the user and every dependent row."""
        token = (token or "").strip()
        if not token:
            return validation_error("Invalid or expired link.")
        result = await db.execute(select(User.id, User.delete_token_expires).where(User.delete_token == token))
        row = result.first()
        if row is None or token_expired(row.delete_token_expires):
            return validation_error("Invalid or expired link.")
        user_id = row.id

        try:
            for statement in _deletion_steps(user_id):
                await db.execute(statement.execution_options(synchronize_session=False))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Account deletion rolled back for user={user_id}: {e}")
            return server_error()

        logger.info(f"Account {user_id} deleted with all dependent records")
        return ServiceResult.success(user_id)


accounts = AccountService()
