# routers/accounts.py — Password reset, password change, profile edits and account deletion
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from accounts import accounts
from auth import get_current_user, CurrentUser
from database import get_db_session
from email_sender import EmailSender, get_email_sender
from results import unwrap
from side_effects import run_best_effort

router = APIRouter(prefix="/api/v1", tags=["Accounts"])


class ForgotPasswordRequest(BaseModel):
    contact_email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: Optional[str] = None
    new_password: Optional[str] = Field(None, alias="newPassword")


@router.post("/password/forgot")
async def forgot_password(
    data: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
):
    user = unwrap(await accounts.request_password_reset(db, data.contact_email))
    if user is not None:
        background_tasks.add_task(
            run_best_effort, "password reset email",
            accounts.email_reset_link, sender, user.contact_email, user.reset_token,
        )
    # Same answer whether or not the address is known
    return {"success": True, "message": "If the account exists, a password reset email has been sent."}


@router.post("/password/reset")
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await accounts.reset_password(db, data.token, data.new_password))
    return {"success": True, "message": "Password reset successful"}


@router.post("/account/deletion-request")
async def request_account_deletion(
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
    user: CurrentUser = Depends(get_current_user),
):
    account = unwrap(await accounts.request_deletion(db, user.id))
    background_tasks.add_task(
        run_best_effort, "account deletion email",
        accounts.email_deletion_link, sender, account.contact_email, account.first_name, account.delete_token,
    )
    return {"success": True}


@router.get("/account/confirm-deletion/{token}")
async def confirm_account_deletion(
    token: str,
    db: AsyncSession = Depends(get_db_session),
):
    unwrap(await accounts.confirm_deletion(db, token))
    return {"success": True, "message": "Your account and all related data have been permanently removed."}


# ============================================================
# PASSWORD CHANGE & PROFILE (signed in)
# ============================================================

class PasswordChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    old_password: Optional[str] = Field(None, alias="oldPassword")


class ProfileUpdate(BaseModel):
    business_name: Optional[str] = Field(None, max_length=200)
    business_type: Optional[str] = Field(None, max_length=100)
    industry: Optional[str] = Field(None, max_length=100)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    contact_email: Optional[str] = Field(None, max_length=254)
    phone_number: Optional[str] = Field(None, max_length=50)


def profile_out(u) -> dict:
    return {
        "id": u.id,
        "client_code": u.user_code,
        "role": u.role.value,
        "business_name": u.business_name,
        "business_type": u.business_type,
        "industry": u.industry,
        "first_name": u.first_name,
        "last_name": u.last_name,
        "contact_email": u.contact_email,
        "phone_number": u.phone_number,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


@router.post("/change-password-request")
async def request_password_change(
    data: PasswordChangeRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
    user: CurrentUser = Depends(get_current_user),
):
    account = unwrap(await accounts.request_password_change(db, user.id, data.old_password))
    background_tasks.add_task(
        run_best_effort, "password change email",
        accounts.email_password_change_link, sender, account.contact_email, account.user_code, account.reset_token,
    )
    return {"success": True, "message": "E-mail sent, follow the link to set your new password."}


@router.get("/profile")
async def get_profile(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    account = unwrap(await accounts.get_profile(db, user.id))
    return {"success": True, "profile": profile_out(account)}


@router.put("/profile")
async def request_profile_change(
    data: ProfileUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    sender: EmailSender = Depends(get_email_sender),
    user: CurrentUser = Depends(get_current_user),
):
    """Changes are applied only after the emailed verification link is opened"""
    account = unwrap(await accounts.request_profile_change(db, user.id, data.model_dump(exclude_unset=True)))
    # Sent to the current address, before any contact_email change applies
    background_tasks.add_task(
        run_best_effort, "profile change email",
        accounts.email_profile_change_link, sender, account.contact_email, account.first_name, account.profile_token,
    )
    return {"success": True, "message": "Verification e-mail sent. Changes will be applied after confirmation."}


@router.get("/profile/verify/{token}")
async def verify_profile_change(
    token: str,
    db: AsyncSession = Depends(get_db_session),
):
    account = unwrap(await accounts.confirm_profile_change(db, token))
    return {"success": True, "message": "Profile successfully updated!", "profile": profile_out(account)}
