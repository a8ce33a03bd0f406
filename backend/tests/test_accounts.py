"""Tests for password reset tokens and the account deletion cascade."""
from datetime import timedelta

import pytest
from sqlalchemy import select, text

import accounts as accounts_module
from auth import AuthService
from models import (
    Certificate, CertificateStatus, Conversation, ConversationStatus, Document, Message,
    Notification, User, UserRole, utcnow,
)
from tests.conftest import get_auth_headers, make_certificate


@pytest.mark.asyncio
async def test_forgot_password_issues_token_and_email(client, test_user, email_sender, session_factory):
    resp = await client.post("/api/v1/password/forgot", json={"contact_email": test_user.contact_email})
    assert resp.status_code == 200

    async with session_factory() as db:
        user = await db.get(User, test_user.id)
    assert user.reset_token
    assert len(email_sender.sent) == 1
    assert user.reset_token in email_sender.sent[0]["body"]


@pytest.mark.asyncio
async def test_forgot_password_unknown_address_looks_the_same(client, test_user, email_sender):
    known = await client.post("/api/v1/password/forgot", json={"contact_email": test_user.contact_email})
    unknown = await client.post("/api/v1/password/forgot", json={"contact_email": "nobody@example.com"})
    assert unknown.status_code == 200
    assert unknown.json() == known.json()
    assert len(email_sender.sent) == 1


@pytest.mark.asyncio
async def test_reset_password_consumes_token(client, db_session, test_user, session_factory):
    token, expires = AuthService.issue_one_time_token(timedelta(hours=1))
    test_user.reset_token = token
    test_user.reset_token_expires = expires
    await db_session.commit()

    resp = await client.post("/api/v1/password/reset", json={"token": token, "newPassword": "BrandNewPass99"})
    assert resp.status_code == 200

    async with session_factory() as db:
        user = await db.get(User, test_user.id)
    assert AuthService.verify_password("BrandNewPass99", user.password_hash)
    assert user.reset_token is None

    again = await client.post("/api/v1/password/reset", json={"token": token, "newPassword": "AnotherPass99"})
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_reset_password_expired_token(client, db_session, test_user):
    test_user.reset_token = "expired-token"
    test_user.reset_token_expires = utcnow() - timedelta(minutes=1)
    await db_session.commit()

    resp = await client.post("/api/v1/password/reset", json={"token": "expired-token", "newPassword": "BrandNewPass99"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Reset token has expired"


async def _populate_account(db_session, user, admin):
    cert = await make_certificate(db_session, user, status=CertificateStatus.SUBMITTED, paid=True,
                                  assigned_admin_id=admin.id)
    conv = Conversation(client_id=user.id, admin_id=admin.id, certificate_id=cert.id,
                        conversation_status=ConversationStatus.PENDING)
    db_session.add(conv)
    await db_session.flush()
    db_session.add_all([
        Message(conversation_id=conv.id, sender_id=user.id, sender_role=UserRole.CLIENT, content="hi"),
        Message(conversation_id=conv.id, sender_id=admin.id, sender_role=UserRole.ADMIN, content="hello"),
        Document(certificate_id=cert.id, user_id=user.id, file_name="a.pdf", file_path="/x/a.pdf"),
        Notification(user_id=user.id, certificate_id=cert.id, message="upload please"),
        Notification(user_id=admin.id, certificate_id=cert.id, message="client uploaded"),
    ])
    await db_session.commit()
    return cert


async def _row_counts(session_factory) -> dict:
    async with session_factory() as db:
        return {
            model.__tablename__: len((await db.execute(select(model.id))).all())
            for model in (User, Certificate, Conversation, Message, Document, Notification)
        }


@pytest.mark.asyncio
async def test_account_deletion_cascade(client, db_session, test_user, admin_user, email_sender, session_factory):
    await _populate_account(db_session, test_user, admin_user)

    resp = await client.post("/api/v1/account/deletion-request", headers=get_auth_headers(test_user))
    assert resp.status_code == 200
    async with session_factory() as db:
        token = (await db.get(User, test_user.id)).delete_token
    assert token in email_sender.sent[0]["body"]

    resp = await client.get(f"/api/v1/account/confirm-deletion/{token}")
    assert resp.status_code == 200
    assert await _row_counts(session_factory) == {
        "users": 1, "certificates": 0, "conversations": 0, "messages": 0, "documents": 0, "notifications": 0,
    }
    async with session_factory() as db:
        assert await db.get(User, admin_user.id) is not None


@pytest.mark.asyncio
async def test_deleting_staff_clears_routing_references(client, db_session, test_user, admin_user, session_factory):
    cert = await _populate_account(db_session, test_user, admin_user)
    admin_user.delete_token = "staff-token"
    admin_user.delete_token_expires = utcnow() + timedelta(hours=1)
    await db_session.commit()

    resp = await client.get("/api/v1/account/confirm-deletion/staff-token")
    assert resp.status_code == 200

    async with session_factory() as db:
        stored = await db.get(Certificate, cert.id)
        conv = (await db.execute(select(Conversation))).scalar_one()
        messages = (await db.execute(select(Message))).scalars().all()
    assert stored.assigned_admin_id is None
    assert conv.admin_id is None
    assert [m.content for m in messages] == ["hi"]


@pytest.mark.asyncio
async def test_account_deletion_is_all_or_nothing(client, db_session, test_user, admin_user, session_factory,
                                                  monkeypatch):
    await _populate_account(db_session, test_user, admin_user)
    test_user.delete_token = "delete-me"
    test_user.delete_token_expires = utcnow() + timedelta(hours=1)
    await db_session.commit()
    before = await _row_counts(session_factory)

    real_steps = accounts_module._deletion_steps

    def failing_steps(user_id):
        steps = real_steps(user_id)
        # Fail after most rows are already gone inside the transaction
        return steps[:-1] + [text("DELETE FROM no_such_table")] + steps[-1:]

    monkeypatch.setattr(accounts_module, "_deletion_steps", failing_steps)
    resp = await client.get("/api/v1/account/confirm-deletion/delete-me")
    assert resp.status_code == 500
    assert await _row_counts(session_factory) == before


@pytest.mark.asyncio
async def test_confirm_deletion_rejects_expired_or_unknown_token(client, db_session, test_user, session_factory):
    test_user.delete_token = "stale"
    test_user.delete_token_expires = utcnow() - timedelta(seconds=1)
    await db_session.commit()

    assert (await client.get("/api/v1/account/confirm-deletion/stale")).status_code == 400
    assert (await client.get("/api/v1/account/confirm-deletion/unknown")).status_code == 400
    async with session_factory() as db:
        assert await db.get(User, test_user.id) is not None


# --- Password change & profile ---

@pytest.mark.asyncio
async def test_password_change_requires_current_password(client, test_user, email_sender, session_factory):
    headers = get_auth_headers(test_user)
    resp = await client.post("/api/v1/change-password-request", json={"oldPassword": "wrong-password"},
                             headers=headers)
    assert resp.status_code == 401
    assert resp.json()["code"] == "authentication_error"
    assert email_sender.sent == []

    resp = await client.post("/api/v1/change-password-request", json={"oldPassword": "TestPassword123!"},
                             headers=headers)
    assert resp.status_code == 200
    async with session_factory() as db:
        token = (await db.get(User, test_user.id)).reset_token
    assert email_sender.sent[0]["subject"] == "Confirm your password change"
    assert token in email_sender.sent[0]["body"]

    resp = await client.post("/api/v1/password/reset", json={"token": token, "newPassword": "ChangedPass99"})
    assert resp.status_code == 200
    async with session_factory() as db:
        assert AuthService.verify_password("ChangedPass99", (await db.get(User, test_user.id)).password_hash)


@pytest.mark.asyncio
async def test_get_profile(client, test_user):
    resp = await client.get("/api/v1/profile", headers=get_auth_headers(test_user))
    assert resp.status_code == 200
    profile = resp.json()["profile"]
    assert profile["client_code"] == test_user.user_code
    assert profile["business_name"] == "Acme Civil Ltd"
    assert "password_hash" not in profile


@pytest.mark.asyncio
async def test_profile_change_applies_only_after_verification(client, test_user, email_sender, session_factory):
    old_email = test_user.contact_email
    resp = await client.put("/api/v1/profile", json={
        "business_name": "Acme Structures Ltd", "contact_email": "new-acme@certisphere.test",
    }, headers=get_auth_headers(test_user))
    assert resp.status_code == 200

    async with session_factory() as db:
        pending = await db.get(User, test_user.id)
    assert pending.business_name == "Acme Civil Ltd"
    assert email_sender.sent[0]["to"] == old_email
    assert pending.profile_token in email_sender.sent[0]["body"]

    resp = await client.get(f"/api/v1/profile/verify/{pending.profile_token}")
    assert resp.status_code == 200
    assert resp.json()["profile"]["contact_email"] == "new-acme@certisphere.test"

    async with session_factory() as db:
        updated = await db.get(User, test_user.id)
    assert updated.business_name == "Acme Structures Ltd"
    assert updated.pending_profile is None

    again = await client.get(f"/api/v1/profile/verify/{pending.profile_token}")
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_profile_change_ignores_protected_fields(client, test_user, email_sender):
    resp = await client.put("/api/v1/profile", json={"role": "admin"}, headers=get_auth_headers(test_user))
    assert resp.status_code == 400
    assert email_sender.sent == []


@pytest.mark.asyncio
async def test_profile_change_rejects_taken_email(client, test_user, other_user):
    resp = await client.put("/api/v1/profile", json={"contact_email": other_user.contact_email},
                            headers=get_auth_headers(test_user))
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_profile_verification_token_expires(client, db_session, test_user, session_factory):
    test_user.profile_token = "stale-profile"
    test_user.profile_token_expires = utcnow() - timedelta(seconds=1)
    test_user.pending_profile = {"first_name": "Mallory"}
    await db_session.commit()

    resp = await client.get("/api/v1/profile/verify/stale-profile")
    assert resp.status_code == 400
    async with session_factory() as db:
        assert (await db.get(User, test_user.id)).first_name != "Mallory"
