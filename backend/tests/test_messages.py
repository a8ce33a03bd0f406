"""Tests for the message channel over HTTP: status transitions, recency, ordering."""
import pytest
from sqlalchemy import select

from models import Conversation, ConversationStatus, Message
from tests.conftest import get_auth_headers


async def _open_conversation(client, owner) -> int:
    resp = await client.post("/api/v1/conversations", json={}, headers=get_auth_headers(owner))
    return resp.json()["conversation"]["id"]


async def _status(session_factory, conversation_id):
    async with session_factory() as db:
        return (await db.get(Conversation, conversation_id)).conversation_status


@pytest.mark.asyncio
async def test_status_follows_last_sender(client, test_user, admin_user, session_factory):
    conv_id = await _open_conversation(client, test_user)
    url = f"/api/v1/conversations/{conv_id}/messages"

    resp = await client.post(url, json={"content": "Any update?"}, headers=get_auth_headers(admin_user))
    assert resp.status_code == 201
    assert await _status(session_factory, conv_id) == ConversationStatus.ANSWERED

    await client.post(url, json={"content": "Thanks, one more question"}, headers=get_auth_headers(test_user))
    assert await _status(session_factory, conv_id) == ConversationStatus.PENDING

    await client.post(url, json={"content": "Answered"}, headers=get_auth_headers(admin_user))
    assert await _status(session_factory, conv_id) == ConversationStatus.ANSWERED


@pytest.mark.asyncio
async def test_staff_opened_conversation_gets_status_from_first_message(client, test_user, admin_user,
                                                                        session_factory):
    resp = await client.post("/api/v1/admin/conversations", json={"user_id": test_user.id},
                             headers=get_auth_headers(admin_user))
    conv_id = resp.json()["conversation"]["id"]
    assert await _status(session_factory, conv_id) is None

    await client.post(f"/api/v1/conversations/{conv_id}/messages", json={"content": "Hello"},
                      headers=get_auth_headers(admin_user))
    assert await _status(session_factory, conv_id) == ConversationStatus.ANSWERED


@pytest.mark.asyncio
async def test_team_chat_status_never_changes(client, db_session, admin_user, session_factory):
    team = Conversation(client_id=admin_user.id, conversation_status=ConversationStatus.TEAM_CHAT)
    db_session.add(team)
    await db_session.commit()

    resp = await client.post(f"/api/v1/conversations/{team.id}/messages", json={"content": "Standup at 10"},
                             headers=get_auth_headers(admin_user))
    assert resp.status_code == 201
    assert await _status(session_factory, team.id) == ConversationStatus.TEAM_CHAT


@pytest.mark.asyncio
async def test_message_bumps_recency(client, test_user, session_factory):
    conv_id = await _open_conversation(client, test_user)
    await client.post(f"/api/v1/conversations/{conv_id}/messages", json={"content": "Hi"},
                      headers=get_auth_headers(test_user))

    async with session_factory() as db:
        conv = await db.get(Conversation, conv_id)
        msg = (await db.execute(select(Message).where(Message.conversation_id == conv_id))).scalar_one()
    assert conv.updated_at >= msg.created_at


@pytest.mark.asyncio
async def test_blank_message_rejected(client, test_user, session_factory):
    conv_id = await _open_conversation(client, test_user)
    resp = await client.post(f"/api/v1/conversations/{conv_id}/messages", json={"content": "   "},
                             headers=get_auth_headers(test_user))
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"

    async with session_factory() as db:
        count = len((await db.execute(select(Message))).all())
    assert count == 0


@pytest.mark.asyncio
async def test_messages_returned_ascending_with_client_code(client, test_user, admin_user):
    conv_id = await _open_conversation(client, test_user)
    url = f"/api/v1/conversations/{conv_id}/messages"
    for i, sender in enumerate([test_user, admin_user, test_user]):
        await client.post(url, json={"content": f"message {i}"}, headers=get_auth_headers(sender))

    resp = await client.get(url, headers=get_auth_headers(test_user))
    assert resp.status_code == 200
    messages = resp.json()["messages"]
    assert [m["content"] for m in messages] == ["message 0", "message 1", "message 2"]
    assert [m["created_at"] for m in messages] == sorted(m["created_at"] for m in messages)
    assert [m["sender_role"] for m in messages] == ["client", "admin", "client"]
    assert all(m["client_code"] == test_user.user_code for m in messages)


@pytest.mark.asyncio
async def test_sender_role_comes_from_token(client, test_user):
    conv_id = await _open_conversation(client, test_user)
    resp = await client.post(f"/api/v1/conversations/{conv_id}/messages",
                             json={"content": "hi", "senderRole": "admin"},
                             headers=get_auth_headers(test_user))
    assert resp.status_code == 201
    assert resp.json()["message"]["sender_role"] == "client"
    assert resp.json()["message"]["sender_id"] == test_user.id


@pytest.mark.asyncio
async def test_other_client_cannot_read_or_post(client, test_user, other_user):
    conv_id = await _open_conversation(client, test_user)
    url = f"/api/v1/conversations/{conv_id}/messages"
    headers = get_auth_headers(other_user)
    assert (await client.get(url, headers=headers)).status_code == 403
    assert (await client.post(url, json={"content": "hi"}, headers=headers)).status_code == 403


@pytest.mark.asyncio
async def test_message_to_unknown_conversation(client, test_user):
    resp = await client.post("/api/v1/conversations/9999/messages", json={"content": "hi"},
                             headers=get_auth_headers(test_user))
    assert resp.status_code == 404
