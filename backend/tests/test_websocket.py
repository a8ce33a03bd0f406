# tests/test_websocket.py — Realtime hub/gateway, health, and security tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from auth import AuthService
from message_channel import MessageChannel
from models import Conversation, ConversationStatus, Message
from realtime import ConversationHub
from routers.websocket_router import RealtimeGateway
from tests.conftest import get_auth_headers


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def received(self, event_type):
        return [m for m in self.sent if m.get("type") == event_type]


@pytest.fixture
def hub():
    return ConversationHub()


@pytest.fixture
def gateway(hub, session_factory):
    return RealtimeGateway(hub, MessageChannel(publisher=hub.publish), session_factory=session_factory)


async def _conversation(db_session, owner, status=ConversationStatus.PENDING) -> Conversation:
    conv = Conversation(client_id=owner.id, conversation_status=status)
    db_session.add(conv)
    await db_session.commit()
    await db_session.refresh(conv)
    return conv


# --- Hub ---

@pytest.mark.asyncio
async def test_hub_publishes_to_every_listener():
    hub = ConversationHub()
    a, b, elsewhere = FakeSocket(), FakeSocket(), FakeSocket()
    hub.join(1, a)
    hub.join(1, b)
    hub.join(2, elsewhere)

    delivered = await hub.publish(1, {"id": 10, "content": "hi"})
    assert delivered == 2
    assert a.sent == b.sent == [{"type": "messageReceived", "message": {"id": 10, "content": "hi"}}]
    assert elsewhere.sent == []


@pytest.mark.asyncio
async def test_hub_drops_listener_on_failed_send():
    hub = ConversationHub()
    dead, alive = FakeSocket(fail=True), FakeSocket()
    hub.join(1, dead)
    hub.join(1, alive)

    assert await hub.publish(1, {"id": 1}) == 1
    assert hub.listeners(1) == [alive]


def test_hub_drop_removes_from_all_groups():
    hub = ConversationHub()
    ws = FakeSocket()
    hub.join(1, ws)
    hub.join(2, ws)
    hub.drop(ws)
    assert hub.get_stats() == {"conversations": 0, "listeners": 0}


# --- Gateway ---

@pytest.mark.asyncio
async def test_identify_from_token(gateway, test_user):
    token = AuthService.create_access_token({"sub": str(test_user.id)})
    assert await gateway.identify(token) == {"user_id": test_user.id, "role": "client"}
    assert await gateway.identify("not-a-token") is None


@pytest.mark.asyncio
async def test_new_message_fans_out_to_all_listeners_including_sender(gateway, hub, db_session, test_user,
                                                                     admin_user, session_factory):
    conv = await _conversation(db_session, test_user)
    client_ws, staff_ws = FakeSocket(), FakeSocket()
    client_identity = {"user_id": test_user.id, "role": "client"}
    await gateway.dispatch(client_ws, client_identity, {"type": "joinConversation", "conversationId": conv.id})
    await gateway.dispatch(staff_ws, {"user_id": admin_user.id, "role": "admin"},
                           {"type": "joinConversation", "conversationId": conv.id})

    await gateway.dispatch(client_ws, client_identity, {
        "type": "newMessage", "conversationId": conv.id,
        "senderId": test_user.id, "senderRole": "client", "content": "Is my certificate ready?",
    })

    for ws in (client_ws, staff_ws):
        events = ws.received("messageReceived")
        assert len(events) == 1
        assert events[0]["message"]["content"] == "Is my certificate ready?"
        assert events[0]["message"]["client_code"] == test_user.user_code

    async with session_factory() as db:
        stored = await db.get(Conversation, conv.id)
    assert stored.conversation_status == ConversationStatus.PENDING


@pytest.mark.asyncio
async def test_staff_message_over_socket_marks_answered(gateway, db_session, test_user, admin_user,
                                                        session_factory):
    conv = await _conversation(db_session, test_user)
    await gateway.dispatch(FakeSocket(), {"user_id": admin_user.id, "role": "admin"}, {
        "type": "newMessage", "conversationId": conv.id,
        "senderId": admin_user.id, "senderRole": "admin", "content": "Yes, it is ready.",
    })
    async with session_factory() as db:
        stored = await db.get(Conversation, conv.id)
    assert stored.conversation_status == ConversationStatus.ANSWERED


@pytest.mark.asyncio
async def test_join_refused_for_other_client(gateway, hub, db_session, test_user, other_user):
    conv = await _conversation(db_session, test_user)
    await gateway.dispatch(FakeSocket(), {"user_id": other_user.id, "role": "client"},
                           {"type": "joinConversation", "conversationId": conv.id})
    assert hub.listeners(conv.id) == []


@pytest.mark.asyncio
async def test_spoofed_sender_is_ignored(gateway, hub, db_session, test_user, admin_user, session_factory):
    conv = await _conversation(db_session, test_user)
    listener = FakeSocket()
    hub.join(conv.id, listener)

    sender = FakeSocket()
    await gateway.dispatch(sender, {"user_id": test_user.id, "role": "client"}, {
        "type": "newMessage", "conversationId": conv.id,
        "senderId": admin_user.id, "senderRole": "admin", "content": "I am staff",
    })

    assert listener.sent == []
    assert sender.sent == []
    async with session_factory() as db:
        assert (await db.execute(select(Message))).all() == []


@pytest.mark.asyncio
async def test_failed_message_is_logged_not_acknowledged(gateway, hub, db_session, test_user):
    conv = await _conversation(db_session, test_user)
    sender = FakeSocket()
    hub.join(conv.id, sender)
    identity = {"user_id": test_user.id, "role": "client"}

    await gateway.dispatch(sender, identity, {
        "type": "newMessage", "conversationId": conv.id,
        "senderId": test_user.id, "senderRole": "client", "content": "   ",
    })
    await gateway.dispatch(sender, identity, {
        "type": "newMessage", "conversationId": 9999,
        "senderId": test_user.id, "senderRole": "client", "content": "hello?",
    })
    assert sender.sent == []


@pytest.mark.asyncio
async def test_ping(gateway, test_user):
    ws = FakeSocket()
    await gateway.dispatch(ws, {"user_id": test_user.id, "role": "client"}, {"type": "ping"})
    assert len(ws.received("pong")) == 1


@pytest.mark.asyncio
async def test_http_and_socket_share_history(client, gateway, hub, db_session, test_user, admin_user):
    conv = await _conversation(db_session, test_user)
    await client.post(f"/api/v1/conversations/{conv.id}/messages", json={"content": "via http"},
                      headers=get_auth_headers(test_user))
    await gateway.dispatch(FakeSocket(), {"user_id": admin_user.id, "role": "admin"}, {
        "type": "newMessage", "conversationId": conv.id,
        "senderId": admin_user.id, "senderRole": "admin", "content": "via socket",
    })

    resp = await client.get(f"/api/v1/conversations/{conv.id}/messages", headers=get_auth_headers(admin_user))
    assert [m["content"] for m in resp.json()["messages"]] == ["via http", "via socket"]


# --- App surface ---

@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    """Health endpoint returns OK"""
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient):
    """Responses include security and correlation headers"""
    resp = await client.get("/health")
    assert resp.headers.get("X-Content-Type-Options") == "nosniff"
    assert resp.headers.get("X-Frame-Options") == "DENY"
    assert "x-request-id" in {k.lower() for k in resp.headers}
    assert "x-response-time" in {k.lower() for k in resp.headers}


@pytest.mark.asyncio
async def test_request_id_is_echoed_in_errors(client: AsyncClient):
    resp = await client.get("/api/v1/my-certificates", headers={"X-Request-ID": "req-123"})
    assert resp.status_code == 401
    assert resp.json() == {
        "success": False, "error": "No token provided", "code": "authentication_error", "request_id": "req-123",
    }


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    resp = await client.get("/api/v1/my-certificates", headers={"Authorization": "Bearer invalid.token.here"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_websocket_stats(client: AsyncClient):
    resp = await client.get("/ws/stats")
    assert resp.status_code == 200
    assert set(resp.json()) == {"conversations", "listeners"}


@pytest.mark.asyncio
async def test_string_ids_are_accepted(gateway, hub, db_session, test_user, session_factory):
    conv = await _conversation(db_session, test_user)
    ws = FakeSocket()
    identity = {"user_id": test_user.id, "role": "client"}
    await gateway.dispatch(ws, identity, {"type": "joinConversation", "conversationId": str(conv.id)})
    await gateway.dispatch(ws, identity, {
        "type": "newMessage", "conversationId": str(conv.id),
        "senderId": str(test_user.id), "senderRole": "client", "content": "sent as strings",
    })

    assert [e["message"]["content"] for e in ws.received("messageReceived")] == ["sent as strings"]
    async with session_factory() as db:
        assert len((await db.execute(select(Message))).all()) == 1


@pytest.mark.asyncio
async def test_malformed_frame_keeps_subscriptions(gateway, hub, db_session, test_user):
    conv = await _conversation(db_session, test_user)
    ws = FakeSocket()
    identity = {"user_id": test_user.id, "role": "client"}
    await gateway.handle_frame(ws, identity, f'{{"type": "joinConversation", "conversationId": {conv.id}}}')
    await gateway.handle_frame(ws, identity, "{not json")
    await gateway.handle_frame(ws, identity, '["not", "an", "event"]')
    assert hub.listeners(conv.id) == [ws]

    await gateway.handle_frame(ws, identity, '{"type": "ping"}')
    assert len(ws.received("pong")) == 1
