# tests/conftest.py — Shared test fixtures
import os
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import Base, User, Certificate, CertificateStatus, UserRole
from auth import AuthService
from certificate_renderer import get_certificate_renderer
from database import get_db_session
from document_store import DocumentStore, get_document_store
from email_sender import get_email_sender
from payments import PaymentHandle, get_payment_provider
from main import app


# --- Fake collaborators ---

class FakeRenderer:
    def __init__(self):
        self.requests = []

    async def render(self, req):
        self.requests.append(req)
        return f"/tmp/certificate_{req.certificate_id}.pdf"


class FakeEmailSender:
    enabled = True

    def __init__(self):
        self.sent = []

    async def send(self, to, subject, body):
        self.sent.append({"to": to, "subject": subject, "body": body})


class FakePaymentProvider:
    def __init__(self):
        self.intents = []

    async def create_intent(self, amount, description, metadata=None):
        self.intents.append({"amount": amount, "description": description, "metadata": metadata})
        return PaymentHandle(f"pi_test_{len(self.intents)}", f"pi_test_{len(self.intents)}_secret", amount, "eur")


# --- Database ---

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# --- Collaborators ---

@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def payment_provider():
    return FakePaymentProvider()


@pytest.fixture
def document_store(tmp_path):
    return DocumentStore(root=str(tmp_path / "uploads"))


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, renderer, email_sender, payment_provider, document_store):
    """HTTP test client with overridden DB dependency and fake collaborators"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_certificate_renderer] = lambda: renderer
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider
    app.dependency_overrides[get_document_store] = lambda: document_store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# --- Users ---

async def make_user(db_session, role: UserRole = UserRole.CLIENT, **fields) -> User:
    n = uuid.uuid4().hex[:8].upper()
    prefix = "AD" if role == UserRole.ADMIN else "CL"
    user = User(
        user_code=fields.pop("user_code", f"{prefix}{n}"),
        role=role,
        first_name=fields.pop("first_name", f"User{n}"),
        last_name=fields.pop("last_name", "Test"),
        business_name=fields.pop("business_name", f"Business {n}"),
        contact_email=fields.pop("contact_email", f"user{n.lower()}@certisphere.test"),
        password_hash=AuthService.hash_password("TestPassword123!"),
        **fields,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session):
    """A client"""
    return await make_user(db_session, business_name="Acme Civil Ltd")


@pytest_asyncio.fixture
async def other_user(db_session):
    """A second, unrelated client"""
    return await make_user(db_session)


@pytest_asyncio.fixture
async def admin_user(db_session):
    """A staff member"""
    return await make_user(db_session, role=UserRole.ADMIN)


async def make_certificate(db_session, owner: User, status=None, certificate_type=None,
                           price=None, **fields) -> Certificate:
    cert = Certificate(
        user_id=owner.id,
        status=status,
        certificate_type=certificate_type,
        price=price,
        paid=fields.pop("paid", False),
        **fields,
    )
    db_session.add(cert)
    await db_session.commit()
    await db_session.refresh(cert)
    return cert


@pytest_asyncio.fixture
async def pending_certificate(db_session, test_user):
    return await make_certificate(
        db_session, test_user,
        status=CertificateStatus.PENDING_PAYMENT,
        certificate_type="Structural Engineering Certificate",
        certificate_name="Bridge Audit",
        price=150_00,
    )


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": str(user.id),
        "email": user.contact_email,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}
