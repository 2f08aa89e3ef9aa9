"""Pytest configuration and shared fixtures for API and service tests."""

import os
import tempfile

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

# Set test DB before app imports so config/engine use it
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "wadai_test.db"),
)
os.environ.setdefault("JWT_SECRET", "test-secret-key-test-secret-key-0123")
os.environ.setdefault("APP_ENV", "test")

from wadai.config import settings
from wadai.core.auth import AccessTokenCodec, hash_password
from wadai.db.base import Base, utcnow
from wadai.db.session import async_session_maker, engine, init_db
from wadai.main import app
from wadai.models.credential import UserCredential
from wadai.models.user import User
from wadai.services.accounts import AuthService
from wadai.services.mailer import EmailMessage, EmailSender

TEST_PASSWORD = "password123"


class RecordingSender(EmailSender):
    """Captures outgoing email instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)

    def last_token(self) -> str:
        """Token at the end of the link in the most recent message."""
        assert self.sent, "no email was sent"
        body = self.sent[-1].text_body or ""
        link = next(line for line in body.splitlines() if line.startswith(settings.frontend_url))
        return link.rsplit("/", 1)[-1]


async def _clear_all():
    """Delete all rows in reverse dependency order so tests start clean."""
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(delete(table))


@pytest_asyncio.fixture
async def clean_db():
    """Create tables and empty them; dispose the pool afterwards so no connection outlives the test loop."""
    await init_db()
    await _clear_all()
    yield
    await engine.dispose()


@pytest.fixture
def mailbox() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def auth_service(mailbox) -> AuthService:
    service = AuthService.from_settings(settings, mailbox)
    app.state.auth_service = service
    return service


@pytest.fixture
def codec() -> AccessTokenCodec:
    return AccessTokenCodec.from_settings(settings)


@pytest_asyncio.fixture
async def session(clean_db):
    async with async_session_maker() as s:
        yield s


@pytest_asyncio.fixture
async def client(clean_db, auth_service):
    """AsyncClient over the ASGI app; lifespan does not run, auth_service is installed by the fixture."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def create_user(
    username: str = "testuser",
    email: str = "test@test.com",
    password: str = TEST_PASSWORD,
    email_verified: bool = False,
) -> User:
    """Insert a committed user with a credential."""
    async with async_session_maker() as s:
        password_hash, salt = hash_password(password)
        user = User(
            username=username,
            email=email,
            email_verified=email_verified,
            email_verified_at=utcnow() if email_verified else None,
        )
        user.credential = UserCredential(password_hash=password_hash, salt=salt)
        s.add(user)
        await s.commit()
        await s.refresh(user)
        return user


@pytest_asyncio.fixture
async def test_user(clean_db, codec):
    """Create a user via DB (committed) and return (user, access_token)."""
    user = await create_user()
    return user, codec.issue(user.id, user.username, user.email)


@pytest.fixture
def auth_headers(test_user):
    """Return dict of Authorization header for test_user."""
    _, token = test_user
    return {"Authorization": f"Bearer {token}"}
