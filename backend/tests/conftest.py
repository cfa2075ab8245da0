"""Shared test fixtures: in-memory SQLite database, change feed, API client."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_ENABLED", "false")

from collections.abc import AsyncGenerator, Awaitable, Callable, Generator  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from api.main import app  # noqa: E402
from core.config import Settings, get_settings  # noqa: E402
from db.session import get_async_session, get_session_factory  # noqa: E402
from models.base import Base  # noqa: E402
from models.user import User  # noqa: E402
from services import auth_service  # noqa: E402
from services.change_feed import ChangeFeed, set_change_feed  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

TEST_PASSWORD = "correct-horse"


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        redis_enabled=False,
        require_email_confirmation=True,
        realtime_heartbeat_seconds=0.05,
    )


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession]:
    """Create all tables, yield a session, drop everything afterwards."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with test_session_factory() as session:
        yield session
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def change_feed() -> Generator[ChangeFeed]:
    """In-process change feed installed as the process-wide feed."""
    feed = ChangeFeed(queue_size=10)
    set_change_feed(feed)
    yield feed
    set_change_feed(None)


@pytest.fixture
async def client(
    db_session: AsyncSession,
    change_feed: ChangeFeed,  # noqa: ARG001
    settings: Settings,
) -> AsyncGenerator[AsyncClient]:
    """Yield an httpx AsyncClient wired to the test database and settings."""

    async def _override_get_async_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_async_session] = _override_get_async_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_session_factory] = lambda: test_session_factory
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(
    db_session: AsyncSession,
) -> Callable[[str], Awaitable[tuple[User, dict[str, str]]]]:
    """Factory creating a confirmed user with a live session; returns (user, auth headers)."""

    async def _make_user(email: str) -> tuple[User, dict[str, str]]:
        user = await auth_service.sign_up(
            db_session, email, TEST_PASSWORD, require_confirmation=False,
        )
        session = await auth_service.create_session(db_session, user, timedelta(hours=1))
        await db_session.commit()
        return user, {"Authorization": f"Bearer {session.token}"}

    return _make_user
