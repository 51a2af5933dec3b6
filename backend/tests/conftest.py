"""Pytest configuration and fixtures."""

import os

# Settings are read at import time, so these must exist before `app` loads
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client.apps.googleusercontent.com")
os.environ.setdefault("ALLOWED_EMAIL_DOMAIN", "gbu.ac.in")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_S3_BUCKET", "avatars-test")

import pytest
from collections.abc import AsyncGenerator
from uuid import UUID, uuid4

from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.api.deps import create_access_token, get_search_loops, get_session_factory
from app.db.base import Base
from app.db.models import Chat, Profile, User
from app.db.session import get_db
from app.main import app
from app.services.search_loops import SearchLoops


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a throwaway SQLite database."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def loops(session_factory) -> AsyncGenerator[SearchLoops, None]:
    """Search loop registry ticking fast against the test database."""
    registry = SearchLoops(session_factory, interval=0.01)
    yield registry
    await registry.stop_all()


@pytest.fixture
async def client(session_factory, loops) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_search_loops] = lambda: loops
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user_id: UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


async def make_user(
    db: AsyncSession,
    name: str,
    *,
    user_id: UUID | None = None,
    with_profile: bool = True,
    searching: bool = False,
) -> User:
    """Insert a user (and by default a complete profile)."""
    user = User(id=user_id or uuid4(), email=f"{name.lower()}@gbu.ac.in", name=name)
    db.add(user)
    await db.flush()
    if with_profile:
        db.add(
            Profile(
                id=user.id,
                name=name,
                age=21,
                school="School of ICT",
                department="Computer Science",
                branch="CSE",
                whatsapp="+919876543210",
                is_searching=searching,
            )
        )
    await db.commit()
    return user


@pytest.fixture
async def pair(db) -> tuple[User, User]:
    """Two onboarded users, returned as (user1, user2) in canonical order."""
    first = await make_user(db, "Asha", user_id=UUID(int=1))
    second = await make_user(db, "Bilal", user_id=UUID(int=2))
    return first, second


@pytest.fixture
async def chat(db, pair) -> Chat:
    a, b = pair
    chat = Chat(user1_id=a.id, user2_id=b.id)
    db.add(chat)
    await db.commit()
    await db.refresh(chat)
    return chat
