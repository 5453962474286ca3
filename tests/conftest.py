"""
Pytest configuration and fixtures for testing
"""
import os

# Test configuration must be in place before settings are loaded
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "100000")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.pop("ENV", None)
os.environ.pop("REDIS_URL", None)

from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from auth_utils import ALGORITHM, create_jwt, hash_password
from config.settings import settings
from crud.user import UserRepository
from database import Base, get_db

# In-memory SQLite database for testing; StaticPool keeps a single shared connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

STRONG_PASSWORD = "StrongPass123!"


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    # Import models to ensure they're registered with Base
    import database_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
async def test_db(session_factory):
    """
    Isolated AsyncSession on the in-memory database.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
def override_get_db(session_factory):
    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()
    return _override_get_db


@pytest.fixture
async def async_client(override_get_db):
    """
    Async HTTP client against the app with the test database.
    """
    from main import app

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    """Create a committed user. Returns (user, bearer headers)."""
    async def _make_user(email="tenant@example.com", created_at=None, **extra):
        async with session_factory() as session:
            user = await UserRepository(session).create_user({
                "email": email,
                "hashed_password": hash_password(STRONG_PASSWORD),
                "created_at": created_at,
                **extra,
            })
            if extra:
                await UserRepository(session).update_user(user, extra)
            await session.commit()
        headers = {"Authorization": f"Bearer {create_jwt(str(user.id))}"}
        return user, headers
    return _make_user


@pytest.fixture
def expired_token():
    """Build a correctly signed JWT whose exp is already in the past."""
    def _expired_token(user_id: str, expired_seconds_ago: int = 1) -> str:
        payload = {
            "sub": user_id,
            "exp": datetime.now(timezone.utc) - timedelta(seconds=expired_seconds_ago),
        }
        return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)
    return _expired_token
