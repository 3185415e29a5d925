import os
from typing import AsyncGenerator, Callable

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.models import User
from app.auth.security import hash_password
from app.core.models import Center
from app.db.session import Base, engine_options, get_db
from app.main import app


@pytest.fixture()
async def engine(tmp_path):
    """Fresh SQLite file per test so every request session gets its own connection."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    test_engine = create_async_engine(url, future=True, **engine_options(url))
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture()
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Session for seeding and assertions. Each request gets its own session from the same factory."""
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with session_factory() as session:
        yield session
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def center(db_session: AsyncSession) -> Center:
    obj = Center(center_name="North Campus", center_address="1 High Street")
    db_session.add(obj)
    await db_session.commit()
    return obj


@pytest.fixture()
def make_user(db_session: AsyncSession, center: Center) -> Callable:
    async def _make(role: str, name: str = "Test", platform: bool = False) -> User:
        user = User(
            center_id=None if platform else center.id,
            name=name,
            surname="User",
            email=f"{role.lower()}.{name.lower()}@example.com",
            password_hash=hash_password("Secret123"),
            role=role,
            status="ACTIVE",
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture()
async def admin(make_user) -> User:
    return await make_user("ADMIN", name="Admin", platform=True)


@pytest.fixture()
async def center_admin(make_user) -> User:
    return await make_user("CENTER_ADMIN", name="Centre")


@pytest.fixture()
async def assessor(make_user) -> User:
    return await make_user("ASSESSOR", name="Assessor")


@pytest.fixture()
async def iqa(make_user) -> User:
    return await make_user("IQA", name="Iqa")


@pytest.fixture()
async def learner(make_user) -> User:
    return await make_user("LEARNER", name="Lena")
