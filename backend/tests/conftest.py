"""
Pytest configuration and fixtures for Provisio tests.

Provides:
- Async SQLite in-memory database and session factory
- FastAPI app with the get_db dependency overridden
- AsyncClient for testing endpoints
- A file-backed database for tests that need real concurrent connections
- Helpers to register devices and create groups/templates over HTTP
"""

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from config import settings
from database import Base, get_db
from main import app
from services import registry


@pytest_asyncio.fixture
async def session_factory():
    """
    Session factory bound to a fresh in-memory database.

    Yields:
        sessionmaker producing AsyncSession objects.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        future=True,
    )
    async_session = sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        future=True,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_session

    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Session factory over a SQLite file, so each session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'provisio-test.db'}",
        echo=False,
        future=True,
        connect_args={"timeout": 30},
    )
    async_session = sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        future=True,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_session

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def device(db_session):
    """A registered device, created through the registry service."""
    registration = await registry.register(
        db_session, settings.SHARED_SECRET, "router1", "openwrt", "00:11:22:33:44:55"
    )
    return await registry.get_device(db_session, registration.uuid)


@pytest_asyncio.fixture
async def async_client(session_factory):
    """
    AsyncClient pointing at the FastAPI app with get_db overridden to
    use the in-memory test database.

    Yields:
        httpx.AsyncClient
    """
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def parse_registration(text: str) -> dict[str, str]:
    """Parse the line-based register response into a dict."""
    fields = {}
    for line in text.strip().splitlines():
        name, _, value = line.partition(":")
        fields[name.strip()] = value.strip()
    return fields


@pytest_asyncio.fixture
async def register_device(async_client: AsyncClient):
    """Callable that registers a device over HTTP and returns the parsed fields."""
    async def _register(mac: str = "aa:bb:cc:dd:ee:01", name: str = "router1", backend: str = "openwrt"):
        response = await async_client.post(
            "/controller/register/",
            data={
                "secret": settings.SHARED_SECRET,
                "name": name,
                "backend": backend,
                "mac_address": mac,
            },
        )
        assert response.status_code == 201, response.text
        return parse_registration(response.text)

    return _register


@pytest_asyncio.fixture
async def create_group(async_client: AsyncClient):
    async def _create(name: str) -> int:
        response = await async_client.post("/api/v1/groups", json={"name": name})
        assert response.status_code in (200, 201), response.text
        return response.json()["id"]

    return _create


@pytest_asyncio.fixture
async def create_template(async_client: AsyncClient):
    async def _create(name: str, path: str, body: str, **extra) -> int:
        payload = {"name": name, "path": path, "body": body}
        payload.update(extra)
        response = await async_client.post("/api/v1/templates", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["id"]

    return _create
