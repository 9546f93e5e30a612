"""
Shared fixtures.

Environment is set before anything from builder_cms is imported, because
settings are read once at import time.
"""
import io
import itertools
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock

import bcrypt
import pytest
from PIL import Image

CMS_PASSWORD = "test-password"

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ADMIN_PASSWORD_HASH"] = bcrypt.hashpw(
    CMS_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)
).decode("utf-8")

import httpx  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from builder_cms.database import Base, get_db  # noqa: E402
from builder_cms import models  # noqa: E402,F401


def make_png(color: str = "red", size: tuple[int, int] = (16, 16)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def cms_password() -> str:
    return CMS_PASSWORD


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def storage(monkeypatch):
    """Cloudinary replaced by AsyncMocks; uploads get unique delivery URLs."""
    from builder_cms.routes import cms, files
    from builder_cms.services import file_manager

    counter = itertools.count(1)

    async def fake_upload(content, folder=None, public_id=None, max_retries=3):
        n = next(counter)
        return {
            "url": f"https://res.cloudinary.com/demo/image/upload/v1/{folder}/img{n}.webp",
            "public_id": f"{folder}/img{n}",
        }

    upload = AsyncMock(side_effect=fake_upload)
    delete = AsyncMock(return_value=True)
    monkeypatch.setattr(files, "upload_image", upload)
    monkeypatch.setattr(cms, "delete_image_by_url", delete)
    monkeypatch.setattr(file_manager, "delete_image_by_url", delete)
    return SimpleNamespace(upload=upload, delete=delete)


@pytest.fixture
def app(session_factory, storage):
    from builder_cms.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """Client authenticated as CMS admin."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
        headers={"X-CMS-Password": CMS_PASSWORD},
    ) as client:
        yield client


@pytest.fixture
async def anonymous_client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
async def project(client) -> dict:
    response = await client.post(
        "/api/cms/projects",
        json={"title": "Riverside Townhouses", "category": "Residential"},
    )
    assert response.status_code == 201
    return response.json()
