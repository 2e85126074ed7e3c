"""Pytest fixtures: SQLite test DB, local storage on tmp_path, test client, admin user."""
import os
import tempfile
from uuid import uuid4

# Settings are read once at import time; point them at throwaway resources first.
_TMP = tempfile.mkdtemp(prefix="storage-service-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["DEV_STORAGE_DIR"] = os.path.join(_TMP, "dev_storage")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["ENABLE_AV_SCAN"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.main import app
from app.core.config import get_settings
from app.core.deps import get_background_session_factory, get_scan_registry, get_storage_backend
from app.core.rate_limit import reset_rate_limits
from app.core.security import create_access_token
from app.db.models import Base, User
from app.db.session import async_session_factory, engine, get_db
from app.services.dedup import ScanJobRegistry
from app.services.storage import LocalStorage

CSRF = "test-csrf-token"
BUCKETS = ("image", "blog", "about", "custom", "files")


async def override_get_db():
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    root = tmp_path / "storage"
    for bucket in BUCKETS:
        (root / bucket).mkdir(parents=True)
    return LocalStorage(root=root, bucket_names={})


@pytest.fixture
def registry() -> ScanJobRegistry:
    return ScanJobRegistry()


@pytest.fixture
async def client(db, storage, registry):
    reset_rate_limits()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_backend] = lambda: storage
    app.dependency_overrides[get_scan_registry] = lambda: registry
    app.dependency_overrides[get_background_session_factory] = lambda: async_session_factory
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(db: AsyncSession, email: str, role: str) -> User:
    user = User(id=uuid4(), email=email, role=role)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def admin_user(db: AsyncSession) -> User:
    return await _make_user(db, "admin@test.com", "admin")


@pytest.fixture
async def viewer_user(db: AsyncSession) -> User:
    return await _make_user(db, "viewer@test.com", "viewer")


def login_as(client: AsyncClient, user: User) -> AsyncClient:
    """Set the access-token cookie and the double-submit CSRF cookie/header on the client."""
    settings = get_settings()
    client.cookies.set(settings.cookie_name, create_access_token(str(user.id), user.role))
    client.cookies.set(settings.csrf_cookie_name, CSRF)
    client.headers[settings.csrf_header_name] = CSRF
    return client


@pytest.fixture
async def admin_client(client: AsyncClient, admin_user: User) -> AsyncClient:
    return login_as(client, admin_user)
