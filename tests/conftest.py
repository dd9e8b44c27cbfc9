"""Shared test fixtures."""

from __future__ import annotations

import itertools
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import fanclub.db.models  # noqa: F401
from fanclub.attachments import AttachmentService
from fanclub.billing import PaymentService, reset_payment_service
from fanclub.config import Settings, get_settings
from fanclub.cookies import RequestCookies
from fanclub.database import close_db, create_all, get_session, init_db
from fanclub.db.base import Base
from fanclub.db.models import User
from fanclub.devices import RequestInfo
from fanclub.site_settings import StaticSiteSettings
from fanclub.storage import DRIVER_PUBLIC, DRIVER_S3, BaseDisk, StorageManager, reset_storage_manager
from fanclub.users.observer import UsersObserver

ADMIN_TOKEN = "test-admin-token"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with every table created."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """A session on the in-memory database."""
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., object]:
    """Insert users directly, bypassing the lifecycle hooks."""
    counter = itertools.count(1)

    async def _make_user(**overrides: object) -> User:
        n = next(counter)
        now = datetime.now(timezone.utc)
        values: dict[str, object] = {
            "username": f"user{n}",
            "email": f"user{n}@example.com",
            "name": None,
            "avatar": None,
            "cover": None,
            "referral_code": f"CODE{n:04d}",
            "role_id": None,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        user = User(**values)
        db_session.add(user)
        await db_session.flush()
        return user

    return _make_user


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def disk() -> AsyncMock:
    return AsyncMock(spec=BaseDisk)


@pytest.fixture
def payments() -> MagicMock:
    service = MagicMock(spec=PaymentService)
    service.cancel_subscription = AsyncMock(return_value=True)
    return service


@pytest.fixture
def attachment_service() -> MagicMock:
    service = MagicMock(spec=AttachmentService)
    service.remove_attachment = AsyncMock(return_value=None)
    return service


@pytest.fixture
def make_observer(
    db_session: AsyncSession,
    test_settings: Settings,
    disk: AsyncMock,
    payments: MagicMock,
    attachment_service: MagicMock,
) -> Callable[..., UsersObserver]:
    """Build a UsersObserver with test doubles. Site settings are passed as a plain dict."""

    def _make_observer(
        site_settings: dict[str, object] | None = None,
        cookies: dict[str, str] | None = None,
        storage: StorageManager | None = None,
        request_info: RequestInfo | None = None,
    ) -> UsersObserver:
        return UsersObserver(
            db=db_session,
            site_settings=StaticSiteSettings(site_settings or {}, settings=test_settings),
            payments=payments,
            storage=storage or StorageManager({DRIVER_PUBLIC: disk, DRIVER_S3: disk}),
            attachments=attachment_service,
            cookies=RequestCookies(cookies),
            request_info=request_info,
        )

    return _make_observer


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(tmp_path, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client backed by a throwaway SQLite file."""
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'fanclub.db'}"
    monkeypatch.setenv("FANCLUB_DATABASE_URL", database_url)
    monkeypatch.setenv("FANCLUB_ADMIN_TOKEN", ADMIN_TOKEN)
    monkeypatch.setenv("FANCLUB_STORAGE_PUBLIC_ROOT", str(tmp_path / "public"))
    monkeypatch.setenv("FANCLUB_LOG_FORMAT", "console")
    get_settings.cache_clear()
    reset_payment_service()
    reset_storage_manager()

    from fanclub.main import create_app

    app = create_app()
    await init_db(database_url)
    await create_all()

    # Unhandled errors come back as the 500 response the app sends, not as exceptions
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await close_db()
    get_settings.cache_clear()
    reset_payment_service()
    reset_storage_manager()


@pytest_asyncio.fixture
async def api_db(client: AsyncClient) -> AsyncGenerator[AsyncSession, None]:
    """A session on the database the test client's app is using."""
    async for session in get_session():
        yield session
        break


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": ADMIN_TOKEN}
