"""Async DB session."""
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import get_settings
from app.db.models import Base


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    kwargs = {"echo": echo}
    if not url.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


settings = get_settings()
engine = make_engine(settings.database_url, echo=settings.debug)
async_session_factory = make_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory used by background scan jobs, which outlive the request session."""
    return async_session_factory


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create tables (Alembic handles migrations; this is for tests or explicit init)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
