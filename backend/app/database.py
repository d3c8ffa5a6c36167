"""
Noterverse Backend — Database Engine & Sessions
=================================================

What:  The async engine, the session factory and the per-request session dependency.
How:   One AsyncSession per request. The user resolver and the note service
       share it, so a first sign-in and the note it creates commit together.
When:  Engine built at import; sessions opened per request and committed
       (or rolled back) when the response is ready.

Storage Boundary:
    Only ciphertext envelopes and plaintext metadata (tags, timestamps,
    user ids) ever pass through this layer. Note content is encrypted in
    NoteService before it reaches a session.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings


def _engine_options(url: str) -> dict:
    # SQLite (used by local tooling) does not accept pool sizing arguments
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": settings.db_pool_pre_ping,
        "pool_recycle": 3600,
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.log_level == "DEBUG",
    **_engine_options(settings.database_url),
)

# expire_on_commit=False: attributes stay readable after commit without a new query
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Registers models with a single metadata object, which Alembic reads
    for --autogenerate.
    """
    pass


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session.

    require_auth and the route handler receive the same session (FastAPI
    caches the dependency per request). Commit on success, rollback on any
    exception, so a rejected request leaves no half-created user behind.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def dispose_engine() -> None:
    """Closes all pooled connections. Called from the lifespan shutdown."""
    await engine.dispose()
