# dream_diary_backend/infrastructure/db/bootstrap.py
"""
Async engine / session lifecycle.

``init_engine`` must run once (app lifespan or a test fixture) before
``session_scope`` is used.  Callers read ``bootstrap.engine`` through the
module so they see the engine created at init time.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from dream_diary_backend.infrastructure.db.meta import Base

logger = logging.getLogger(__name__)

engine: Optional[AsyncEngine] = None
SessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


async def init_engine(db_url: str) -> AsyncEngine:
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()

    url = make_url(db_url)
    if url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(db_url, future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
    logger.info(f"Database engine ready ({url.drivername})")
    return engine


async def create_tables() -> None:
    # importing the models registers them on Base.metadata
    from dream_diary_backend.infrastructure.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    SessionLocal = None


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Yield a session; roll back on error, always close."""
    if SessionLocal is None:
        raise RuntimeError("Database engine not initialised; call init_engine() first")
    session = SessionLocal()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()

