"""Async SQLAlchemy database engine and session management."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from incidentdesk.config import settings

# Detect database backend and configure accordingly
_is_postgres = "postgresql" in settings.database_url
_is_pgbouncer = "pgbouncer=true" in settings.database_url and "asyncpg" in settings.database_url

_engine_kwargs: dict = {"echo": False}
if _is_postgres:
    # PostgreSQL connection pool settings
    _engine_kwargs.update({
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    })

if _is_pgbouncer:
    # PgBouncer in transaction pooling mode cannot share prepared statements.
    for key in ("pool_size", "max_overflow", "pool_pre_ping", "pool_recycle"):
        _engine_kwargs.pop(key, None)
    _engine_kwargs["poolclass"] = NullPool
    _engine_kwargs["connect_args"] = {
        "prepared_statement_name_func": lambda: f"__asyncpg_{uuid.uuid4()}__",
        "statement_cache_size": 0,
    }

engine = create_async_engine(settings.database_url, **_engine_kwargs)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
logger = logging.getLogger("incidentdesk.database")


class Base(DeclarativeBase):
    pass


def import_models() -> None:
    """Import every model module so ``Base.metadata`` is fully populated."""
    from incidentdesk.models import organization, incident, activity  # noqa: F401
    from incidentdesk.models import escalation, message  # noqa: F401


async def init_db() -> None:
    """Create all tables when AUTO_CREATE_SCHEMA is enabled."""
    if not settings.auto_create_schema:
        logger.info("Skipping Base.metadata.create_all (AUTO_CREATE_SCHEMA=false)")
        return

    import_models()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncSession:  # type: ignore[misc]
    """Dependency yielding an async DB session."""
    async with async_session() as session:
        yield session
