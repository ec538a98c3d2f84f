"""
Database engine and session management (SQLAlchemy 2.0 async).

All durable state (requests, items, audit events) goes through async
sessions created by the session factory. Never use synchronous sessions in
this codebase.

Design decisions:
- All models import Base from here to keep metadata centralized
- JSON documents map to JSONB on PostgreSQL and plain JSON elsewhere, so the
  same models run against SQLite in tests
- Sessions are short-lived: the store opens one per mutation and commits it
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, StaticPool

from subject_rights.config import Settings, get_settings

log = structlog.get_logger(__name__)

# JSONB on PostgreSQL, JSON on every other dialect
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models.

    Centralizing the metadata here ensures Alembic can discover all tables
    by importing this module.
    """

    type_annotation_map: dict[Any, Any] = {}


def build_engine(url: str, *, echo: bool = False, for_test: bool = False) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    In-memory SQLite shares a single connection (StaticPool) so every session
    sees the same database. Other test URLs use NullPool to avoid
    connection leaks between test cases.
    """
    kwargs: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite") and ":memory:" in url:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    elif for_test:
        kwargs["poolclass"] = NullPool
    else:
        kwargs.update(
            {
                "pool_size": 5,
                "max_overflow": 10,
                "pool_pre_ping": True,
                "pool_recycle": 300,  # Recycle connections every 5 minutes
            }
        )
    return create_async_engine(url, **kwargs)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Rows are returned to callers after commit
        autoflush=True,
    )


# Module-level engine, initialized by the runtime
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(settings: Settings | None = None, *, for_test: bool = False) -> None:
    """Initialize the database engine and session factory.

    Called once during runtime startup (or test setup).
    """
    global _engine, _session_factory
    cfg = settings or get_settings()
    _engine = build_engine(cfg.database_url, echo=cfg.db_echo_sql, for_test=for_test)
    _session_factory = make_session_factory(_engine)
    log.info("database.initialized", url=cfg.database_url.split("@")[-1])


async def close_db() -> None:
    """Dispose the engine and release all connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        log.info("database.closed")
        _engine = None
        _session_factory = None


def get_engine() -> AsyncEngine:
    """Return the initialized engine (raises if not initialized)."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the initialized session factory (raises if not initialized)."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory
