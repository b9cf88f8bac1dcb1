"""Async SQLAlchemy engine/session factories and declarative base.

Engines are created explicitly from :class:`~membership_engine.config.Settings`
and handed to the store; nothing here connects at import time.
"""

import uuid
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from membership_engine.config import Settings
from membership_engine.errors import ConfigurationError


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
    )


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column."""

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build the async engine for the configured target database."""
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is not configured")
    return create_async_engine(
        settings.async_database_url,
        echo=settings.sql_echo,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
