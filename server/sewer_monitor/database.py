"""Async SQLAlchemy engine, session factory and declarative base."""
import logging
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from sewer_monitor.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


# JSONB on PostgreSQL, plain JSON elsewhere. SQLite only autoincrements INTEGER keys.
JSONType = JSON().with_variant(JSONB(), "postgresql")
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def create_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.database_url
    logger.debug("Creating database engine for %s", url.split("@")[-1])
    return create_async_engine(url, echo=False, pool_pre_ping=True)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine()
async_session = create_session_factory(engine)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
