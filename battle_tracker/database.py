from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
import structlog
from battle_tracker.config import settings
from battle_tracker.exceptions import StorageError

log = structlog.get_logger(__name__)


def enable_sqlite_foreign_keys(sync_engine: Engine) -> None:
    """SQLite ignores ON DELETE CASCADE unless the pragma is set per connection."""

    @event.listens_for(sync_engine, "connect")
    def _set_pragma(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str) -> AsyncEngine:
    if make_url(url).get_backend_name() == "sqlite":
        sqlite_engine = create_async_engine(url, echo=False)
        enable_sqlite_foreign_keys(sqlite_engine.sync_engine)
        return sqlite_engine
    return create_async_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,         # detect stale connections
        pool_recycle=3600,
        echo=False,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with SessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def unit_of_work(db: AsyncSession, operation: str) -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back on any failure. Driver errors surface as StorageError."""
    try:
        yield db
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        log.error("database.unit_of_work.failed", operation=operation, error=str(exc))
        raise StorageError(
            f"{operation} failed: {exc.__class__.__name__}",
            context={"operation": operation},
        ) from exc
    except Exception:
        await db.rollback()
        raise


async def init_db() -> None:
    # Schema is normally managed outside the service; this only fills gaps.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("database.initialized", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    await engine.dispose()
    log.info("database.closed")
