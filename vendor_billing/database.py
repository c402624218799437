import json
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from datetime import datetime, date
from typing import AsyncGenerator
from uuid import UUID

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from vendor_billing.config import Settings

logger = logging.getLogger(__name__)


# Custom JSON encoder that handles Decimal, datetime, UUID, etc.
class CustomJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime, UUID and other types."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        return super().default(obj)


def custom_json_dumps(obj):
    """JSON dumps used for JSON columns on every dialect."""
    return json.dumps(obj, cls=CustomJSONEncoder)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _driver_url(database_url: str) -> str:
    """Convert database URL for the async psycopg driver."""
    if database_url.startswith("postgresql+asyncpg://"):
        return database_url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+psycopg://")
    return database_url


class Database:
    """
    Owns the async engine and session factory for one process.

    Built once by the application factory and handed to whoever needs a
    session; nothing in the package reaches for a global engine.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

        if settings.is_sqlite:
            self.engine = create_async_engine(
                settings.DATABASE_URL,
                echo=settings.DEBUG,
                json_serializer=custom_json_dumps,
                connect_args={"check_same_thread": False},
            )
            self._enable_sqlite_savepoints()
        else:
            self.engine = create_async_engine(
                _driver_url(settings.DATABASE_URL),
                echo=settings.DEBUG,
                json_serializer=custom_json_dumps,
                pool_pre_ping=True,  # Check connection health before use
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_recycle=settings.DB_POOL_RECYCLE,
                connect_args={
                    "prepare_threshold": None,  # Disable prepared statements for poolers
                    "connect_timeout": 30,
                },
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    def _enable_sqlite_savepoints(self) -> None:
        # pysqlite defers BEGIN on its own; take it over so SAVEPOINT works.
        sync_engine = self.engine.sync_engine

        @event.listens_for(sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager for a unit of work outside a request."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables registered on Base.metadata."""
        from vendor_billing import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database ready ({len(Base.metadata.tables)} tables)")

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    database: Database = request.app.state.database
    async with database.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
