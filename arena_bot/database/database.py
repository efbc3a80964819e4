from typing import Any, Dict
from sqlalchemy import insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager

from arena_bot.config import Config
from arena_bot.database.models import Base
from arena_bot.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: str = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url or Config.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        connect_args = {}
        if database_url.startswith('sqlite'):
            # Concurrent writers wait on the database lock instead of failing fast
            connect_args['timeout'] = Config.DATABASE_BUSY_TIMEOUT

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            connect_args=connect_args
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @property
    def session_factory(self):
        return self.async_session

    @asynccontextmanager
    async def get_session(self):
        """Get a database session; the caller commits"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure.

        Usage:
            async with db.transaction() as session:
                await rating_ops.apply_delta(..., session=session)
                await rating_ops.apply_delta(..., session=session)

        Exceptions must be allowed to propagate out of the context for
        rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")


async def insert_if_absent(session: AsyncSession, model, values: Dict[str, Any]) -> bool:
    """
    Insert a row unless one with the same unique key already exists.

    Uses the dialect's ON CONFLICT DO NOTHING so concurrent creators never
    raise IntegrityError mid-transaction.

    Returns:
        True if this call inserted the row
    """
    dialect = session.get_bind().dialect.name
    if dialect == 'sqlite':
        stmt = sqlite.insert(model).values(**values).on_conflict_do_nothing()
    elif dialect == 'postgresql':
        stmt = postgresql.insert(model).values(**values).on_conflict_do_nothing()
    elif dialect in ('mysql', 'mariadb'):
        stmt = insert(model).values(**values).prefix_with('IGNORE')
    else:
        raise NotImplementedError(f"insert_if_absent is not supported on {dialect}")

    result = await session.execute(stmt)
    return bool(result.rowcount)
