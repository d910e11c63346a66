"""FORGE - Async SQLAlchemy session, engine and the transactional unit of work."""
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Hashable, Iterable
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.exc import StaleDataError

from forge.config import get_settings
from forge.core.locks import stock_locks
from forge.exceptions import StateConflictError

logger = logging.getLogger(__name__)

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
    echo=settings.DEBUG,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency: yield async DB session. Engine commands commit their own work."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def transaction(db: AsyncSession, keys: Iterable[Hashable] = ()) -> AsyncIterator[AsyncSession]:
    """
    One command, one transaction.

    Locks ``keys`` for the duration of the body and the commit. Any exception
    rolls the whole unit back, so either every write (aggregate state and
    ledger rows) lands or none does. Optimistic version failures surface as
    StateConflictError.
    """
    async with stock_locks.acquire(keys, get_settings().LOCK_TIMEOUT_SECONDS):
        try:
            yield db
            await db.commit()
        except StaleDataError as exc:
            await db.rollback()
            logger.warning("Stale write rejected: %s", exc)
            raise StateConflictError(
                "Record was modified by a concurrent operation; reload and retry"
            ) from exc
        except Exception:
            await db.rollback()
            raise
