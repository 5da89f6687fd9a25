from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.exc import StaleDataError
from app.core.config import settings
from app.core.exceptions import ConflictError, StorageError, TriageError
from app.core.logging import get_logger
from app.db.base import Base

logger = get_logger("db")


def build_engine(database_url: Optional[str] = None) -> AsyncEngine:
    return create_async_engine(database_url or settings.DATABASE_URL, echo=settings.DATABASE_ECHO)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def unit_of_work(session_factory: async_sessionmaker[AsyncSession], operation: str) -> AsyncIterator[AsyncSession]:
    """Open a session and a transaction; commit on success, roll back on any error.

    Storage failures are re-raised as ``StorageError``, lost optimistic-lock and
    uniqueness races as ``ConflictError``.
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                yield session
        except TriageError:
            raise
        except StaleDataError as e:
            logger.warning(f"{operation}: concurrent update detected ({e})")
            raise ConflictError(f"{operation} lost a race with a concurrent update, please retry") from e
        except IntegrityError as e:
            logger.warning(f"{operation}: integrity conflict ({e.orig})")
            raise ConflictError(f"{operation} conflicted with a concurrent write, please retry") from e
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            raise StorageError(f"{operation} failed due to a storage error") from e
