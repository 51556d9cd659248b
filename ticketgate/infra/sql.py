import asyncio
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, Callable, Dict, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

from ..errors import StorageError

Gated = Callable[[], AsyncContextManager[None]]

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)


def normalize_async_url(url: str) -> str:
    for plain, async_ in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return async_ + url[len(plain):]
    return url


def _pool_options(db_url: str) -> Tuple[Dict[str, Any], Optional[int]]:
    kw: Dict[str, Any] = dict(future=True, pool_pre_ping=True)
    if not db_url.startswith("postgresql+asyncpg://"):
        return kw, None
    pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
    kw.update(
        pool_size=pool_size,
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
        pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
    )
    return kw, pool_size


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    # writers queue on the lock for up to 5s
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _):
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA busy_timeout=5000;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()


# DB-GATE
# At most `gate_limit` coroutines talk to the database at once; driver
# errors leave the gate as StorageError.
@asynccontextmanager
async def _gated(sem: asyncio.Semaphore):
    await sem.acquire()
    try:
        yield
    except SQLAlchemyError as e:
        raise StorageError(f"database error: {e.__class__.__name__}") from e
    finally:
        sem.release()


def make_async_engine(
    database_url: str,
) -> Tuple[AsyncEngine, async_sessionmaker, Gated]:
    db_url = normalize_async_url(database_url)
    kw, pool_size = _pool_options(db_url)
    engine = create_async_engine(db_url, **kw)
    if db_url.startswith("sqlite+aiosqlite://"):
        _install_sqlite_pragmas(engine)

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    # sqlite: fixed default; postgres: never more than the pool
    default_limit = 10 if pool_size is None else pool_size
    gate_limit = int(os.getenv("DB_GATE_LIMIT", default_limit))
    db_gate = asyncio.Semaphore(max(1, gate_limit))

    def gated():
        return _gated(db_gate)

    return engine, SessionAsync, gated


async def create_schema(engine: AsyncEngine, metadata) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
