# model/token/__init__.py
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from ...infra.sql import Gated
from ._sql import TokenStore as SqlTokenStore
from ._redis import TokenStore as RedisTokenStore


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, backend: str = "sql",  # Settings.token_backend
              db: Optional[AsyncSession] = None,
              gated: Optional[Gated] = None,
              r: Optional[redis.Redis] = None):
    backend = backend.lower()
    if backend == "sql":
        if db is None or gated is None:
            raise RuntimeError(
                "TokenStore(sql) requires db=AsyncSession and gated=Gated"
            )
        return SqlTokenStore(db=db, gated=gated)
    elif backend == "redis":
        if r is None:
            raise RuntimeError("TokenStore(redis) requires r=redis.Redis")
        return RedisTokenStore(r=r)
    raise RuntimeError(f"unknown token backend: {backend!r}")


__all__ = ["SqlTokenStore", "RedisTokenStore", "new_store"]
