# model/token/_redis.py
from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Optional, List
import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from ...errors import StorageError
from ...helpers import now_ts, new_id
from ..records import Token


# ---- keys
def k_token(token_id: str) -> str: return f"token:{token_id}"


INACTIVE_INDEX = "tokens:inactive"  # zset: token id -> updated_at


@asynccontextmanager
async def _guard():
    try:
        yield
    except RedisError as e:
        raise StorageError(f"redis error: {e.__class__.__name__}") from e


class TokenStore:
    def __init__(self, *, r: redis.Redis) -> None:
        # expects decode_responses=True
        self.r = r

    async def create(self, signed_value: str) -> Token:
        token = Token(
            id=new_id(), signed_value=signed_value, active=True,
            updated_at=now_ts(),
        )
        async with _guard():
            await self.r.hset(k_token(token.id), mapping={
                "id": token.id,
                "signed_value": signed_value,
                "active": "1",
                "updated_at": str(token.updated_at),
            })
        return token

    async def get(self, token_id: str) -> Optional[Token]:
        async with _guard():
            h = await self.r.hgetall(k_token(token_id))
        return Token.from_row(h) if h else None

    async def invalidate(self, token_id: str) -> Optional[Token]:
        key = k_token(token_id)
        async with _guard():
            async with self.r.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        h = await pipe.hgetall(key)
                        if not h:
                            return None
                        token = Token.from_row(h)
                        if not token.active:
                            return token
                        token.active = False
                        token.updated_at = now_ts()
                        # flag + index change in one MULTI/EXEC
                        pipe.multi()
                        pipe.hset(key, mapping={
                            "active": "0",
                            "updated_at": str(token.updated_at),
                        })
                        pipe.zadd(INACTIVE_INDEX, {token_id: token.updated_at})
                        await pipe.execute()
                        return token
                    except WatchError:
                        # someone else touched the token; re-read
                        continue

    async def inactive_before(
        self, cutoff: float, limit: int = 1000
    ) -> List[str]:
        async with _guard():
            return await self.r.zrangebyscore(
                INACTIVE_INDEX, "-inf", f"({cutoff}", start=0, num=int(limit)
            )

    async def delete(self, token_id: str) -> bool:
        # active tokens are never purged
        key = k_token(token_id)
        async with _guard():
            async with self.r.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        active = await pipe.hget(key, "active")
                        if active is None:
                            # stale index entry
                            await pipe.unwatch()
                            await self.r.zrem(INACTIVE_INDEX, token_id)
                            return False
                        if active == "1":
                            await pipe.unwatch()
                            return False
                        pipe.multi()
                        pipe.delete(key)
                        pipe.zrem(INACTIVE_INDEX, token_id)
                        deleted, _ = await pipe.execute()
                        return bool(deleted)
                    except WatchError:
                        continue
