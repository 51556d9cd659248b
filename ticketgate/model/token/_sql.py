# model/token/_sql.py
from __future__ import annotations
from typing import Optional, List

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ...helpers import now_ts, new_id
from ...infra.sql import Gated
from ..records import Token

_COLUMNS = "id, signed_value, active, updated_at"


class TokenStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def create(self, signed_value: str) -> Token:
        token = Token(
            id=new_id(), signed_value=signed_value, active=True,
            updated_at=now_ts(),
        )
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(text("""
                    INSERT INTO tokens(id, signed_value, active, updated_at)
                    VALUES(:id, :sv, :active, :ts)
                """), {
                    "id": token.id, "sv": signed_value, "active": True,
                    "ts": token.updated_at,
                })
        return token

    async def get(self, token_id: str) -> Optional[Token]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text(f"SELECT {_COLUMNS} FROM tokens WHERE id=:id"),
                    {"id": token_id},
                )).mappings().first()
        return Token.from_row(row) if row else None

    async def invalidate(self, token_id: str) -> Optional[Token]:
        async with self.gated():
            async with self.db.begin():
                # the flip is one write; an already inactive token keeps
                # its updated_at
                row = (await self.db.execute(text(f"""
                    UPDATE tokens SET active=:inactive, updated_at=:ts
                    WHERE id=:id AND active=:active
                    RETURNING {_COLUMNS}
                """), {
                    "id": token_id, "inactive": False, "active": True,
                    "ts": now_ts(),
                })).mappings().first()
                if row is None:
                    row = (await self.db.execute(
                        text(f"SELECT {_COLUMNS} FROM tokens WHERE id=:id"),
                        {"id": token_id},
                    )).mappings().first()
        return Token.from_row(row) if row else None

    async def inactive_before(
        self, cutoff: float, limit: int = 1000
    ) -> List[str]:
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(text("""
                    SELECT id FROM tokens
                    WHERE active=:inactive AND updated_at < :cutoff
                    ORDER BY updated_at
                    LIMIT :lim
                """), {
                    "inactive": False, "cutoff": cutoff, "lim": int(limit),
                })).all()
        return [r[0] for r in rows]

    async def delete(self, token_id: str) -> bool:
        # active tokens are never purged
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                    DELETE FROM tokens WHERE id=:id AND active=:inactive
                    RETURNING id
                """), {"id": token_id, "inactive": False})).first()
        return row is not None
