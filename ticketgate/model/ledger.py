# model/ledger.py
from __future__ import annotations
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts, new_id
from ..infra.sql import Gated
from .records import Purchase


class PurchaseLedger:
    """Purchase records: customer + ticket type + (later) token id."""

    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def create(self, customer_id: str, ticket_type_id: str) -> Purchase:
        purchase = Purchase(
            id=new_id(), customer_id=customer_id,
            ticket_type_id=ticket_type_id, token_id=None,
        )
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(text("""
                    INSERT INTO purchases(
                        id, customer_id, ticket_type_id, token_id, created_at)
                    VALUES(:id, :cid, :tid, NULL, :c)
                """), {
                    "id": purchase.id, "cid": customer_id,
                    "tid": ticket_type_id, "c": now_ts(),
                })
        return purchase

    async def get(self, purchase_id: str) -> Optional[Purchase]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                    SELECT id, customer_id, ticket_type_id, token_id
                    FROM purchases WHERE id=:id
                """), {"id": purchase_id})).mappings().first()
        return Purchase.from_row(row) if row else None

    async def attach_token(
        self, purchase_id: str, token_id: str
    ) -> Optional[Purchase]:
        # a purchase gets exactly one token; never overwrite
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                    UPDATE purchases SET token_id=:tok
                    WHERE id=:id AND token_id IS NULL
                    RETURNING id, customer_id, ticket_type_id, token_id
                """), {"id": purchase_id, "tok": token_id})).mappings().first()
        return Purchase.from_row(row) if row else None

    async def delete(self, purchase_id: str) -> bool:
        # only used to undo a half-finished purchase
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text("DELETE FROM purchases WHERE id=:id RETURNING id"),
                    {"id": purchase_id},
                )).first()
        return row is not None
