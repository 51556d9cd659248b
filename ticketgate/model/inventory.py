# model/inventory.py
"""
Ticket inventory: remaining purchasable units per ticket type.

The check and the decrement happen in one conditional UPDATE, so two
concurrent buyers of the last unit cannot both see quantity=1: whoever's
UPDATE runs second matches no row. `release` is the compensating increment
used when a purchase fails after its unit was reserved.
"""
from __future__ import annotations
from typing import Optional, Tuple, List, Dict, Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import Failure
from ..helpers import now_ts, new_id
from ..infra.sql import Gated
from .records import TicketType

_COLUMNS = "id, event_id, name, unit_price, remaining_quantity"


class TicketInventory:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def create(
        self, *, event_id: str, unit_price: int, quantity: int,
        name: str = "",
    ) -> TicketType:
        if quantity < 0:
            raise ValueError("quantity must be >= 0")
        if unit_price < 0:
            raise ValueError("unit_price must be >= 0")
        ticket = TicketType(
            id=new_id(), event_id=event_id, unit_price=unit_price,
            remaining_quantity=quantity, name=name,
        )
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(text("""
                    INSERT INTO ticket_types(
                        id, event_id, name, unit_price, remaining_quantity,
                        created_at)
                    VALUES(:id, :event_id, :name, :price, :qty, :c)
                """), {
                    "id": ticket.id, "event_id": event_id, "name": name,
                    "price": unit_price, "qty": quantity, "c": now_ts(),
                })
        return ticket

    async def get(self, ticket_type_id: str) -> Optional[TicketType]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text(f"SELECT {_COLUMNS} FROM ticket_types WHERE id=:id"),
                    {"id": ticket_type_id},
                )).mappings().first()
        return TicketType.from_row(row) if row else None

    async def exists(self, ticket_type_id: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text("SELECT 1 FROM ticket_types WHERE id=:id"),
                    {"id": ticket_type_id},
                )).first()
        return row is not None

    async def reserve(
        self, ticket_type_id: str
    ) -> Tuple[Optional[TicketType], Optional[Failure]]:
        async with self.gated():
            async with self.db.begin():
                # first statement is the write: the transaction takes the
                # row (pg) / database (sqlite) write lock right away
                row = (await self.db.execute(text(f"""
                    UPDATE ticket_types
                    SET remaining_quantity = remaining_quantity - 1
                    WHERE id = :id AND remaining_quantity > 0
                    RETURNING {_COLUMNS}
                """), {"id": ticket_type_id})).mappings().first()
                if row is not None:
                    return TicketType.from_row(row), None

                known = (await self.db.execute(
                    text("SELECT 1 FROM ticket_types WHERE id=:id"),
                    {"id": ticket_type_id},
                )).first()
        if known is None:
            return None, Failure.NOT_FOUND
        return None, Failure.OUT_OF_STOCK

    async def release(self, ticket_type_id: str) -> Optional[TicketType]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text(f"""
                    UPDATE ticket_types
                    SET remaining_quantity = remaining_quantity + 1
                    WHERE id = :id
                    RETURNING {_COLUMNS}
                """), {"id": ticket_type_id})).mappings().first()
        return TicketType.from_row(row) if row else None

    async def snapshot(self, limit: int = 500) -> List[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(text(f"""
                    SELECT {_COLUMNS} FROM ticket_types
                    ORDER BY created_at DESC
                    LIMIT :lim
                """), {"lim": int(limit)})).mappings().all()
        out = []
        for r in rows:
            t = TicketType.from_row(r)
            d = t.to_dict()
            d["sold_out"] = t.remaining_quantity <= 0
            out.append(d)
        return out
