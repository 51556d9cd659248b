# model/catalog.py
"""Customers and events: the collaborators the purchase flow looks up."""
from __future__ import annotations
from typing import Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import Failure
from ..helpers import now_ts, new_id, normalize_email
from ..infra.sql import Gated
from .records import Customer, Event


class CustomerStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def create(
        self, *, email: str, first_name: str = "", last_name: str = "",
        street: str = "", zip: str = "", location: str = "",
    ) -> Tuple[Optional[Customer], Optional[Failure]]:
        customer = Customer(
            id=new_id(), email=normalize_email(email),
            first_name=first_name, last_name=last_name,
            street=street, zip=zip, location=location,
        )
        async with self.gated():
            try:
                async with self.db.begin():
                    await self.db.execute(text("""
                        INSERT INTO customers(
                            id, first_name, last_name, email, street, zip,
                            location, created_at)
                        VALUES(:id, :fn, :ln, :email, :street, :zip, :loc, :c)
                    """), {
                        "id": customer.id, "fn": first_name,
                        "ln": last_name, "email": customer.email,
                        "street": street, "zip": zip, "loc": location,
                        "c": now_ts(),
                    })
            except IntegrityError:
                # unique(email)
                return None, Failure.ALREADY_EXISTS
        return customer, None

    async def get(self, customer_id: str) -> Optional[Customer]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text("SELECT * FROM customers WHERE id=:id"),
                    {"id": customer_id},
                )).mappings().first()
        return Customer.from_row(row) if row else None

    async def get_by_email(self, email: str) -> Optional[Customer]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text("SELECT * FROM customers WHERE email=:email"),
                    {"email": normalize_email(email)},
                )).mappings().first()
        return Customer.from_row(row) if row else None

    async def exists(self, customer_id: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text("SELECT 1 FROM customers WHERE id=:id"),
                    {"id": customer_id},
                )).first()
        return row is not None


class EventStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def create(
        self, *, title: str, starts_at: Optional[float] = None,
        location: str = "", description: str = "", age_restriction: int = 0,
    ) -> Event:
        ev = Event(
            id=new_id(), title=title, starts_at=starts_at, location=location,
            description=description, age_restriction=age_restriction,
        )
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(text("""
                    INSERT INTO events(
                        id, title, starts_at, location, description,
                        age_restriction, created_at)
                    VALUES(:id, :title, :starts, :loc, :descr, :age, :c)
                """), {
                    "id": ev.id, "title": title, "starts": starts_at,
                    "loc": location, "descr": description,
                    "age": age_restriction, "c": now_ts(),
                })
        return ev

    async def get(self, event_id: str) -> Optional[Event]:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    text("SELECT * FROM events WHERE id=:id"),
                    {"id": event_id},
                )).mappings().first()
        return Event.from_row(row) if row else None
