from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import pytest
from fakeredis import aioredis as fake_aioredis
from sqlalchemy.ext.asyncio import AsyncEngine

from ticketgate.infra import timings
from ticketgate.infra.sql import create_schema, make_async_engine
from ticketgate.model.catalog import CustomerStore, EventStore
from ticketgate.model.db import Base
from ticketgate.model.inventory import TicketInventory
from ticketgate.model.ledger import PurchaseLedger
from ticketgate.model.token import RedisTokenStore, SqlTokenStore

SECRET = "test-secret-key"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_timings():
    timings.reset()
    yield
    timings.reset()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'ticketgate.db'}"


@dataclass
class Database:
    engine: AsyncEngine
    SessionAsync: Callable[[], Any]
    gated: Callable[[], Any]


@dataclass
class Stores:
    customers: CustomerStore
    events: EventStore
    inventory: TicketInventory
    ledger: PurchaseLedger
    tokens: SqlTokenStore


@pytest.fixture
async def database(database_url: str):
    engine, SessionAsync, gated = make_async_engine(database_url)
    await create_schema(engine, Base.metadata)
    yield Database(engine=engine, SessionAsync=SessionAsync, gated=gated)
    await engine.dispose()


def make_stores(session, gated) -> Stores:
    return Stores(
        customers=CustomerStore(db=session, gated=gated),
        events=EventStore(db=session, gated=gated),
        inventory=TicketInventory(db=session, gated=gated),
        ledger=PurchaseLedger(db=session, gated=gated),
        tokens=SqlTokenStore(db=session, gated=gated),
    )


@pytest.fixture
async def stores(database: Database):
    async with database.SessionAsync() as session:
        yield make_stores(session, database.gated)


@pytest.fixture
async def fake_redis():
    r = fake_aioredis.FakeRedis(decode_responses=True)
    yield r
    await r.flushall()
    await r.aclose()


async def seed_ticket(stores: Stores, quantity: int = 1, price: int = 3500):
    ev = await stores.events.create(title="Night Show", location="Bern")
    return await stores.inventory.create(
        event_id=ev.id, unit_price=price, quantity=quantity, name="GA",
    )


async def seed_customer(stores: Stores, email: str = "c1@example.com"):
    customer, err = await stores.customers.create(
        email=email, first_name="Ada", last_name="Lovelace",
    )
    assert err is None
    return customer


@pytest.fixture(params=["sql", "redis"])
def tokens(request, stores, fake_redis):
    # same contract, both backends
    if request.param == "sql":
        return stores.tokens
    return RedisTokenStore(r=fake_redis)
