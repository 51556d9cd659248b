import asyncio

import pytest
from sqlalchemy import text

from ticketgate import codec
from ticketgate.errors import Failure, StorageError
from ticketgate.infra import timings
from ticketgate.issuer import PurchaseIssuer

from .conftest import SECRET, make_stores, seed_customer, seed_ticket

pytestmark = pytest.mark.anyio


def make_issuer(stores, **overrides):
    kw = dict(
        inventory=stores.inventory, customers=stores.customers,
        ledger=stores.ledger, tokens=stores.tokens, secret_key=SECRET,
    )
    kw.update(overrides)
    return PurchaseIssuer(**kw)


async def _count(database, table):
    async with database.engine.connect() as conn:
        return (await conn.execute(
            text(f"SELECT COUNT(*) FROM {table}")
        )).scalar_one()


class BrokenTokens:
    """Token store whose writes fail after the fact."""

    def __init__(self, inner, fail_on="create"):
        self.inner = inner
        self.fail_on = fail_on
        self.deleted = []
        self.invalidated = []

    async def create(self, signed_value):
        if self.fail_on == "create":
            raise StorageError("token backend down")
        return await self.inner.create(signed_value)

    async def get(self, token_id):
        return await self.inner.get(token_id)

    async def invalidate(self, token_id):
        self.invalidated.append(token_id)
        if self.fail_on == "invalidate":
            raise StorageError("redis down")
        return await self.inner.invalidate(token_id)

    async def delete(self, token_id):
        self.deleted.append(token_id)
        return await self.inner.delete(token_id)


class BrokenLedger:
    def __init__(self, inner):
        self.inner = inner
        self.started = asyncio.Event()

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def attach_token(self, purchase_id, token_id):
        raise StorageError("ledger down")


class CancelledLedger(BrokenLedger):
    async def create(self, customer_id, ticket_type_id):
        raise asyncio.CancelledError()


class StalledLedger(BrokenLedger):
    async def create(self, customer_id, ticket_type_id):
        self.started.set()
        await asyncio.Event().wait()


async def test_purchase_issues_signed_token(stores):
    t = await seed_ticket(stores, quantity=3)
    c = await seed_customer(stores)

    purchase, err = await make_issuer(stores).purchase(c.id, t.id)

    assert err is None
    assert purchase.customer_id == c.id
    assert purchase.ticket_type_id == t.id
    token = await stores.tokens.get(purchase.token_id)
    assert token.active is True
    assert token.signed_value == codec.token_value(purchase.id, SECRET)
    assert (await stores.inventory.get(t.id)).remaining_quantity == 2
    kinds = {row["kind"] for row in timings.snapshot()}
    assert {"inventory.reserve", "tokens.create"} <= kinds


async def test_purchase_sold_out(stores):
    t = await seed_ticket(stores, quantity=1)
    c = await seed_customer(stores)
    issuer = make_issuer(stores)
    assert (await issuer.purchase(c.id, t.id))[1] is None
    purchase, err = await issuer.purchase(c.id, t.id)
    assert purchase is None
    assert err is Failure.OUT_OF_STOCK


async def test_purchase_unknown_ticket(stores):
    c = await seed_customer(stores)
    purchase, err = await make_issuer(stores).purchase(c.id, "missing")
    assert purchase is None
    assert err is Failure.NOT_FOUND


async def test_unknown_customer_returns_unit(database, stores):
    t = await seed_ticket(stores, quantity=1)
    purchase, err = await make_issuer(stores).purchase("ghost", t.id)
    assert purchase is None
    assert err is Failure.NOT_FOUND
    assert (await stores.inventory.get(t.id)).remaining_quantity == 1
    assert await _count(database, "purchases") == 0


async def test_token_failure_rolls_back(database, stores):
    t = await seed_ticket(stores, quantity=1)
    c = await seed_customer(stores)
    issuer = make_issuer(stores, tokens=BrokenTokens(stores.tokens))

    with pytest.raises(StorageError):
        await issuer.purchase(c.id, t.id)

    assert (await stores.inventory.get(t.id)).remaining_quantity == 1
    assert await _count(database, "purchases") == 0
    assert await _count(database, "tokens") == 0


async def test_attach_failure_removes_token_and_purchase(database, stores):
    t = await seed_ticket(stores, quantity=1)
    c = await seed_customer(stores)
    tokens = BrokenTokens(stores.tokens, fail_on=None)
    issuer = make_issuer(stores, tokens=tokens,
                         ledger=BrokenLedger(stores.ledger))

    with pytest.raises(StorageError):
        await issuer.purchase(c.id, t.id)

    assert len(tokens.deleted) == 1
    assert await _count(database, "tokens") == 0
    assert await _count(database, "purchases") == 0
    assert (await stores.inventory.get(t.id)).remaining_quantity == 1


async def test_cancelled_purchase_returns_unit(database, stores):
    t = await seed_ticket(stores, quantity=1)
    c = await seed_customer(stores)
    issuer = make_issuer(stores, ledger=CancelledLedger(stores.ledger))

    with pytest.raises(asyncio.CancelledError):
        await issuer.purchase(c.id, t.id)

    assert (await stores.inventory.get(t.id)).remaining_quantity == 1
    assert await _count(database, "purchases") == 0


async def test_task_cancelled_mid_purchase_returns_unit(database, stores):
    t = await seed_ticket(stores, quantity=1)
    c = await seed_customer(stores)
    ledger = StalledLedger(stores.ledger)
    issuer = make_issuer(stores, ledger=ledger)

    task = asyncio.create_task(issuer.purchase(c.id, t.id))
    await ledger.started.wait()
    assert (await stores.inventory.get(t.id)).remaining_quantity == 0
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert (await stores.inventory.get(t.id)).remaining_quantity == 1


async def test_failed_cleanup_still_returns_unit(database, stores):
    t = await seed_ticket(stores, quantity=1)
    c = await seed_customer(stores)
    tokens = BrokenTokens(stores.tokens, fail_on="invalidate")
    issuer = make_issuer(stores, tokens=tokens,
                         ledger=BrokenLedger(stores.ledger))

    with pytest.raises(StorageError, match="ledger down"):
        await issuer.purchase(c.id, t.id)

    assert len(tokens.invalidated) == 1
    # the token outlives the failed cleanup; purchase and unit do not
    assert await _count(database, "tokens") == 1
    assert await _count(database, "purchases") == 0
    assert (await stores.inventory.get(t.id)).remaining_quantity == 1


async def test_concurrent_purchases_issue_exactly_quantity(database, stores):
    quantity, buyers = 4, 12
    t = await seed_ticket(stores, quantity=quantity)
    customers = [
        await seed_customer(stores, email=f"buyer{i}@example.com")
        for i in range(buyers)
    ]

    async def buy(customer_id):
        async with database.SessionAsync() as session:
            s = make_stores(session, database.gated)
            return await make_issuer(s).purchase(customer_id, t.id)

    results = await asyncio.gather(*(buy(c.id) for c in customers))
    issued = [p for p, err in results if err is None]
    assert len(issued) == quantity
    assert len({p.token_id for p in issued}) == quantity
    assert all(err is Failure.OUT_OF_STOCK for p, err in results if p is None)
    assert (await stores.inventory.get(t.id)).remaining_quantity == 0
    assert await _count(database, "purchases") == quantity
