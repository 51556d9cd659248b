import pytest

from ticketgate.config import ONE_WEEK_SECONDS
from ticketgate.errors import StorageError
from ticketgate.helpers import now_ts
from ticketgate.janitor import TokenJanitor

pytestmark = pytest.mark.anyio

DAY = 24 * 3600


async def _population(tokens):
    active = await tokens.create("a:1")
    used = await tokens.create("b:2")
    await tokens.invalidate(used.id)
    return active, used


async def test_recent_inactive_tokens_are_kept(tokens):
    active, used = await _population(tokens)
    deleted = await TokenJanitor(tokens).sweep(now_ts(), ONE_WEEK_SECONDS)
    assert deleted == 0
    assert await tokens.get(used.id) is not None


async def test_old_inactive_tokens_are_purged(tokens):
    active, used = await _population(tokens)
    later = now_ts() + ONE_WEEK_SECONDS + DAY
    deleted = await TokenJanitor(tokens).sweep(later, ONE_WEEK_SECONDS)
    assert deleted == 1
    assert await tokens.get(used.id) is None
    # active tokens survive any sweep
    assert (await tokens.get(active.id)).active is True


async def test_sweep_walks_all_batches(tokens):
    for i in range(7):
        t = await tokens.create(f"p{i}:m")
        await tokens.invalidate(t.id)
    later = now_ts() + 2 * ONE_WEEK_SECONDS
    janitor = TokenJanitor(tokens, batch_size=3)
    assert await janitor.sweep(later, ONE_WEEK_SECONDS) == 7
    assert await tokens.inactive_before(later) == []


async def test_sweep_is_best_effort(tokens):
    for i in range(4):
        t = await tokens.create(f"p{i}:m")
        await tokens.invalidate(t.id)

    class Flaky:
        def __init__(self, inner):
            self.inner = inner
            self.calls = 0

        async def inactive_before(self, cutoff, limit=1000):
            return await self.inner.inactive_before(cutoff, limit)

        async def delete(self, token_id):
            self.calls += 1
            if self.calls == 2:
                raise StorageError("transient")
            return await self.inner.delete(token_id)

    later = now_ts() + 2 * ONE_WEEK_SECONDS
    deleted = await TokenJanitor(Flaky(tokens), batch_size=2).sweep(
        later, ONE_WEEK_SECONDS
    )
    assert deleted == 3
    assert len(await tokens.inactive_before(later)) == 1


async def test_zero_retention_purges_everything_inactive(tokens):
    _, used = await _population(tokens)
    assert await TokenJanitor(tokens).sweep(now_ts() + 1, 0) == 1
