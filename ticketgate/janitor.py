# ticketgate/janitor.py
from __future__ import annotations
import logging
from typing import Optional

from .config import ONE_WEEK_SECONDS
from .errors import StorageError
from .helpers import now_ts

log = logging.getLogger(__name__)


class TokenJanitor:
    """Purges invalidated tokens once they are older than the retention
    window. Runs when asked to (admin "delete all"), not on a timer."""

    def __init__(self, tokens, *, batch_size: int = 1000) -> None:
        self.tokens = tokens
        self.batch_size = batch_size

    async def sweep(
        self,
        now: Optional[float] = None,
        retention_seconds: float = ONE_WEEK_SECONDS,
    ) -> int:
        now = now_ts() if now is None else now
        cutoff = now - retention_seconds
        deleted = 0
        failed = set()
        while True:
            ids = [
                i for i in await self.tokens.inactive_before(
                    cutoff, limit=self.batch_size + len(failed)
                )
                if i not in failed
            ]
            if not ids:
                break
            for token_id in ids:
                # per-record best effort
                try:
                    if await self.tokens.delete(token_id):
                        deleted += 1
                    else:
                        failed.add(token_id)
                except StorageError:
                    log.warning("could not purge token %s", token_id,
                                exc_info=True)
                    failed.add(token_id)
            if len(ids) < self.batch_size:
                break
        log.info("token sweep: %d purged, %d skipped (cutoff=%.0f)",
                 deleted, len(failed), cutoff)
        return deleted
