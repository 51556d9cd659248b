# ticketgate/gate.py
"""
Verification gate: decides whether a presented token string admits someone.

Checks, in order: shape "<purchase_id>:<mac>", purchase exists, its ticket
type and customer still exist, the MAC matches. Verification never changes
state; the door client calls `invalidate` after it has shown the result, so
an already used ticket still resolves (with active=False).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from . import codec
from .errors import Failure
from .infra.timings import timeit
from .model.catalog import CustomerStore
from .model.inventory import TicketInventory
from .model.ledger import PurchaseLedger
from .model.records import Purchase, Token

log = logging.getLogger(__name__)


@dataclass
class Admission:
    purchase: Purchase
    token: Token

    @property
    def active(self) -> bool:
        return self.token.active


class VerificationGate:
    def __init__(
        self, *,
        ledger: PurchaseLedger,
        inventory: TicketInventory,
        customers: CustomerStore,
        tokens,
        secret_key: str,
    ) -> None:
        self.ledger = ledger
        self.inventory = inventory
        self.customers = customers
        self.tokens = tokens
        self.secret_key = codec.check_key(secret_key)

    async def verify(
        self, token_string: Optional[str]
    ) -> Tuple[Optional[Admission], Optional[Failure]]:
        parts = codec.split_token(token_string)
        if parts is None:
            return self._reject(Failure.INVALID, "malformed")
        purchase_id, mac = parts

        async with timeit("ledger.get"):
            purchase = await self.ledger.get(purchase_id)
        if purchase is None:
            return self._reject(Failure.NOT_FOUND, "unknown purchase")

        # dangling references after out-of-band deletes
        async with timeit("gate.references"):
            ticket_ok = await self.inventory.exists(purchase.ticket_type_id)
            customer_ok = await self.customers.exists(purchase.customer_id)
        if not (ticket_ok and customer_ok):
            return self._reject(Failure.INVALID, "dangling reference")

        if not codec.verify(purchase.id, mac, self.secret_key):
            return self._reject(Failure.INVALID, "signature mismatch")

        token = None
        if purchase.token_id:
            async with timeit("tokens.get"):
                token = await self.tokens.get(purchase.token_id)
        if token is None:
            # already purged by the janitor
            return self._reject(Failure.INVALID, "token purged")

        return Admission(purchase=purchase, token=token), None

    async def invalidate(self, token_id: str) -> Optional[Token]:
        async with timeit("tokens.invalidate"):
            token = await self.tokens.invalidate(token_id)
        if token is not None:
            log.info("token %s invalidated (active=%s)", token.id, token.active)
        return token

    @staticmethod
    def _reject(
        failure: Failure, reason: str
    ) -> Tuple[None, Failure]:
        # expected outcome, not a fault
        log.debug("verification rejected: %s (%s)", failure.value, reason)
        return None, failure
