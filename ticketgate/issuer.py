# ticketgate/issuer.py
"""
Purchase issuance: reserve a unit, record the purchase, mint its token.

    reserve -> customer check -> create purchase -> sign + save token
            -> attach token id -> done

Everything after the reservation is undone if a later step fails: the token
and purchase written so far are removed and the unit goes back into the
inventory before the error propagates.
"""
from __future__ import annotations
import asyncio
import logging
from typing import Optional, Tuple

from . import codec
from .errors import Failure
from .infra.timings import timeit
from .model.catalog import CustomerStore
from .model.inventory import TicketInventory
from .model.ledger import PurchaseLedger
from .model.records import Purchase, Token

log = logging.getLogger(__name__)


class PurchaseIssuer:
    def __init__(
        self, *,
        inventory: TicketInventory,
        customers: CustomerStore,
        ledger: PurchaseLedger,
        tokens,
        secret_key: str,
    ) -> None:
        self.inventory = inventory
        self.customers = customers
        self.ledger = ledger
        self.tokens = tokens
        self.secret_key = codec.check_key(secret_key)

    async def purchase(
        self, customer_id: str, ticket_type_id: str
    ) -> Tuple[Optional[Purchase], Optional[Failure]]:
        async with timeit("inventory.reserve"):
            ticket, err = await self.inventory.reserve(ticket_type_id)
        if err is not None:
            return None, err

        purchase: Optional[Purchase] = None
        token: Optional[Token] = None
        try:
            async with timeit("customers.exists"):
                known = await self.customers.exists(customer_id)
            if known:
                async with timeit("ledger.create"):
                    purchase = await self.ledger.create(
                        customer_id, ticket.id
                    )

                signed = codec.token_value(purchase.id, self.secret_key)
                async with timeit("tokens.create"):
                    token = await self.tokens.create(signed)

                async with timeit("ledger.attach_token"):
                    attached = await self.ledger.attach_token(
                        purchase.id, token.id
                    )
                if attached is None:
                    raise RuntimeError(
                        f"purchase {purchase.id} vanished before token attach"
                    )
                return attached, None
        except BaseException:
            # cancellation included: the unit must not leak
            log.warning(
                "purchase of ticket %s for customer %s failed, rolling back",
                ticket_type_id, customer_id,
            )
            await asyncio.shield(self._rollback(ticket.id, purchase, token))
            raise

        # unknown customer: hand the unit back
        await self._release(ticket.id)
        return None, Failure.NOT_FOUND

    async def _release(self, ticket_type_id: str) -> None:
        async with timeit("inventory.release"):
            await self.inventory.release(ticket_type_id)

    async def _rollback(
        self,
        ticket_type_id: str,
        purchase: Optional[Purchase],
        token: Optional[Token],
    ) -> None:
        # reverse order of creation; the reservation goes back last and
        # always, whatever the cleanup before it does
        try:
            if token is not None:
                try:
                    await self.tokens.invalidate(token.id)
                    await self.tokens.delete(token.id)
                except Exception:
                    log.exception("rollback: could not remove token %s",
                                  token.id)
            if purchase is not None:
                try:
                    await self.ledger.delete(purchase.id)
                except Exception:
                    log.exception("rollback: could not remove purchase %s",
                                  purchase.id)
        finally:
            await self._release(ticket_type_id)
