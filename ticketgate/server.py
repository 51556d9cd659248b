from __future__ import annotations
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi import Form
from fastapi.responses import ORJSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER
import redis.asyncio as redis

from .config import Settings, load_settings
from .errors import Failure, StorageError
from .gate import VerificationGate
from .helpers import ct_equal, from_iso, is_valid_email, now_ts
from .infra import timings
from .infra.sql import create_schema, make_async_engine
from .infra.timings import timeit
from .issuer import PurchaseIssuer
from .janitor import TokenJanitor
from .model.catalog import CustomerStore, EventStore
from .model.db import Base
from .model.inventory import TicketInventory
from .model.ledger import PurchaseLedger
from .model.token import new_store

log = logging.getLogger(__name__)

router = APIRouter()

# the door only ever learns "no"
REJECTED = "invalid or expired token"


# ----------------------------
# Dependencies
# ----------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_db(request: Request) -> AsyncSession:
    async with request.app.state.SessionAsync() as session:
        yield session


def _gated(request: Request):
    return request.app.state.gated


def customers(request: Request,
              db: AsyncSession = Depends(get_db)) -> CustomerStore:
    return CustomerStore(db=db, gated=_gated(request))


def events(request: Request, db: AsyncSession = Depends(get_db)) -> EventStore:
    return EventStore(db=db, gated=_gated(request))


def inventory(request: Request,
              db: AsyncSession = Depends(get_db)) -> TicketInventory:
    return TicketInventory(db=db, gated=_gated(request))


def ledger(request: Request,
           db: AsyncSession = Depends(get_db)) -> PurchaseLedger:
    return PurchaseLedger(db=db, gated=_gated(request))


def tokenstore(request: Request, db: AsyncSession = Depends(get_db)):
    return new_store(
        backend=get_settings(request).token_backend,
        db=db, gated=_gated(request), r=request.app.state.redis,
    )


def issuer(
    settings: Settings = Depends(get_settings),
    inv: TicketInventory = Depends(inventory),
    cs: CustomerStore = Depends(customers),
    lg: PurchaseLedger = Depends(ledger),
    ts=Depends(tokenstore),
) -> PurchaseIssuer:
    return PurchaseIssuer(inventory=inv, customers=cs, ledger=lg, tokens=ts,
                          secret_key=settings.secret_key)


def gate(
    settings: Settings = Depends(get_settings),
    inv: TicketInventory = Depends(inventory),
    cs: CustomerStore = Depends(customers),
    lg: PurchaseLedger = Depends(ledger),
    ts=Depends(tokenstore),
) -> VerificationGate:
    return VerificationGate(ledger=lg, inventory=inv, customers=cs, tokens=ts,
                            secret_key=settings.secret_key)


# ----------------------------
# Helpers
# ----------------------------
def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise HTTPException(status_code=401, detail="admin login required")


def _str_field(payload: dict, name: str, required: bool = True) -> str:
    v = payload.get(name)
    if v is None and not required:
        return ""
    if not isinstance(v, str) or (required and not v.strip()):
        raise HTTPException(400, detail=f"{name} is required")
    return v.strip()


def _int_field(payload: dict, name: str, default: Optional[int] = None) -> int:
    v = payload.get(name, default)
    if isinstance(v, bool) or not isinstance(v, int) or v < 0:
        raise HTTPException(
            400, detail=f"{name} must be a non-negative integer"
        )
    return v


def _ts_field(payload: dict, name: str) -> Optional[float]:
    v = payload.get(name)
    if v is None:
        return None
    try:
        return from_iso(v)
    except ValueError:
        raise HTTPException(400, detail=f"{name} must be ISO-8601")


# ----------------------------
# Customers & events (collaborator records)
# ----------------------------
@router.post("/api/customers")
async def create_customer(payload: dict,
                          cs: CustomerStore = Depends(customers)):
    email = (payload.get("email") or "").strip()
    if not is_valid_email(email):
        raise HTTPException(
            400, detail="email is required and must be a valid email address"
        )
    customer, err = await cs.create(
        email=email,
        first_name=_str_field(payload, "first_name", required=False),
        last_name=_str_field(payload, "last_name", required=False),
        street=_str_field(payload, "street", required=False),
        zip=_str_field(payload, "zip", required=False),
        location=_str_field(payload, "location", required=False),
    )
    if err is Failure.ALREADY_EXISTS:
        raise HTTPException(409, detail="customer already exists")
    return customer.to_dict()


@router.get("/api/customers/{customer_id}")
async def get_customer(customer_id: str,
                       cs: CustomerStore = Depends(customers)):
    customer = await cs.get(customer_id)
    if customer is None:
        raise HTTPException(404, detail="customer not found")
    return customer.to_dict()


@router.post("/api/events", dependencies=[Depends(require_admin)])
async def create_event(payload: dict, es: EventStore = Depends(events)):
    ev = await es.create(
        title=_str_field(payload, "title"),
        starts_at=_ts_field(payload, "starts_at"),
        location=_str_field(payload, "location", required=False),
        description=_str_field(payload, "description", required=False),
        age_restriction=_int_field(payload, "age_restriction", default=0),
    )
    return ev.to_dict()


@router.post("/api/events/{event_id}/tickets",
             dependencies=[Depends(require_admin)])
async def create_ticket_type(
    event_id: str, payload: dict,
    es: EventStore = Depends(events),
    inv: TicketInventory = Depends(inventory),
):
    if await es.get(event_id) is None:
        raise HTTPException(404, detail="event not found")
    ticket = await inv.create(
        event_id=event_id,
        unit_price=_int_field(payload, "unit_price"),
        quantity=_int_field(payload, "quantity"),
        name=_str_field(payload, "name", required=False),
    )
    return ticket.to_dict()


@router.get("/api/tickets/{ticket_type_id}")
async def get_ticket_type(ticket_type_id: str,
                          inv: TicketInventory = Depends(inventory)):
    ticket = await inv.get(ticket_type_id)
    if ticket is None:
        raise HTTPException(404, detail="ticket type not found")
    return ticket.to_dict()


@router.get("/api/inventory")
async def get_inventory(limit: int = 200,
                        inv: TicketInventory = Depends(inventory)):
    items = await inv.snapshot(limit=max(1, min(limit, 500)))
    return {"items": items, "limit": limit}


# ----------------------------
# Purchases
# ----------------------------
@router.post("/api/purchase")
async def create_purchase(
    payload: dict,
    iss: PurchaseIssuer = Depends(issuer),
    ts=Depends(tokenstore),
):
    customer_id = _str_field(payload, "customer_id")
    ticket_id = _str_field(payload, "ticket_id")

    purchase, err = await iss.purchase(customer_id, ticket_id)
    if err is Failure.OUT_OF_STOCK:
        raise HTTPException(409, detail="sold out")
    if err is Failure.NOT_FOUND:
        raise HTTPException(404, detail="customer or ticket not found")

    token = await ts.get(purchase.token_id)
    out = purchase.to_dict()
    out["token"] = token.to_dict() if token else None
    return out


@router.get("/api/purchase/{purchase_id}")
async def get_purchase(purchase_id: str, lg: PurchaseLedger = Depends(ledger)):
    purchase = await lg.get(purchase_id)
    if purchase is None:
        raise HTTPException(404, detail="purchase not found")
    return purchase.to_dict()


@router.post("/api/purchase/verify")
async def verify_purchase(
    payload: dict,
    g: VerificationGate = Depends(gate),
    cs: CustomerStore = Depends(customers),
    inv: TicketInventory = Depends(inventory),
    es: EventStore = Depends(events),
):
    token_string = payload.get("token")
    if not isinstance(token_string, str):
        token_string = None

    async with timeit("gate.verify"):
        admission, err = await g.verify(token_string)
    if err is not None:
        # same answer for every failed check
        raise HTTPException(409, detail=REJECTED)

    purchase = admission.purchase
    customer = await cs.get(purchase.customer_id)
    ticket = await inv.get(purchase.ticket_type_id)
    ev = await es.get(ticket.event_id) if ticket else None
    return {
        "purchase": purchase.to_dict(),
        "token": admission.token.to_dict(),
        "active": admission.active,
        "customer": customer.to_dict() if customer else None,
        "ticket": ticket.to_dict() if ticket else None,
        "event": ev.to_dict() if ev else None,
    }


# ----------------------------
# Tokens
# ----------------------------
@router.post("/api/token/invalidate")
async def invalidate_token(payload: dict,
                           g: VerificationGate = Depends(gate)):
    token_id = _str_field(payload, "id")
    token = await g.invalidate(token_id)
    if token is None:
        raise HTTPException(404, detail="token not found")
    return token.to_dict()


@router.get("/api/token/{token_id}", dependencies=[Depends(require_admin)])
async def get_token(token_id: str, ts=Depends(tokenstore)):
    token = await ts.get(token_id)
    if token is None:
        raise HTTPException(404, detail="token not found")
    return token.to_dict()


@router.delete("/api/token", dependencies=[Depends(require_admin)])
async def purge_tokens(
    settings: Settings = Depends(get_settings),
    ts=Depends(tokenstore),
):
    janitor = TokenJanitor(ts)
    async with timeit("janitor.sweep"):
        deleted = await janitor.sweep(
            now_ts(), settings.token_retention_seconds
        )
    return {"deleted": deleted}


# ----------------------------
# Admin
# ----------------------------
@router.get("/api/admin/timings", dependencies=[Depends(require_admin)])
async def api_admin_timings():
    return {"items": timings.snapshot()}


@router.post("/admin/login")
async def admin_login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    next: str = Form("/api/inventory"),
    settings: Settings = Depends(get_settings),
):
    ok_user = ct_equal(username.strip(), settings.admin_username)
    ok_pass = ct_equal(password, settings.admin_password)
    if ok_user and ok_pass:
        request.session["admin_user"] = username.strip()
        # local paths only
        dest = next if next.startswith("/") and not next.startswith("//") \
            else "/api/inventory"
        return RedirectResponse(url=dest, status_code=HTTP_303_SEE_OTHER)
    raise HTTPException(401, detail="Invalid credentials.")


@router.get("/admin/logout")
async def admin_logout(request: Request):
    request.session.clear()
    return {"ok": True}


# ----------------------------
# App factory
# ----------------------------
async def _storage_error(request: Request, exc: StorageError):
    log.error("storage failure on %s %s: %s",
              request.method, request.url.path, exc)
    return ORJSONResponse(status_code=503,
                          content={"detail": "storage unavailable"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    engine, SessionAsync, gated = make_async_engine(settings.database_url)

    app = FastAPI(
        title="ticketgate",
        default_response_class=ORJSONResponse,
    )
    app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)
    app.add_exception_handler(StorageError, _storage_error)
    app.include_router(router)

    app.state.settings = settings
    app.state.engine = engine
    app.state.SessionAsync = SessionAsync
    app.state.gated = gated
    app.state.redis = None

    @app.on_event("startup")
    async def _say_hello():
        T = 'Redis' if settings.token_backend == 'redis' else 'SQL'
        print('=' * 50)
        print('ticketgate is starting up...')
        print(f'   - Database: {engine.url.render_as_string()}')
        print(f'   - Token Backend: {T}')
        print(f'   - Token retention: {settings.token_retention_seconds}s')
        print('=' * 50)

    @app.on_event("startup")
    async def _db_init():
        await create_schema(engine, Base.metadata)

    @app.on_event("startup")
    async def _redis_start():
        if settings.token_backend == 'redis':
            app.state.redis = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                max_connections=settings.redis_max_conn,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
                retry_on_timeout=True,
            )

    @app.on_event("shutdown")
    async def _redis_stop():
        r = app.state.redis
        if r is not None:
            await r.aclose()
            app.state.redis = None

    @app.on_event("shutdown")
    async def _db_stop():
        await engine.dispose()

    return app


def run() -> None:
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "ticketgate.server:create_app",
        factory=True,
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )
