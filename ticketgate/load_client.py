#!/usr/bin/env python3
"""
ticketgate load client (async)

Hammers one ticket type with concurrent purchases and checks that the
inventory holds:
  1) admin login, create an event and a ticket type with --quantity units
  2) create --total customers
  3) POST /api/purchase for every customer, --concurrency at a time
  4) for every issued token: POST /api/purchase/verify, then
     POST /api/token/invalidate, then verify again (must report inactive)

Exactly `quantity` purchases may succeed; anything more is an oversell and
the client exits with status 1.

Usage:
  python -m ticketgate.load_client --base http://localhost:8000 \
                                   --total 200 --quantity 50 --concurrency 50
"""

import asyncio
import random
import string
import sys
import time
import argparse
from dataclasses import dataclass, field
from typing import Optional, List, Dict

import httpx


def _rand_email() -> str:
    name = ''.join(
        random.choices(string.ascii_lowercase + string.digits, k=10)
    )
    return f"{name}@example.com"


@dataclass
class Result:
    ok: bool
    outcome: str  # SOLD/SOLD_OUT/ERROR
    t_purchase: float = 0.0
    t_verify: float = 0.0
    verified: bool = False
    replay_rejected: bool = False
    err: Optional[str] = None


@dataclass
class Stats:
    results: List[Result] = field(default_factory=list)

    def add(self, r: Result):
        self.results.append(r)

    def summary(self) -> Dict[str, float]:
        lat = [r.t_purchase for r in self.results if r.t_purchase > 0]

        def pct(p):
            if not lat:
                return 0.0
            x = sorted(lat)
            k = int(max(0, min(len(x)-1, round(p/100*(len(x)-1)))))
            return x[k]
        return {
            "total": len(self.results),
            "sold": sum(1 for r in self.results if r.outcome == "SOLD"),
            "sold_out": sum(
                1 for r in self.results if r.outcome == "SOLD_OUT"
            ),
            "error": sum(1 for r in self.results if r.outcome == "ERROR"),
            "verified": sum(1 for r in self.results if r.verified),
            "replay_flagged": sum(
                1 for r in self.results if r.replay_rejected
            ),
            "p50_s": pct(50),
            "p90_s": pct(90),
            "p99_s": pct(99),
            "avg_s": (sum(lat)/len(lat)) if lat else 0.0,
        }

    def print(self, elapsed_s: float, quantity: int):
        s = self.summary()
        print("\n=== Load Summary ===")
        print(
            f"Total: {int(s['total'])}   SOLD: {int(s['sold'])} "
            f"(of {quantity})   SOLD_OUT: {int(s['sold_out'])}   "
            f"ERROR: {int(s['error'])}"
        )
        print(
            f"Verified: {int(s['verified'])}   "
            f"Used tokens flagged inactive: {int(s['replay_flagged'])}"
        )
        print(
            f"Latency (purchase): "
            f"avg {s['avg_s']:.3f}s   p50 {s['p50_s']:.3f}s   "
            f"p90 {s['p90_s']:.3f}s   p99 {s['p99_s']:.3f}s"
        )
        print(
            f"Wall time: {elapsed_s:.3f}s   "
            f"Throughput: {s['total']/elapsed_s:.1f} ops/s"
        )


async def seed(
    client: httpx.AsyncClient, base: str, quantity: int,
    username: str, password: str,
) -> str:
    resp = await client.post(
        f"{base}/admin/login",
        data={"username": username, "password": password,
              "next": "/api/inventory"},
        follow_redirects=True,
    )
    resp.raise_for_status()
    ev = await client.post(f"{base}/api/events",
                           json={"title": "Load test"})
    ev.raise_for_status()
    tt = await client.post(
        f"{base}/api/events/{ev.json()['id']}/tickets",
        json={"name": "GA", "unit_price": 3500, "quantity": quantity},
    )
    tt.raise_for_status()
    return tt.json()["id"]


async def one_purchase(
    client: httpx.AsyncClient, base: str, ticket_id: str,
) -> Result:
    r = Result(ok=False, outcome="ERROR")

    # 1) customer
    try:
        resp = await client.post(f"{base}/api/customers",
                                 json={"email": _rand_email()}, timeout=30.0)
        resp.raise_for_status()
        customer_id = resp.json()["id"]
    except Exception as e:
        r.err = f"customer: {e}"
        return r

    # 2) purchase
    t0 = time.perf_counter()
    try:
        resp = await client.post(
            f"{base}/api/purchase",
            json={"customer_id": customer_id, "ticket_id": ticket_id},
            timeout=30.0,
        )
    except Exception as e:
        r.err = f"purchase: {e}"
        return r
    r.t_purchase = time.perf_counter() - t0
    if resp.status_code == 409:
        r.ok = True
        r.outcome = "SOLD_OUT"
        return r
    if resp.status_code != 200:
        r.err = f"purchase HTTP {resp.status_code}"
        return r
    j = resp.json()
    r.outcome = "SOLD"
    token = j["token"]

    # 3) admit, invalidate, try again
    t1 = time.perf_counter()
    try:
        v = await client.post(f"{base}/api/purchase/verify",
                              json={"token": token["signed_value"]})
        r.verified = v.status_code == 200 and v.json()["active"]
        inv = await client.post(f"{base}/api/token/invalidate",
                                json={"id": token["id"]})
        inv.raise_for_status()
        again = await client.post(f"{base}/api/purchase/verify",
                                  json={"token": token["signed_value"]})
        r.replay_rejected = (
            again.status_code == 200 and not again.json()["active"]
        )
    except Exception as e:
        r.err = f"verify: {e}"
        return r
    r.t_verify = time.perf_counter() - t1
    r.ok = True
    return r


async def run_load(
    base: str,
    total: int,
    quantity: int,
    concurrency: int,
    username: str,
    password: str,
) -> Stats:
    sem = asyncio.Semaphore(concurrency)
    stats = Stats()

    limits = httpx.Limits(
        max_keepalive_connections=concurrency, max_connections=concurrency
    )
    async with httpx.AsyncClient(
        limits=limits, headers={"User-Agent": "ticketgate-load/1.0"}
    ) as client:
        ticket_id = await seed(client, base, quantity, username, password)

        async def worker(n: int):
            async with sem:
                stats.add(await one_purchase(client, base, ticket_id))

        tasks = [asyncio.create_task(worker(i)) for i in range(total)]
        await asyncio.gather(*tasks)

    return stats


def main():
    ap = argparse.ArgumentParser(description="ticketgate load client")
    ap.add_argument("--base", default="http://localhost:8000",
                    help="Base URL of the app")
    ap.add_argument("--total", type=int, default=100,
                    help="Total purchase attempts")
    ap.add_argument("--quantity", type=int, default=20,
                    help="Units available for the ticket type")
    ap.add_argument("--concurrency", type=int, default=20,
                    help="Concurrent workers")
    ap.add_argument("--admin-user", default="admin")
    ap.add_argument("--admin-password", default="supasecret")
    args = ap.parse_args()

    t_start = time.perf_counter()
    stats = asyncio.run(run_load(
        base=args.base,
        total=args.total,
        quantity=args.quantity,
        concurrency=args.concurrency,
        username=args.admin_user,
        password=args.admin_password,
    ))
    elapsed = time.perf_counter() - t_start
    stats.print(elapsed, args.quantity)

    sold = stats.summary()["sold"]
    if sold > args.quantity:
        print(f"OVERSOLD: {sold} purchases for {args.quantity} units")
        sys.exit(1)


if __name__ == "__main__":
    main()
