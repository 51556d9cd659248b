# model/records.py
"""Plain records handed between stores, services and the server."""
from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional

from ..helpers import to_iso


def _as_bool(v: Any) -> bool:
    # sqlite hands back 0/1, redis hands back "0"/"1"
    if isinstance(v, str):
        return v in ("1", "true", "True")
    return bool(v)


@dataclass
class Customer:
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    street: str = ""
    zip: str = ""
    location: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Customer":
        return cls(
            id=row["id"],
            email=row["email"],
            first_name=row.get("first_name") or "",
            last_name=row.get("last_name") or "",
            street=row.get("street") or "",
            zip=row.get("zip") or "",
            location=row.get("location") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Event:
    id: str
    title: str
    starts_at: Optional[float] = None
    location: str = ""
    description: str = ""
    age_restriction: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Event":
        return cls(
            id=row["id"],
            title=row["title"],
            starts_at=row.get("starts_at"),
            location=row.get("location") or "",
            description=row.get("description") or "",
            age_restriction=int(row.get("age_restriction") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["starts_at"] = to_iso(self.starts_at)
        return d


@dataclass
class TicketType:
    id: str
    event_id: str
    unit_price: int  # cents
    remaining_quantity: int
    name: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TicketType":
        return cls(
            id=row["id"],
            event_id=row["event_id"],
            unit_price=int(row["unit_price"]),
            remaining_quantity=int(row["remaining_quantity"]),
            name=row.get("name") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Purchase:
    id: str
    customer_id: str
    ticket_type_id: str
    token_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Purchase":
        return cls(
            id=row["id"],
            customer_id=row["customer_id"],
            ticket_type_id=row["ticket_type_id"],
            token_id=row.get("token_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Token:
    id: str
    signed_value: str
    active: bool = True
    updated_at: float = 0.0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Token":
        return cls(
            id=row["id"],
            signed_value=row["signed_value"],
            active=_as_bool(row["active"]),
            updated_at=float(row["updated_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "signed_value": self.signed_value,
            "active": self.active,
            "updated_at": to_iso(self.updated_at),
        }
