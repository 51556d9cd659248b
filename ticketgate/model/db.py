from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Text,
    CheckConstraint,
    Index,
)


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
# Only used for DDL (metadata.create_all); stores talk plain SQL.
class Customer(Base):
    __tablename__ = "customers"
    id = Column(String, primary_key=True)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, unique=True)
    street = Column(String, nullable=False, default="")
    zip = Column(String, nullable=False, default="")
    location = Column(String, nullable=False, default="")
    created_at = Column(Float, nullable=False)


class Event(Base):
    __tablename__ = "events"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    starts_at = Column(Float, nullable=True)
    location = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    age_restriction = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)


class TicketType(Base):
    __tablename__ = "ticket_types"
    __table_args__ = (
        CheckConstraint(
            "remaining_quantity >= 0", name="ck_ticket_types_remaining"
        ),
    )
    id = Column(String, primary_key=True)
    event_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False, default="")
    unit_price = Column(Integer, nullable=False)  # cents
    remaining_quantity = Column(Integer, nullable=False)
    created_at = Column(Float, nullable=False)


class Purchase(Base):
    __tablename__ = "purchases"
    id = Column(String, primary_key=True)
    customer_id = Column(String, nullable=False, index=True)
    ticket_type_id = Column(String, nullable=False, index=True)
    # no FK: the token may live in redis, and the signature is the link
    token_id = Column(String, nullable=True, unique=True)
    created_at = Column(Float, nullable=False)


class Token(Base):
    __tablename__ = "tokens"
    __table_args__ = (
        Index("ix_tokens_inactive_updated", "active", "updated_at"),
    )
    id = Column(String, primary_key=True)
    signed_value = Column(String, nullable=False, unique=True)
    active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(Float, nullable=False)
