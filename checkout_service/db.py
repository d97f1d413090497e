"""
db.py — Relational Schema of the Checkout Service

SQLAlchemy ORM tables backing the catalog mirror, the address directory,
shopper profiles, persisted orders and the checkout attempt log.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import DateTime, Float, ForeignKey, Integer, Numeric, String, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Book(Base):
    __tablename__ = "books"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    external_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(255))
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    weight_grams: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    width_cm: Mapped[float] = mapped_column(Float)
    height_cm: Mapped[float] = mapped_column(Float)
    thickness_cm: Mapped[float] = mapped_column(Float)


class Address(Base):
    __tablename__ = "addresses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    cep: Mapped[str] = mapped_column(String(9))
    street: Mapped[str] = mapped_column(String(255))
    number: Mapped[str] = mapped_column(String(32))
    complement: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    neighborhood: Mapped[str] = mapped_column(String(255))
    city: Mapped[str] = mapped_column(String(255))
    state: Mapped[str] = mapped_column(String(2))


class Shopper(Base):
    __tablename__ = "shoppers"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(255), default="")
    last_name: Mapped[str] = mapped_column(String(255), default="")
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    session_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    ticket_id: Mapped[str] = mapped_column(String(255))
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    # Carrier quotes may carry sub-cent precision; stored exactly as quoted.
    shipping_price: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    shipping_service_id: Mapped[str] = mapped_column(String(64))
    shipping_service_name: Mapped[str] = mapped_column(String(255))
    shipping_days_min: Mapped[int] = mapped_column(Integer)
    shipping_days_max: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan"
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    book_id: Mapped[str] = mapped_column(ForeignKey("books.id"))
    price: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    order: Mapped[Order] = relationship(back_populates="items")


class CheckoutAttempt(Base):
    """One row per checkout attempt that reached the payment gateway."""
    __tablename__ = "checkout_attempts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    status: Mapped[str] = mapped_column(String(32), default="started")
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ticket_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    order_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)


def make_engine(url: str):
    """
    Creates the SQLAlchemy engine for `url`.

    An in-memory SQLite URL gets a single shared connection so that every
    session (and every request thread) sees the same database.
    """
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine):
    """Creates all tables that do not exist yet."""
    Base.metadata.create_all(engine)
