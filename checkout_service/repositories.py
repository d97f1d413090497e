"""
repositories.py — Local Stores Used by the Checkout Workflow

Thin SQLAlchemy-backed stores:
    - CatalogMirror:      read-only lookup of sellable books by external id
    - AddressDirectory:   the single shipping address of a shopper
    - ShopperDirectory:   name and email of a shopper (shipping ticket recipient)
    - OrderStore:         transactional write of the finalized order
    - CheckoutAttemptLog: recorded step completion of each checkout attempt

Errors from the database (`sqlalchemy.exc.SQLAlchemyError`) propagate; the
workflow decides what they mean for the checkout.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload, sessionmaker

from . import db
from .models import CatalogItem, Order, OrderDraft, OrderLine, ShippingAddress, ShopperProfile

log = logging.getLogger(__name__)


class CatalogMirror:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def find_by_external_ids(self, external_ids: Iterable[str]) -> List[CatalogItem]:
        """
        Returns the catalog records whose external id is in `external_ids`.
        Unknown ids are simply absent from the result.
        """
        ids = list(dict.fromkeys(external_ids))
        if not ids:
            return []
        with self.session_factory() as session:
            rows = session.scalars(select(db.Book).where(db.Book.external_id.in_(ids))).all()
            return [
                CatalogItem(
                    internal_id=row.id,
                    external_id=row.external_id,
                    title=row.title,
                    unit_price=row.price,
                    weight_grams=row.weight_grams,
                    width_cm=row.width_cm,
                    height_cm=row.height_cm,
                    thickness_cm=row.thickness_cm,
                )
                for row in rows
            ]


class AddressDirectory:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_for_user(self, user_id: str) -> Optional[ShippingAddress]:
        with self.session_factory() as session:
            row = session.scalars(select(db.Address).where(db.Address.user_id == user_id)).first()
            if row is None:
                return None
            return ShippingAddress(
                user_id=row.user_id,
                cep=row.cep,
                street=row.street,
                number=row.number,
                complement=row.complement,
                neighborhood=row.neighborhood,
                city=row.city,
                state=row.state,
            )


class ShopperDirectory:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_profile(self, user_id: str) -> Optional[ShopperProfile]:
        with self.session_factory() as session:
            row = session.get(db.Shopper, user_id)
            if row is None:
                return None
            return ShopperProfile(
                user_id=row.user_id,
                first_name=row.first_name or "",
                last_name=row.last_name or "",
                email=row.email,
            )


class OrderStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create_order(self, draft: OrderDraft, attempt_id: str = None) -> str:
        """
        Writes the order and its line items in one transaction.

        When `attempt_id` is given, the matching checkout attempt is marked
        `completed` inside the same transaction.

        Returns:
            str: The new order id.
        """
        with self.session_factory() as session:
            with session.begin():
                order = db.Order(
                    user_id=draft.user_id,
                    session_id=draft.session_id,
                    ticket_id=draft.ticket_id,
                    total_price=draft.total_price,
                    shipping_price=draft.shipping_price,
                    shipping_service_id=draft.shipping_service_id,
                    shipping_service_name=draft.shipping_service_name,
                    shipping_days_min=draft.shipping_days_min,
                    shipping_days_max=draft.shipping_days_max,
                    items=[
                        db.OrderItem(book_id=line.book_id, price=line.price, quantity=line.quantity)
                        for line in draft.line_items
                    ],
                )
                session.add(order)
                session.flush()

                if attempt_id is not None:
                    attempt = session.get(db.CheckoutAttempt, attempt_id)
                    if attempt is not None:
                        attempt.status = "completed"
                        attempt.order_id = order.id
                return order.id

    def get_by_session(self, session_id: str) -> Optional[Order]:
        with self.session_factory() as session:
            row = session.scalars(
                select(db.Order)
                .where(db.Order.session_id == session_id)
                .options(selectinload(db.Order.items))
            ).first()
            if row is None:
                return None
            return Order(
                order_id=row.id,
                user_id=row.user_id,
                session_id=row.session_id,
                ticket_id=row.ticket_id,
                total_price=row.total_price,
                shipping_price=row.shipping_price,
                shipping_service_id=row.shipping_service_id,
                shipping_service_name=row.shipping_service_name,
                shipping_days_min=row.shipping_days_min,
                shipping_days_max=row.shipping_days_max,
                line_items=[
                    OrderLine(book_id=item.book_id, price=item.price, quantity=item.quantity)
                    for item in row.items
                ],
            )

    def count(self) -> int:
        with self.session_factory() as session:
            return len(session.scalars(select(db.Order.id)).all())


class CheckoutAttemptLog:
    """
    Step log of checkout attempts.

    Status progression: started → session_created → ticket_registered → completed.
    A failed attempt ends in `compensated` (side effects undone) or `failed`.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def start(self, attempt_id: str, user_id: str):
        with self.session_factory() as session:
            with session.begin():
                session.add(db.CheckoutAttempt(id=attempt_id, user_id=user_id, status="started"))

    def mark(self, attempt_id: str, status: str, **fields):
        with self.session_factory() as session:
            with session.begin():
                attempt = session.get(db.CheckoutAttempt, attempt_id)
                if attempt is None:
                    log.warning(f"[Checkout: {attempt_id}] Attempt record missing, cannot mark '{status}'.")
                    return
                attempt.status = status
                for name, value in fields.items():
                    setattr(attempt, name, value)

    def get(self, attempt_id: str) -> Optional[dict]:
        with self.session_factory() as session:
            attempt = session.get(db.CheckoutAttempt, attempt_id)
            if attempt is None:
                return None
            return {
                "id": attempt.id,
                "user_id": attempt.user_id,
                "status": attempt.status,
                "session_id": attempt.session_id,
                "ticket_id": attempt.ticket_id,
                "order_id": attempt.order_id,
                "failure_reason": attempt.failure_reason,
            }
