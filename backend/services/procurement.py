"""
Procurement service.

Cycle de vie des commandes générées par le moteur :
    pending_review -> sent -> completed
    pending_review -> cancelled

Le moteur crée les commandes et ne les modifie jamais ensuite ; toutes les
transitions passent par ce module. Toute la logique stock reste dans
backend.services.inventory.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.core.exceptions import InvalidTransition, OrderNotFound
from backend.app.db.models.models_v1 import GeneratedOrder, utcnow
from backend.app.db.models.core_types import (
    OPEN_ORDER_STATUSES,
    ORDER_TRANSITIONS,
    MovementType,
    OrderStatus,
)
from backend.services.inventory import apply_stock_delta, lock_product

logger = logging.getLogger(__name__)


def lock_order(db: Session, order_id: int) -> GeneratedOrder:
    order = (
        db.execute(select(GeneratedOrder).where(GeneratedOrder.id == order_id).with_for_update())
        .scalar_one_or_none()
    )
    if not order:
        raise OrderNotFound(details={"order_id": order_id})
    return order


def transition_order(
    order: GeneratedOrder,
    target: OrderStatus,
    *,
    now: datetime | None = None,
) -> GeneratedOrder:
    """
    Applique une transition autorisée. Quand la commande sort des statuts
    ouverts, ses lignes libèrent leur "claim" (is_open=False) : le produit
    peut de nouveau être commandé le même jour.
    """
    if target not in ORDER_TRANSITIONS[order.status]:
        raise InvalidTransition(
            f"Cannot move order {order.id} from {order.status.value} to {target.value}",
            details={"order_id": order.id, "from": order.status.value, "to": target.value},
        )

    previous = order.status
    order.status = target
    if target == OrderStatus.sent:
        order.sent_at = now or utcnow()

    if target not in OPEN_ORDER_STATUSES:
        for line in order.lines:
            line.is_open = False

    logger.info("Order %s: %s -> %s", order.id, previous.value, target.value)
    return order


def receive_order(db: Session, order_id: int, *, now: datetime | None = None) -> GeneratedOrder:
    """
    sent -> completed + entrée en stock de chaque ligne, avec un mouvement
    RECEIPT rattaché à la commande. Une seule transaction : commande et
    mouvements sont écrits ensemble ou pas du tout.
    """
    order = lock_order(db, order_id)
    transition_order(order, OrderStatus.completed, now=now)

    for line in order.lines:
        product = lock_product(db, line.product_id)
        apply_stock_delta(
            db,
            product,
            line.qty,
            movement_type=MovementType.receipt,
            idempotency_key=f"receipt:{order.id}:{line.product_id}",
            reason=f"Received generated order {order.id}",
            generated_order_id=order.id,
            happened_at=now,
        )
    return order
