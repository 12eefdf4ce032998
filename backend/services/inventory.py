from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.core.exceptions import InsufficientStock, ProductNotFound
from backend.app.db.models.models_v1 import Product, ReorderRule, StockMovement, utcnow
from backend.app.db.models.core_types import MovementType

logger = logging.getLogger(__name__)


@dataclass
class SaleResult:
    movement: StockMovement
    replayed: bool
    trigger_stock: int | None
    below_threshold: bool


def find_movement(db: Session, idempotency_key: str) -> StockMovement | None:
    return db.execute(
        select(StockMovement).where(StockMovement.idempotency_key == idempotency_key)
    ).scalar_one_or_none()


def lock_product(db: Session, product_id: int) -> Product:
    product = (
        db.execute(select(Product).where(Product.id == product_id).with_for_update())
        .scalar_one_or_none()
    )
    if not product:
        raise ProductNotFound(details={"product_id": product_id})
    return product


def apply_stock_delta(
    db: Session,
    product: Product,
    delta: int,
    *,
    movement_type: MovementType,
    idempotency_key: str,
    reason: str | None = None,
    generated_order_id: int | None = None,
    happened_at: datetime | None = None,
) -> StockMovement:
    """
    Modifie le stock d'un produit (déjà verrouillé) et enregistre le mouvement.
    Le stock ne descend jamais sous zéro. Pas de commit ici : l'appelant
    décide de la transaction.
    """
    before = int(product.stock)
    after = before + delta
    if after < 0:
        raise InsufficientStock(
            f"Insufficient stock (stock={before})",
            details={"product_id": int(product.id), "stock": before, "requested": -delta},
        )

    product.stock = after
    mv = StockMovement(
        tenant_id=product.tenant_id,
        product_id=product.id,
        movement_type=movement_type,
        quantity=delta,
        stock_before=before,
        stock_after=after,
        reason=reason,
        generated_order_id=generated_order_id,
        happened_at=happened_at or utcnow(),
        idempotency_key=idempotency_key,
    )
    db.add(mv)
    return mv


def enabled_trigger_stock(db: Session, product_id: int) -> int | None:
    return db.execute(
        select(ReorderRule.trigger_stock)
        .where(ReorderRule.product_id == product_id)
        .where(ReorderRule.enabled.is_(True))
    ).scalars().first()


def record_sale(
    db: Session,
    *,
    product_id: int,
    quantity: int,
    idempotency_key: str,
    reason: str | None = None,
) -> SaleResult:
    """
    Sortie de stock pour une vente. Rejoue le mouvement existant si la clé
    d'idempotence est déjà connue.
    """
    existing = find_movement(db, idempotency_key)
    if existing:
        movement, replayed = existing, True
    else:
        product = lock_product(db, product_id)
        movement = apply_stock_delta(
            db,
            product,
            -quantity,
            movement_type=MovementType.sale,
            idempotency_key=idempotency_key,
            reason=reason or f"Sale: {quantity} unit(s)",
        )
        replayed = False
        logger.info("Sale recorded for product %s: %s -> %s", product.code, movement.stock_before, movement.stock_after)

    trigger = enabled_trigger_stock(db, movement.product_id)
    below = trigger is not None and movement.stock_after < trigger
    return SaleResult(movement=movement, replayed=replayed, trigger_stock=trigger, below_threshold=below)


def adjust_stock(
    db: Session,
    *,
    product_id: int,
    delta: int,
    idempotency_key: str,
    reason: str | None = None,
) -> StockMovement:
    existing = find_movement(db, idempotency_key)
    if existing:
        return existing

    product = lock_product(db, product_id)
    return apply_stock_delta(
        db,
        product,
        delta,
        movement_type=MovementType.adjustment,
        idempotency_key=idempotency_key,
        reason=reason or "Manual adjustment",
    )
