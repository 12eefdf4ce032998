"""
Vues lecture seule et stockage utilisés par le moteur de réapprovisionnement.

Le moteur ne voit jamais les modèles ORM en lecture : StockSnapshot et
RuleCatalog renvoient des projections figées (dataclasses), pour découpler
le moteur de la forme des requêtes SQL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from backend.app.core.exceptions import ReadFailure
from backend.app.db.models.core_types import OPEN_ORDER_STATUSES, OrderStatus
from backend.app.db.models.models_v1 import (
    GeneratedOrder,
    GeneratedOrderLine,
    Product,
    Provider,
    ReorderRule,
    Tenant,
)

if TYPE_CHECKING:
    from backend.services.replenishment import OrderDraft

logger = logging.getLogger(__name__)


def db_error_reason(exc: SQLAlchemyError) -> str:
    """Cause courte d'une erreur SQL, sans la requête ni ses paramètres."""
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return f"{type(exc.orig).__name__}: {exc.orig}"
    return type(exc).__name__


@dataclass(frozen=True)
class ProductStock:
    id: int
    tenant_id: int
    code: str
    name: str
    stock: int
    unit_price: Decimal


@dataclass(frozen=True)
class RuleView:
    id: int
    tenant_id: int
    product_id: int
    provider_id: int
    provider_tenant_id: int
    provider_name: str
    trigger_stock: int
    reorder_qty: int
    requires_approval: bool


class StockSnapshot:
    """Stock courant par produit, pour un tenant ou pour tous les tenants actifs."""

    def __init__(self, db: Session):
        self.db = db

    def tenant_timezones(self, tenant_id: int | None = None) -> dict[int, str]:
        stmt = select(Tenant.id, Tenant.timezone).where(Tenant.active.is_(True))
        if tenant_id is not None:
            stmt = stmt.where(Tenant.id == tenant_id)
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error("Could not read tenants: %s", exc)
            raise ReadFailure(f"Could not read tenants: {db_error_reason(exc)}") from exc
        return {int(tid): tz for tid, tz in rows}

    def load(self, tenant_id: int | None = None) -> dict[int, ProductStock]:
        stmt = (
            select(Product)
            .join(Tenant, Tenant.id == Product.tenant_id)
            .where(Tenant.active.is_(True))
        )
        if tenant_id is not None:
            stmt = stmt.where(Product.tenant_id == tenant_id)
        try:
            products = self.db.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            logger.error("Could not read product stock: %s", exc)
            raise ReadFailure(f"Could not read product stock: {db_error_reason(exc)}") from exc

        return {
            int(p.id): ProductStock(
                id=int(p.id),
                tenant_id=int(p.tenant_id),
                code=p.code,
                name=p.name,
                stock=int(p.stock),
                unit_price=Decimal(p.unit_price),
            )
            for p in products
        }


class RuleCatalog:
    """Règles de réapprovisionnement actives (enabled) des tenants actifs."""

    def __init__(self, db: Session):
        self.db = db

    def enabled_rules(self, tenant_id: int | None = None) -> list[RuleView]:
        stmt = (
            select(ReorderRule, Provider.tenant_id, Provider.name)
            .join(Provider, Provider.id == ReorderRule.provider_id)
            .join(Tenant, Tenant.id == ReorderRule.tenant_id)
            .where(ReorderRule.enabled.is_(True))
            .where(Tenant.active.is_(True))
            .order_by(ReorderRule.id.asc())
        )
        if tenant_id is not None:
            stmt = stmt.where(ReorderRule.tenant_id == tenant_id)
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error("Could not read reorder rules: %s", exc)
            raise ReadFailure(f"Could not read reorder rules: {db_error_reason(exc)}") from exc

        return [
            RuleView(
                id=int(rule.id),
                tenant_id=int(rule.tenant_id),
                product_id=int(rule.product_id),
                provider_id=int(rule.provider_id),
                provider_tenant_id=int(provider_tenant_id),
                provider_name=provider_name,
                trigger_stock=int(rule.trigger_stock),
                reorder_qty=int(rule.reorder_qty),
                requires_approval=bool(rule.requires_approval),
            )
            for rule, provider_tenant_id, provider_name in rows
        ]


class OrderStore:
    """Persistance des commandes générées (brouillons)."""

    def __init__(self, db: Session):
        self.db = db

    def open_claims(self, tenant_id: int, generation_date: date) -> set[tuple[int, int]]:
        """
        Paires (provider_id, product_id) déjà couvertes par une commande
        ouverte (pending_review / sent) du tenant pour ce jour.
        """
        stmt = (
            select(GeneratedOrderLine.provider_id, GeneratedOrderLine.product_id)
            .join(GeneratedOrder, GeneratedOrder.id == GeneratedOrderLine.order_id)
            .where(GeneratedOrder.tenant_id == tenant_id)
            .where(GeneratedOrder.generation_date == generation_date)
            .where(GeneratedOrder.status.in_(OPEN_ORDER_STATUSES))
        )
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error("Could not read open orders: %s", exc)
            raise ReadFailure(f"Could not read open orders: {db_error_reason(exc)}") from exc
        return {(int(provider_id), int(product_id)) for provider_id, product_id in rows}

    def insert_order(self, draft: "OrderDraft") -> GeneratedOrder:
        """
        Insert atomique d'un brouillon (commande + toutes ses lignes) puis commit.
        Une ligne refusée fait échouer tout le brouillon : jamais d'écriture partielle.
        """
        order = GeneratedOrder(
            tenant_id=draft.tenant_id,
            provider_id=draft.provider_id,
            status=OrderStatus.pending_review,
            generation_date=draft.generation_date,
            requires_approval=draft.requires_approval,
            total_estimate=draft.total_estimate,
            notes=draft.notes,
            lines=[
                GeneratedOrderLine(
                    product_id=line.product_id,
                    qty=line.qty,
                    unit_price=line.unit_price,
                    product_name=line.product_name,
                    product_code=line.product_code,
                    tenant_id=draft.tenant_id,
                    provider_id=draft.provider_id,
                    generation_date=draft.generation_date,
                    is_open=True,
                )
                for line in draft.lines
            ],
        )
        try:
            with self.db.begin_nested():
                self.db.add(order)
                self.db.flush()
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return order

    def get_order(self, order_id: int) -> GeneratedOrder | None:
        return self.db.get(GeneratedOrder, order_id)

    def list_orders(
        self,
        *,
        tenant_id: int | None = None,
        status: OrderStatus | None = None,
        provider_id: int | None = None,
        generation_date: date | None = None,
    ) -> list[GeneratedOrder]:
        stmt = (
            select(GeneratedOrder)
            .options(selectinload(GeneratedOrder.lines))
            .order_by(GeneratedOrder.id.desc())
        )
        if tenant_id is not None:
            stmt = stmt.where(GeneratedOrder.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(GeneratedOrder.status == status)
        if provider_id is not None:
            stmt = stmt.where(GeneratedOrder.provider_id == provider_id)
        if generation_date is not None:
            stmt = stmt.where(GeneratedOrder.generation_date == generation_date)
        return list(self.db.execute(stmt).scalars().all())
