from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.core.exceptions import OrderNotFound
from backend.app.db.models.core_types import OrderStatus
from backend.app.schemas.generated_order import GeneratedOrderRead
from backend.services.procurement import lock_order, receive_order, transition_order
from backend.services.stores import OrderStore

router = APIRouter(prefix="/generated-orders")


class StatusUpdate(BaseModel):
    status: OrderStatus


@router.get("", response_model=list[GeneratedOrderRead])
def list_generated_orders(
    tenant_id: int | None = None,
    status: OrderStatus | None = None,
    provider_id: int | None = None,
    generation_date: date | None = None,
    db: Session = Depends(get_db),
):
    return OrderStore(db).list_orders(
        tenant_id=tenant_id,
        status=status,
        provider_id=provider_id,
        generation_date=generation_date,
    )


@router.get("/{order_id}", response_model=GeneratedOrderRead)
def get_generated_order(order_id: int, db: Session = Depends(get_db)):
    order = OrderStore(db).get_order(order_id)
    if not order:
        raise OrderNotFound(details={"order_id": order_id})
    return order


@router.post("/{order_id}/status", response_model=GeneratedOrderRead)
def update_generated_order_status(order_id: int, payload: StatusUpdate, db: Session = Depends(get_db)):
    # completed passe uniquement par /receive (entrée en stock)
    if payload.status not in (OrderStatus.sent, OrderStatus.cancelled):
        raise HTTPException(status_code=400, detail="Use /receive to complete an order")

    order = lock_order(db, order_id)
    transition_order(order, payload.status)
    db.commit()
    db.refresh(order)
    return order


@router.post("/{order_id}/receive", response_model=GeneratedOrderRead)
def receive_generated_order(order_id: int, db: Session = Depends(get_db)):
    order = receive_order(db, order_id)
    db.commit()
    db.refresh(order)
    return order
