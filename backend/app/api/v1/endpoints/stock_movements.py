from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.schemas.stock_movement import StockMovementRead
from backend.services.inventory import adjust_stock, record_sale

router = APIRouter(prefix="/stock-movements")


# ---------- Schemas ----------
class SaleCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    reason: str | None = Field(default=None, max_length=255)


class AdjustmentCreate(BaseModel):
    product_id: int
    delta: int
    reason: str | None = Field(default=None, max_length=255)


# ---------- Helpers ----------
def _require_idempotency_key(idempotency_key: str | None) -> str:
    if not idempotency_key or not idempotency_key.strip():
        raise HTTPException(status_code=400, detail="Missing Idempotency-Key header")
    key = idempotency_key.strip()
    if len(key) > 64:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long (max 64)")
    return key


# ---------- Endpoints ----------
@router.post("/sale")
def register_sale(
    payload: SaleCreate,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    idem = _require_idempotency_key(idempotency_key)

    result = record_sale(
        db,
        product_id=payload.product_id,
        quantity=payload.quantity,
        idempotency_key=idem,
        reason=payload.reason,
    )
    db.commit()

    mv = result.movement
    return {
        "movement": StockMovementRead.model_validate(mv),
        "replayed": result.replayed,
        "stock_before": mv.stock_before,
        "stock_after": mv.stock_after,
        "trigger_stock": result.trigger_stock,
        "below_threshold": result.below_threshold,
    }


@router.post("/adjustment", response_model=StockMovementRead)
def register_adjustment(
    payload: AdjustmentCreate,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    idem = _require_idempotency_key(idempotency_key)
    if payload.delta == 0:
        raise HTTPException(status_code=400, detail="delta must not be zero")

    mv = adjust_stock(
        db,
        product_id=payload.product_id,
        delta=payload.delta,
        idempotency_key=idem,
        reason=payload.reason,
    )
    db.commit()
    db.refresh(mv)
    return mv
