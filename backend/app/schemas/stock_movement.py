from datetime import datetime

from pydantic import BaseModel

from backend.app.db.models.core_types import MovementType


class StockMovementRead(BaseModel):
    id: int
    product_id: int
    movement_type: MovementType
    quantity: int
    stock_before: int
    stock_after: int
    reason: str | None = None
    generated_order_id: int | None = None
    happened_at: datetime
    idempotency_key: str

    class Config:
        from_attributes = True
