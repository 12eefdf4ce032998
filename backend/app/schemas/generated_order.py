from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from backend.app.db.models.core_types import OrderStatus


class GeneratedOrderLineRead(BaseModel):
    product_id: int
    qty: int
    unit_price: Decimal
    product_name: str
    product_code: str

    class Config:
        from_attributes = True


class GeneratedOrderRead(BaseModel):
    id: int
    tenant_id: int
    provider_id: int
    status: OrderStatus
    generation_date: date
    requires_approval: bool
    total_estimate: Decimal
    notes: str | None = None
    sent_at: datetime | None = None
    created_at: datetime
    lines: list[GeneratedOrderLineRead]

    class Config:
        from_attributes = True
