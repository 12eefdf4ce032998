from datetime import datetime

from pydantic import BaseModel, Field


class RunResult(BaseModel):
    success: bool = True
    rules_evaluated: int = 0
    triggered: int = 0
    skipped_duplicate: int = 0
    orders_created: int = 0
    order_ids: list[int] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    message: str = ""
    timestamp: datetime
