from pydantic import BaseModel, ConfigDict
from datetime import datetime


class InventoryHistoryResponse(BaseModel):
    """Schema for a single stock-change record."""
    id: int
    product_id: int
    change_amount: int
    reason: str
    before_qty: int
    after_qty: int
    change_date: datetime

    model_config = ConfigDict(from_attributes=True)


class InventoryHistoryListResponse(BaseModel):
    """Stock-change records for one product, newest first."""
    items: list[InventoryHistoryResponse]
    total: int
