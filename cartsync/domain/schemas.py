# cartsync/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Dict, List
from decimal import Decimal
from datetime import datetime


class ItemIn(BaseModel):
    """Schema for adding a product to the cart."""

    product_id: int = Field(..., gt=0, description="Product id (> 0)")
    quantity: int = Field(..., gt=0, description="Quantity to add (> 0)")


class ItemUpdateIn(BaseModel):
    """Absolute quantity, <= 0 or null removes the product."""

    product_id: int = Field(..., gt=0, description="Product id (> 0)")
    quantity: int | None = Field(None, description="New quantity")


class BulkUpdateIn(BaseModel):
    items: List[ItemUpdateIn]


class MessageOut(BaseModel):
    message: str


class CheckoutOut(BaseModel):
    message: str = "Checkout successful"
    order_id: int
    order_number: str
    total_amount: Decimal


class OrderItemOut(BaseModel):
    product_id: int
    quantity: int
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Schema for an order (response)."""

    id: int
    order_number: str
    user_id: str
    status: str
    placed_at: datetime
    total_amount: Decimal
    items: List[OrderItemOut]

    model_config = ConfigDict(from_attributes=True)


class SyncRunSummary(BaseModel):
    """Outcome of one reconciler run, per user."""

    started_at: datetime
    finished_at: datetime | None = None
    skipped_run: bool = False
    synced: List[str] = Field(default_factory=list)
    pruned: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def processed(self) -> int:
        return len(self.synced) + len(self.pruned) + len(self.skipped) + len(self.failed)
