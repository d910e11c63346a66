"""FORGE - Purchase Order schemas."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from forge.models.purchase_order import POStatus


class POLineCreate(BaseModel):
    product_id: UUID
    quantity_ordered: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)


class POCreate(BaseModel):
    supplier_name: str = Field(..., min_length=1, max_length=255)
    location_id: UUID
    notes: str | None = None
    lines: list[POLineCreate] = Field(..., min_length=1)


class POLineResponse(BaseModel):
    id: UUID
    product_id: UUID
    quantity_ordered: Decimal
    quantity_received: Decimal
    remaining_to_receive: Decimal
    unit_price: Decimal

    class Config:
        from_attributes = True


class POResponse(BaseModel):
    id: UUID
    order_number: str
    supplier_name: str
    status: POStatus
    location_id: UUID
    notes: str | None
    lines: list[POLineResponse]
    created_at: datetime | None

    class Config:
        from_attributes = True
