"""FORGE - Stock balance and ledger schemas."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from forge.models.stock import StockEventType


class StockBalanceResponse(BaseModel):
    product_id: UUID
    location_id: UUID
    on_hand: Decimal
    reserved: Decimal
    available: Decimal


class StockAdjustRequest(BaseModel):
    product_id: UUID
    location_id: UUID
    delta: Decimal = Field(..., description="Positive to add stock, negative to remove it")
    notes: str | None = None


class StockLedgerResponse(BaseModel):
    id: UUID
    product_id: UUID
    location_id: UUID
    event_type: StockEventType
    quantity_delta: Decimal
    reserved_delta: Decimal
    reference_id: UUID | None
    actor_id: UUID | None
    notes: str | None
    created_at: datetime | None

    class Config:
        from_attributes = True
