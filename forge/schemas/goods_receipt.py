"""FORGE - Goods receipt schemas."""
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from forge.models.goods_receipt import ReceiptSourceType, ReceiptStatus


class FromPurchaseOrderRequest(BaseModel):
    purchase_order_id: UUID
    location_id: UUID | None = None
    receipt_date: date | None = None
    notes: str | None = None


class FromAssemblyOrderRequest(BaseModel):
    assembly_order_id: UUID
    location_id: UUID | None = None
    receipt_date: date | None = None
    notes: str | None = None


class ManualItemCreate(BaseModel):
    product_id: UUID
    quantity_received: Decimal = Field(..., ge=0)
    unit_price: Decimal | None = Field(None, ge=0)


class ManualReceiptCreate(BaseModel):
    items: list[ManualItemCreate] = Field(..., min_length=1)
    location_id: UUID | None = None
    supplier_name: str | None = Field(None, max_length=255)
    receipt_date: date | None = None
    notes: str | None = None


class ReceiptItemUpdate(BaseModel):
    id: UUID
    quantity_received: Decimal | None = Field(None, ge=0)
    unit_price: Decimal | None = Field(None, ge=0)


class ReceiptUpdate(BaseModel):
    location_id: UUID | None = None
    supplier_name: str | None = Field(None, max_length=255)
    receipt_date: date | None = None
    notes: str | None = None
    allow_over_receipt: bool | None = None
    items: list[ReceiptItemUpdate] | None = None


class ReceiptItemResponse(BaseModel):
    id: UUID
    product_id: UUID
    quantity_ordered: Decimal
    quantity_received: Decimal
    unit_price: Decimal
    purchase_order_line_id: UUID | None

    class Config:
        from_attributes = True


class ReceiptResponse(BaseModel):
    id: UUID
    receipt_number: str
    source_type: ReceiptSourceType
    purchase_order_id: UUID | None
    assembly_order_id: UUID | None
    supplier_name: str | None
    location_id: UUID | None
    status: ReceiptStatus
    receipt_date: date | None
    notes: str | None
    allow_over_receipt: bool
    created_at: datetime | None
    confirmed_at: datetime | None
    cancelled_at: datetime | None
    items: list[ReceiptItemResponse]

    class Config:
        from_attributes = True
