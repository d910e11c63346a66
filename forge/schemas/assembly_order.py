"""FORGE - Assembly order schemas."""
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from forge.models.assembly import AssemblyOrderStatus, Priority


class AssemblyOrderCreate(BaseModel):
    product_id: UUID
    bom_id: UUID | None = None
    quantity_planned: Decimal = Field(..., gt=0)
    production_location_id: UUID
    output_location_id: UUID | None = None
    priority: Priority = Priority.NORMAL
    planned_start_date: date | None = None
    planned_completion_date: date | None = None
    description: str | None = None
    notes: str | None = None
    special_instructions: str | None = None


class AssemblyOrderUpdate(BaseModel):
    bom_id: UUID | None = None
    quantity_planned: Decimal | None = Field(None, gt=0)
    production_location_id: UUID | None = None
    output_location_id: UUID | None = None
    priority: Priority | None = None
    planned_start_date: date | None = None
    planned_completion_date: date | None = None
    description: str | None = None
    notes: str | None = None
    special_instructions: str | None = None


class ReleaseRequest(BaseModel):
    allow_shortage: bool = Field(False, description="Release even though components are short")


class ProductionReport(BaseModel):
    quantity: Decimal = Field(..., gt=0)


class MaterialResponse(BaseModel):
    component_id: UUID
    quantity_per_unit: Decimal
    quantity_required: Decimal
    quantity_reserved: Decimal
    quantity_consumed: Decimal
    quantity_released: Decimal
    shortage_at_release: Decimal

    class Config:
        from_attributes = True


class AssemblyOrderResponse(BaseModel):
    id: UUID
    order_number: str
    product_id: UUID
    bom_id: UUID
    quantity_planned: Decimal
    quantity_produced: Decimal
    quantity_remaining: Decimal
    production_location_id: UUID
    output_location_id: UUID | None
    status: AssemblyOrderStatus
    held_from_status: AssemblyOrderStatus | None
    priority: Priority
    planned_start_date: date | None
    planned_completion_date: date | None
    description: str | None
    notes: str | None
    special_instructions: str | None
    created_at: datetime | None
    released_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    materials: list[MaterialResponse]

    class Config:
        from_attributes = True
