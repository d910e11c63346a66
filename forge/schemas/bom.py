"""FORGE - BOM schemas."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from forge.models.bom import BOMStatus, BOMType


class BOMItemCreate(BaseModel):
    component_id: UUID
    quantity: Decimal = Field(..., gt=0)
    unit_of_measure: str | None = Field(None, max_length=20)
    waste_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    sequence_number: int | None = Field(None, ge=0)
    is_critical: bool = False
    is_optional: bool = False
    notes: str | None = None


class BOMCreate(BaseModel):
    product_id: UUID
    version: str = Field("1.0", min_length=1, max_length=20)
    bom_type: BOMType = BOMType.MANUFACTURING
    status: BOMStatus = BOMStatus.ACTIVE
    is_default: bool = False
    output_quantity: Decimal = Field(Decimal("1"), gt=0)
    description: str | None = None
    notes: str | None = None
    items: list[BOMItemCreate] = Field(..., min_length=1)


class BOMUpdate(BaseModel):
    """A changed version creates a new BOM; otherwise the BOM is edited in place."""

    version: str | None = Field(None, min_length=1, max_length=20)
    bom_type: BOMType | None = None
    status: BOMStatus | None = None
    is_default: bool | None = None
    output_quantity: Decimal | None = Field(None, gt=0)
    description: str | None = None
    notes: str | None = None
    items: list[BOMItemCreate] | None = Field(None, min_length=1)


class BOMItemResponse(BaseModel):
    id: UUID
    component_id: UUID
    quantity: Decimal
    unit_of_measure: str | None
    waste_percentage: Decimal
    sequence_number: int
    is_critical: bool
    is_optional: bool
    notes: str | None

    class Config:
        from_attributes = True


class BOMResponse(BaseModel):
    id: UUID
    product_id: UUID
    version: str
    bom_type: BOMType
    status: BOMStatus
    is_default: bool
    output_quantity: Decimal
    description: str | None
    notes: str | None
    created_at: datetime | None
    items: list[BOMItemResponse]

    class Config:
        from_attributes = True


class ComponentAvailabilityResponse(BaseModel):
    component_id: UUID
    required: Decimal
    available: Decimal
    shortage: Decimal
    status: str


class AvailabilityResponse(BaseModel):
    order_number: str | None = None
    is_fully_available: bool
    lines: list[ComponentAvailabilityResponse]
