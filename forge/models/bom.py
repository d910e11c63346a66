"""FORGE - BOM and BOMItem models (append-only versioning)."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forge.db.base import Base


class BOMType(str, Enum):
    MANUFACTURING = "MANUFACTURING"
    ASSEMBLY = "ASSEMBLY"
    PHANTOM = "PHANTOM"
    TEMPLATE = "TEMPLATE"


class BOMStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ARCHIVED = "ARCHIVED"


class BOM(Base):
    """Bill of Materials - the component recipe for one version of a finished product."""

    __tablename__ = "boms"
    __table_args__ = (
        UniqueConstraint("tenant_id", "product_id", "version", name="uq_boms_product_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"), index=True)
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0")
    bom_type: Mapped[BOMType] = mapped_column(
        SAEnum(BOMType, native_enum=False, length=20), nullable=False, default=BOMType.MANUFACTURING
    )
    status: Mapped[BOMStatus] = mapped_column(
        SAEnum(BOMStatus, native_enum=False, length=20), nullable=False, default=BOMStatus.ACTIVE
    )
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Items are expressed per output_quantity finished units
    output_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("1"))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    items: Mapped[list["BOMItem"]] = relationship(
        "BOMItem",
        back_populates="bom",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BOMItem.sequence_number",
    )


class BOMItem(Base):
    """A single component line within a BOM."""

    __tablename__ = "bom_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    bom_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("boms.id", ondelete="CASCADE"), index=True)
    component_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"), index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit_of_measure: Mapped[str | None] = mapped_column(String(20), nullable=True)
    waste_percentage: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal("0"))
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_optional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    bom: Mapped["BOM"] = relationship("BOM", back_populates="items")
