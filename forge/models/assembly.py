"""FORGE - Assembly Order models."""
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, Date, DateTime, Enum as SAEnum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forge.db.base import Base


class AssemblyOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    PLANNED = "PLANNED"
    RELEASED = "RELEASED"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Priority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class AssemblyOrder(Base):
    """A job to produce a finished product against one specific BOM version."""

    __tablename__ = "assembly_orders"
    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_assembly_orders_number"),
        CheckConstraint("quantity_planned > 0", name="quantity_planned_positive"),
        CheckConstraint(
            "quantity_produced >= 0 AND quantity_produced <= quantity_planned",
            name="quantity_produced_range",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"))
    bom_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("boms.id", ondelete="RESTRICT"), index=True)
    quantity_planned: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    quantity_produced: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    production_location_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("locations.id", ondelete="RESTRICT"))
    output_location_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True
    )
    status: Mapped[AssemblyOrderStatus] = mapped_column(
        SAEnum(AssemblyOrderStatus, native_enum=False, length=20),
        nullable=False,
        default=AssemblyOrderStatus.DRAFT,
        index=True,
    )
    # State to return to on resume
    held_from_status: Mapped[AssemblyOrderStatus | None] = mapped_column(
        SAEnum(AssemblyOrderStatus, native_enum=False, length=20), nullable=True
    )
    priority: Mapped[Priority] = mapped_column(
        SAEnum(Priority, native_enum=False, length=10), nullable=False, default=Priority.NORMAL
    )
    planned_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    planned_completion_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    materials: Mapped[list["AssemblyOrderMaterial"]] = relationship(
        "AssemblyOrderMaterial",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def quantity_remaining(self) -> Decimal:
        return self.quantity_planned - self.quantity_produced

    @property
    def effective_output_location_id(self) -> uuid.UUID:
        return self.output_location_id or self.production_location_id


class AssemblyOrderMaterial(Base):
    """Material requirement snapshot taken when the order is released."""

    __tablename__ = "assembly_order_materials"
    __table_args__ = (
        UniqueConstraint("order_id", "component_id", name="uq_assembly_order_materials_component"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("assembly_orders.id", ondelete="CASCADE"), index=True)
    component_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"))
    quantity_per_unit: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)
    # Exact BOM ratio at release: bom_quantity components per bom_output_quantity finished units
    bom_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    bom_output_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    quantity_required: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    quantity_reserved: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    # Portion of the reservation already turned into debits
    quantity_reservation_used: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    quantity_consumed: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    quantity_released: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    shortage_at_release: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    uom_decimals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    order: Mapped["AssemblyOrder"] = relationship("AssemblyOrder", back_populates="materials")

    @property
    def reservation_outstanding(self) -> Decimal:
        return self.quantity_reserved - self.quantity_reservation_used - self.quantity_released
