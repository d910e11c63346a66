"""FORGE - GoodsReceipt and ReceiptItem models."""
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from forge.db.base import Base


class ReceiptStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class ReceiptSourceType(str, Enum):
    PURCHASE_ORDER = "PURCHASE_ORDER"
    ASSEMBLY_ORDER = "ASSEMBLY_ORDER"
    MANUAL = "MANUAL"


class GoodsReceipt(Base):
    """Physical arrival of stock, reconciled against at most one source document."""

    __tablename__ = "goods_receipts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "receipt_number", name="uq_goods_receipts_number"),
        CheckConstraint(
            "(source_type = 'PURCHASE_ORDER' AND purchase_order_id IS NOT NULL AND assembly_order_id IS NULL)"
            " OR (source_type = 'ASSEMBLY_ORDER' AND assembly_order_id IS NOT NULL AND purchase_order_id IS NULL)"
            " OR (source_type = 'MANUAL' AND purchase_order_id IS NULL AND assembly_order_id IS NULL)",
            name="source_matches_type",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    receipt_number: Mapped[str] = mapped_column(String(50), nullable=False)
    source_type: Mapped[ReceiptSourceType] = mapped_column(
        SAEnum(ReceiptSourceType, native_enum=False, length=20), nullable=False
    )
    purchase_order_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    assembly_order_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("assembly_orders.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    supplier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True
    )
    status: Mapped[ReceiptStatus] = mapped_column(
        SAEnum(ReceiptStatus, native_enum=False, length=20), nullable=False, default=ReceiptStatus.DRAFT
    )
    receipt_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    allow_over_receipt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["ReceiptItem"]] = relationship(
        "ReceiptItem", back_populates="receipt", cascade="all, delete-orphan", lazy="selectin"
    )

    __mapper_args__ = {"version_id_col": version_id}


class ReceiptItem(Base):
    __tablename__ = "receipt_items"
    __table_args__ = (
        CheckConstraint("quantity_received >= 0", name="quantity_received_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    receipt_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("goods_receipts.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"))
    quantity_ordered: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    quantity_received: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    purchase_order_line_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("purchase_order_lines.id", ondelete="RESTRICT"), nullable=True
    )

    receipt: Mapped["GoodsReceipt"] = relationship("GoodsReceipt", back_populates="items")
