"""FORGE - Product and Location models."""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from forge.db.base import Base


class Product(Base):
    """A stockable product. Identity is immutable; prices are maintained elsewhere."""

    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_manufactured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_purchasable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_sellable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cost_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    uom: Mapped[str] = mapped_column(String(20), nullable=False, default="pcs")
    # Number of decimal places quantities of this product are tracked in
    uom_decimals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Location(Base):
    """A stock location. Flags decide what may happen there."""

    __tablename__ = "locations"
    __table_args__ = (UniqueConstraint("tenant_id", "code", name="uq_locations_tenant_code"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_manufacturing_location: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_sellable_location: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_purchasable_location: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
