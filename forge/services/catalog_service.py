"""FORGE - CatalogService: products and locations referenced by the engines."""
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from forge.core.context import CommandContext
from forge.db.session import transaction
from forge.exceptions import NotFoundError, ValidationError
from forge.models.catalog import Location, Product


class CatalogService:
    """Lookups and creation for products and locations."""

    @staticmethod
    async def get_product(db: AsyncSession, ctx: CommandContext, product_id: UUID) -> Product | None:
        result = await db.execute(
            select(Product).where(Product.id == product_id, Product.tenant_id == ctx.tenant_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def require_product(db: AsyncSession, ctx: CommandContext, product_id: UUID) -> Product:
        product = await CatalogService.get_product(db, ctx, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    @staticmethod
    async def get_location(db: AsyncSession, ctx: CommandContext, location_id: UUID) -> Location | None:
        result = await db.execute(
            select(Location).where(
                Location.id == location_id,
                Location.tenant_id == ctx.tenant_id,
                Location.is_active == True,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def require_location(db: AsyncSession, ctx: CommandContext, location_id: UUID) -> Location:
        location = await CatalogService.get_location(db, ctx, location_id)
        if location is None:
            raise NotFoundError("Location", location_id)
        return location

    @staticmethod
    async def create_product(
        db: AsyncSession,
        ctx: CommandContext,
        sku: str,
        name: str,
        *,
        is_manufactured: bool = False,
        is_purchasable: bool = True,
        is_sellable: bool = True,
        cost_price: Decimal = Decimal("0"),
        uom: str = "pcs",
        uom_decimals: int = 0,
    ) -> Product:
        if not 0 <= uom_decimals <= 4:
            raise ValidationError("uom_decimals must be between 0 and 4")
        existing = await db.execute(
            select(Product.id).where(Product.tenant_id == ctx.tenant_id, Product.sku == sku)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(f"SKU {sku} already exists", field_errors=[{"field": "sku", "message": "duplicate"}])
        product = Product(
            tenant_id=ctx.tenant_id,
            sku=sku,
            name=name,
            is_manufactured=is_manufactured,
            is_purchasable=is_purchasable,
            is_sellable=is_sellable,
            cost_price=cost_price,
            uom=uom,
            uom_decimals=uom_decimals,
        )
        async with transaction(db):
            db.add(product)
        return product

    @staticmethod
    async def create_location(
        db: AsyncSession,
        ctx: CommandContext,
        code: str,
        name: str,
        *,
        is_manufacturing_location: bool = False,
        is_sellable_location: bool = False,
        is_purchasable_location: bool = False,
    ) -> Location:
        location = Location(
            tenant_id=ctx.tenant_id,
            code=code,
            name=name,
            is_manufacturing_location=is_manufacturing_location,
            is_sellable_location=is_sellable_location,
            is_purchasable_location=is_purchasable_location,
        )
        async with transaction(db):
            db.add(location)
        return location
