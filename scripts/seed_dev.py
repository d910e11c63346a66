"""FORGE - Seed a dev tenant with a small catalog, a default BOM and opening stock (run after migrations)."""
import asyncio
import logging
import os
import uuid
from decimal import Decimal

from sqlalchemy import select

from forge.config import get_settings
from forge.core.context import CommandContext
from forge.db.session import async_session_maker
from forge.logging_config import setup_logging
from forge.models.catalog import Product
from forge.services.bom_service import BOMService
from forge.services.catalog_service import CatalogService
from forge.services.ledger_service import LedgerService

logger = logging.getLogger("forge.seed")

DEV_TENANT_ID = uuid.UUID(os.getenv("FORGE_DEV_TENANT_ID", "00000000-0000-0000-0000-00000000d001"))


async def seed() -> None:
    ctx = CommandContext(tenant_id=DEV_TENANT_ID, actor_id=None)
    async with async_session_maker() as session:
        existing = await session.execute(
            select(Product.id).where(Product.tenant_id == ctx.tenant_id, Product.sku == "CHAIR-01")
        )
        if existing.scalar_one_or_none():
            logger.info("Dev tenant %s already seeded. Skipping.", ctx.tenant_id)
            return

        workshop = await CatalogService.create_location(
            session, ctx, "WS-1", "Workshop", is_manufacturing_location=True, is_purchasable_location=True
        )
        await CatalogService.create_location(session, ctx, "SHOP", "Showroom", is_sellable_location=True)

        chair = await CatalogService.create_product(
            session, ctx, "CHAIR-01", "Oak chair", is_manufactured=True, is_purchasable=False
        )
        leg = await CatalogService.create_product(session, ctx, "LEG-OAK", "Oak leg", cost_price=Decimal("3.50"))
        seat = await CatalogService.create_product(session, ctx, "SEAT-OAK", "Oak seat", cost_price=Decimal("12.00"))
        screw = await CatalogService.create_product(session, ctx, "SCREW-M4", "M4 screw", cost_price=Decimal("0.05"))
        glue = await CatalogService.create_product(
            session, ctx, "GLUE-PVA", "PVA glue", uom="kg", uom_decimals=3, cost_price=Decimal("8.00")
        )

        await BOMService.create_bom(
            session,
            ctx,
            chair.id,
            [
                {"component_id": leg.id, "quantity": Decimal("4")},
                {"component_id": seat.id, "quantity": Decimal("1")},
                {"component_id": screw.id, "quantity": Decimal("8")},
                {"component_id": glue.id, "quantity": Decimal("0.025"), "unit_of_measure": "kg"},
            ],
            version="1.0",
            is_default=True,
            description="Standard oak chair",
        )

        for product, qty in ((leg, "100"), (seat, "20"), (screw, "500"), (glue, "2.5")):
            await LedgerService.adjust(session, ctx, product.id, workshop.id, Decimal(qty), notes="Opening stock")

    logger.info("Seeded dev tenant %s (workshop %s)", ctx.tenant_id, workshop.id)


if __name__ == "__main__":
    setup_logging(get_settings().LOG_LEVEL)
    asyncio.run(seed())
