"""initial schema: catalog, BOMs, assembly orders, purchase orders, goods receipts, stock

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:12:41.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _qty(name: str, nullable: bool = False, default: str | None = "0") -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 4), nullable=nullable, server_default=default)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def upgrade() -> None:
    # ── 1. Catalog ───────────────────────────────────────────────────────────
    op.create_table(
        "products",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_manufactured", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_purchasable", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("is_sellable", sa.Boolean(), nullable=False, server_default="true"),
        _qty("cost_price"),
        sa.Column("uom", sa.String(20), nullable=False, server_default="pcs"),
        sa.Column("uom_decimals", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
    )
    op.create_index("ix_products_tenant_id", "products", ["tenant_id"])

    op.create_table(
        "locations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_manufacturing_location", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_sellable_location", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_purchasable_location", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_locations_tenant_code"),
    )
    op.create_index("ix_locations_tenant_id", "locations", ["tenant_id"])

    # ── 2. BOMs (append-only versions) ───────────────────────────────────────
    op.create_table(
        "boms",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("version", sa.String(20), nullable=False, server_default="1.0"),
        sa.Column("bom_type", sa.String(20), nullable=False, server_default="MANUFACTURING"),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default="false"),
        _qty("output_quantity", default="1"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "product_id", "version", name="uq_boms_product_version"),
    )
    op.create_index("ix_boms_tenant_id", "boms", ["tenant_id"])
    op.create_index("ix_boms_product_id", "boms", ["product_id"])
    # At most one default BOM per product
    op.create_index(
        "uq_boms_one_default",
        "boms",
        ["tenant_id", "product_id"],
        unique=True,
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "bom_items",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("bom_id", UUID(as_uuid=True), sa.ForeignKey("boms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("component_id", UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        _qty("quantity", default=None),
        sa.Column("unit_of_measure", sa.String(20), nullable=True),
        sa.Column("waste_percentage", sa.Numeric(6, 2), nullable=False, server_default="0"),
        sa.Column("sequence_number", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("is_critical", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_optional", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_bom_items_bom_id", "bom_items", ["bom_id"])
    op.create_index("ix_bom_items_component_id", "bom_items", ["component_id"])

    # ── 3. Assembly orders ───────────────────────────────────────────────────
    op.create_table(
        "assembly_orders",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("order_number", sa.String(50), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("bom_id", UUID(as_uuid=True), sa.ForeignKey("boms.id", ondelete="RESTRICT"), nullable=False),
        _qty("quantity_planned", default=None),
        _qty("quantity_produced"),
        sa.Column("production_location_id", UUID(as_uuid=True), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("output_location_id", UUID(as_uuid=True), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("held_from_status", sa.String(20), nullable=True),
        sa.Column("priority", sa.String(10), nullable=False, server_default="NORMAL"),
        sa.Column("planned_start_date", sa.Date(), nullable=True),
        sa.Column("planned_completion_date", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("special_instructions", sa.Text(), nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("tenant_id", "order_number", name="uq_assembly_orders_number"),
        sa.CheckConstraint("quantity_planned > 0", name="ck_assembly_orders_quantity_planned_positive"),
        sa.CheckConstraint(
            "quantity_produced >= 0 AND quantity_produced <= quantity_planned",
            name="ck_assembly_orders_quantity_produced_range",
        ),
    )
    op.create_index("ix_assembly_orders_tenant_id", "assembly_orders", ["tenant_id"])
    op.create_index("ix_assembly_orders_bom_id", "assembly_orders", ["bom_id"])
    op.create_index("ix_assembly_orders_status", "assembly_orders", ["status"])

    op.create_table(
        "assembly_order_materials",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("assembly_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("component_id", UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity_per_unit", sa.Numeric(18, 8), nullable=False),
        sa.Column("bom_quantity", sa.Numeric(18, 4), nullable=False),
        sa.Column("bom_output_quantity", sa.Numeric(18, 4), nullable=False),
        _qty("quantity_required", default=None),
        _qty("quantity_reserved"),
        _qty("quantity_reservation_used"),
        _qty("quantity_consumed"),
        _qty("quantity_released"),
        _qty("shortage_at_release"),
        sa.Column("uom_decimals", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("order_id", "component_id", name="uq_assembly_order_materials_component"),
    )
    op.create_index("ix_assembly_order_materials_order_id", "assembly_order_materials", ["order_id"])

    # ── 4. Purchase orders ───────────────────────────────────────────────────
    op.create_table(
        "purchase_orders",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("order_number", sa.String(50), nullable=False),
        sa.Column("supplier_name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("location_id", UUID(as_uuid=True), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("tenant_id", "order_number", name="uq_purchase_orders_number"),
    )
    op.create_index("ix_purchase_orders_tenant_id", "purchase_orders", ["tenant_id"])

    op.create_table(
        "purchase_order_lines",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("purchase_order_id", UUID(as_uuid=True), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        _qty("quantity_ordered", default=None),
        _qty("quantity_received"),
        _qty("unit_price", default=None),
    )
    op.create_index("ix_purchase_order_lines_purchase_order_id", "purchase_order_lines", ["purchase_order_id"])

    # ── 5. Goods receipts ────────────────────────────────────────────────────
    op.create_table(
        "goods_receipts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("receipt_number", sa.String(50), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("purchase_order_id", UUID(as_uuid=True), sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("assembly_order_id", UUID(as_uuid=True), sa.ForeignKey("assembly_orders.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("supplier_name", sa.String(255), nullable=True),
        sa.Column("location_id", UUID(as_uuid=True), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("receipt_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("allow_over_receipt", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("tenant_id", "receipt_number", name="uq_goods_receipts_number"),
        sa.CheckConstraint(
            "(source_type = 'PURCHASE_ORDER' AND purchase_order_id IS NOT NULL AND assembly_order_id IS NULL)"
            " OR (source_type = 'ASSEMBLY_ORDER' AND assembly_order_id IS NOT NULL AND purchase_order_id IS NULL)"
            " OR (source_type = 'MANUAL' AND purchase_order_id IS NULL AND assembly_order_id IS NULL)",
            name="ck_goods_receipts_source_matches_type",
        ),
    )
    op.create_index("ix_goods_receipts_tenant_id", "goods_receipts", ["tenant_id"])
    op.create_index("ix_goods_receipts_purchase_order_id", "goods_receipts", ["purchase_order_id"])
    op.create_index("ix_goods_receipts_assembly_order_id", "goods_receipts", ["assembly_order_id"])

    op.create_table(
        "receipt_items",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("receipt_id", UUID(as_uuid=True), sa.ForeignKey("goods_receipts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        _qty("quantity_ordered"),
        _qty("quantity_received"),
        _qty("unit_price"),
        sa.Column(
            "purchase_order_line_id",
            UUID(as_uuid=True),
            sa.ForeignKey("purchase_order_lines.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.CheckConstraint("quantity_received >= 0", name="ck_receipt_items_quantity_received_non_negative"),
    )
    op.create_index("ix_receipt_items_receipt_id", "receipt_items", ["receipt_id"])

    # ── 6. Stock balances + append-only ledger ───────────────────────────────
    op.create_table(
        "stock_balances",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("location_id", UUID(as_uuid=True), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        _qty("on_hand"),
        _qty("reserved"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("tenant_id", "product_id", "location_id", name="uq_stock_balances_key"),
    )

    op.create_table(
        "stock_ledger",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("location_id", UUID(as_uuid=True), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("event_type", sa.String(20), nullable=False),
        _qty("quantity_delta"),
        _qty("reserved_delta"),
        sa.Column("reference_id", UUID(as_uuid=True), nullable=True),
        sa.Column("actor_id", UUID(as_uuid=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_stock_ledger_tenant_id", "stock_ledger", ["tenant_id"])
    op.create_index("ix_stock_ledger_product_id", "stock_ledger", ["product_id"])
    op.create_index("ix_stock_ledger_reference_id", "stock_ledger", ["reference_id"])

    # Append-only: block UPDATE and DELETE on the ledger
    op.execute("""
        CREATE OR REPLACE FUNCTION stock_ledger_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'stock_ledger is append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER stock_ledger_no_mutation
        BEFORE UPDATE OR DELETE ON stock_ledger
        FOR EACH ROW EXECUTE FUNCTION stock_ledger_immutable()
    """)

    # ── 7. Audit + numbering ─────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("actor_id", UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("target_type", sa.String(50), nullable=True),
        sa.Column("target_id", UUID(as_uuid=True), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"])

    op.create_table(
        "document_sequences",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("next_value", sa.BigInteger(), nullable=False, server_default="1"),
        sa.UniqueConstraint("tenant_id", "name", name="uq_document_sequences_name"),
    )


def downgrade() -> None:
    op.drop_table("document_sequences")
    op.drop_table("audit_logs")
    op.execute("DROP TRIGGER IF EXISTS stock_ledger_no_mutation ON stock_ledger")
    op.execute("DROP FUNCTION IF EXISTS stock_ledger_immutable()")
    op.drop_table("stock_ledger")
    op.drop_table("stock_balances")
    op.drop_table("receipt_items")
    op.drop_table("goods_receipts")
    op.drop_table("purchase_order_lines")
    op.drop_table("purchase_orders")
    op.drop_table("assembly_order_materials")
    op.drop_table("assembly_orders")
    op.drop_table("bom_items")
    op.drop_index("uq_boms_one_default", table_name="boms")
    op.drop_table("boms")
    op.drop_table("locations")
    op.drop_table("products")
