"""BOM creation, validation, versioning and availability."""
from decimal import Decimal

import pytest
from sqlalchemy import select

from forge.exceptions import StateConflictError, ValidationError
from forge.models.audit import AuditLog
from forge.models.bom import BOMStatus
from forge.services.assembly_service import AssemblyService
from forge.services.audit_service import ACTION_BOM_VERSIONED
from forge.services.bom_service import BOMService


async def test_create_bom_assigns_sequence_and_component_uom(db, ctx, kit):
    bom = kit["bom"]
    assert bom.version == "1.0"
    assert bom.is_default is True
    assert [item.sequence_number for item in bom.items] == [10, 20]
    assert all(item.unit_of_measure == "pcs" for item in bom.items)


async def test_bom_requires_manufactured_product(db, ctx, make_product):
    plain = await make_product("PLAIN")
    part = await make_product("PART")
    with pytest.raises(ValidationError, match="not a manufactured product"):
        await BOMService.create_bom(db, ctx, plain.id, [{"component_id": part.id, "quantity": 1}])


async def test_bom_rejects_self_reference(db, ctx, make_product):
    p = await make_product("P", is_manufactured=True)
    with pytest.raises(ValidationError, match="Circular"):
        await BOMService.create_bom(db, ctx, p.id, [{"component_id": p.id, "quantity": 1}])


async def test_bom_rejects_duplicate_components_and_zero_quantity(db, ctx, make_product):
    p = await make_product("P", is_manufactured=True)
    a = await make_product("A")
    with pytest.raises(ValidationError, match="more than once"):
        await BOMService.create_bom(
            db, ctx, p.id, [{"component_id": a.id, "quantity": 1}, {"component_id": a.id, "quantity": 2}]
        )
    with pytest.raises(ValidationError, match="greater than zero"):
        await BOMService.create_bom(db, ctx, p.id, [{"component_id": a.id, "quantity": 0}])


async def test_duplicate_version_is_rejected(db, ctx, kit):
    with pytest.raises(ValidationError, match="already exists"):
        await BOMService.create_bom(
            db, ctx, kit["P"].id, [{"component_id": kit["A"].id, "quantity": 1}], version="1.0"
        )


async def test_new_default_clears_previous_default(db, ctx, kit):
    v2 = await BOMService.create_bom(
        db, ctx, kit["P"].id, [{"component_id": kit["A"].id, "quantity": 3}], version="2.0", is_default=True
    )

    v1 = await BOMService.require_bom(db, ctx, kit["bom"].id)
    assert v1.is_default is False
    assert (await BOMService.default_for(db, ctx, kit["P"].id)).id == v2.id


async def test_version_change_creates_new_bom_and_keeps_old(db, ctx, kit):
    # when the version is changed through an update
    v2 = await BOMService.update_bom(
        db, ctx, kit["bom"].id, version="1.1", items=[{"component_id": kit["A"].id, "quantity": 3}]
    )

    # then a separate BOM exists and the original is untouched
    assert v2.id != kit["bom"].id
    assert v2.version == "1.1"
    assert [i.quantity for i in v2.items] == [Decimal("3")]
    v1 = await BOMService.require_bom(db, ctx, kit["bom"].id)
    assert len(v1.items) == 2
    audit = (await db.execute(select(AuditLog).where(AuditLog.target_id == v2.id))).scalars().all()
    assert [a.action for a in audit] == [ACTION_BOM_VERSIONED]


async def test_version_change_without_items_copies_them(db, ctx, kit):
    v2 = await BOMService.update_bom(db, ctx, kit["bom"].id, version="2.0")
    assert sorted(i.component_id for i in v2.items) == sorted([kit["A"].id, kit["B"].id])


async def test_in_place_edit_allowed_while_unreferenced(db, ctx, kit):
    bom = await BOMService.update_bom(db, ctx, kit["bom"].id, description="Revised", output_quantity=Decimal("2"))
    assert bom.description == "Revised"
    assert bom.output_quantity == Decimal("2")


async def test_in_place_edit_rejected_once_an_order_was_released(db, ctx, kit, workshop, stock):
    await stock(kit["A"], workshop, 100)
    await stock(kit["B"], workshop, 100)
    order = await AssemblyService.create(db, ctx, kit["P"].id, Decimal("2"), workshop.id)
    await AssemblyService.release(db, ctx, order.id)

    with pytest.raises(StateConflictError):
        await BOMService.update_bom(db, ctx, kit["bom"].id, items=[{"component_id": kit["A"].id, "quantity": 9}])

    bom = await BOMService.require_bom(db, ctx, kit["bom"].id)
    assert len(bom.items) == 2


async def test_set_default_requires_active(db, ctx, kit):
    draft = await BOMService.create_bom(
        db, ctx, kit["P"].id, [{"component_id": kit["A"].id, "quantity": 1}], version="3.0", status=BOMStatus.DRAFT
    )
    with pytest.raises(ValidationError):
        await BOMService.set_default(db, ctx, draft.id)


async def test_archive_drops_default_flag(db, ctx, kit):
    archived = await BOMService.archive_bom(db, ctx, kit["bom"].id)
    assert archived.status == BOMStatus.ARCHIVED
    assert archived.is_default is False
    assert await BOMService.default_for(db, ctx, kit["P"].id) is None
    assert await BOMService.list_for_product(db, ctx, kit["P"].id) == []


async def test_explode_scales_by_output_quantity(db, ctx, make_product):
    p = await make_product("BATCH", is_manufactured=True)
    flour = await make_product("FLOUR", uom="kg", uom_decimals=3)
    bom = await BOMService.create_bom(
        db, ctx, p.id, [{"component_id": flour.id, "quantity": Decimal("1.5")}], output_quantity=Decimal("4")
    )

    exploded = await BOMService.explode(db, ctx, bom.id, Decimal("10"))

    assert exploded == {flour.id: Decimal("3.750")}


async def test_check_availability_reports_per_component(db, ctx, kit, workshop, stock):
    await stock(kit["A"], workshop, 25)
    await stock(kit["B"], workshop, 8)

    report = await BOMService.check_availability(db, ctx, kit["bom"].id, Decimal("10"), workshop.id)

    by_component = {line.component_id: line for line in report.lines}
    assert by_component[kit["A"].id].shortage == Decimal("0")
    assert by_component[kit["B"].id].shortage == Decimal("2")
    assert report.is_fully_available is False
