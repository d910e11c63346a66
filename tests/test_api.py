"""HTTP surface: envelopes, status codes and error mapping."""
import uuid
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from forge.db.session import get_db
from forge.main import app


@pytest.fixture
async def client(session_factory, fake_redis):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def headers(ctx):
    return {"X-Tenant-ID": str(ctx.tenant_id), "X-Actor-ID": str(ctx.actor_id)}


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "forge"}


async def test_missing_tenant_header_is_a_validation_error(client):
    resp = await client.get("/api/v1/boms")

    assert resp.status_code == 422
    body = resp.json()
    assert body["data"] is None
    assert body["error"]["code"] == "validation_error"
    assert any("X-Tenant-ID" in e["field"] for e in body["error"]["field_errors"])


async def test_create_and_fetch_bom(client, headers, make_product):
    product = await make_product("DESK", is_manufactured=True, is_purchasable=False)
    leg = await make_product("LEG")

    resp = await client.post(
        "/api/v1/boms",
        json={"product_id": str(product.id), "is_default": True, "items": [{"component_id": str(leg.id), "quantity": "4"}]},
        headers=headers,
    )

    assert resp.status_code == 201
    created = resp.json()["data"]
    assert created["is_default"] is True
    assert Decimal(created["items"][0]["quantity"]) == Decimal("4")

    fetched = await client.get(f"/api/v1/boms/{created['id']}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["data"]["product_id"] == str(product.id)


async def test_unknown_bom_is_not_found(client, headers):
    resp = await client.get(f"/api/v1/boms/{uuid.uuid4()}", headers=headers)

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


async def test_other_tenant_cannot_see_bom(client, ctx, kit):
    resp = await client.get(f"/api/v1/boms/{kit['bom'].id}", headers={"X-Tenant-ID": str(uuid.uuid4())})
    assert resp.status_code == 404


async def test_release_shortage_is_conflict_with_details(client, headers, kit, workshop, stock):
    await stock(kit["A"], workshop, 5)
    create = await client.post(
        "/api/v1/assembly-orders",
        json={"product_id": str(kit["P"].id), "quantity_planned": "10", "production_location_id": str(workshop.id)},
        headers=headers,
    )
    assert create.status_code == 201
    order_id = create.json()["data"]["id"]

    resp = await client.post(f"/api/v1/assembly-orders/{order_id}/release", json={}, headers=headers)

    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["code"] == "insufficient_stock"
    shortages = {s["component_id"]: Decimal(s["shortage"]) for s in error["shortages"]}
    assert shortages[str(kit["A"].id)] == Decimal("15")
    assert shortages[str(kit["B"].id)] == Decimal("10")

    order = await client.get(f"/api/v1/assembly-orders/{order_id}", headers=headers)
    assert order.json()["data"]["status"] == "DRAFT"


async def test_double_confirm_answers_already_confirmed(client, headers, workshop, make_product):
    bolt = await make_product("BOLT")
    create = await client.post(
        "/api/v1/goods-receipts/manual",
        json={"location_id": str(workshop.id), "items": [{"product_id": str(bolt.id), "quantity_received": "3"}]},
        headers=headers,
    )
    assert create.status_code == 201
    receipt_id = create.json()["data"]["id"]

    first = await client.post(f"/api/v1/goods-receipts/{receipt_id}/confirm", headers=headers)
    second = await client.post(f"/api/v1/goods-receipts/{receipt_id}/confirm", headers=headers)

    assert first.status_code == 200
    assert first.json()["data"]["status"] == "CONFIRMED"
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "already_confirmed"
    balance = await client.get(
        "/api/v1/stock/balance", params={"product_id": str(bolt.id), "location_id": str(workshop.id)}, headers=headers
    )
    assert Decimal(balance.json()["data"]["on_hand"]) == Decimal("3")


async def test_stock_adjust_and_history(client, headers, workshop, make_product):
    bolt = await make_product("BOLT")
    params = {"product_id": str(bolt.id), "location_id": str(workshop.id)}

    empty = await client.get("/api/v1/stock/balance", params=params, headers=headers)
    assert Decimal(empty.json()["data"]["on_hand"]) == Decimal("0")

    resp = await client.post(
        "/api/v1/stock/adjust", json={**params, "delta": "12", "notes": "count"}, headers=headers
    )
    assert resp.status_code == 200
    assert Decimal(resp.json()["data"]["available"]) == Decimal("12")

    short = await client.post("/api/v1/stock/adjust", json={**params, "delta": "-20"}, headers=headers)
    assert short.status_code == 409
    assert short.json()["error"]["code"] == "insufficient_stock"

    history = await client.get("/api/v1/stock/history", params={"product_id": str(bolt.id)}, headers=headers)
    body = history.json()
    assert body["meta"]["total_count"] == 1
    assert body["data"][0]["event_type"] == "ADJUST"


async def test_zero_quantity_order_is_rejected_by_schema(client, headers, kit, workshop):
    resp = await client.post(
        "/api/v1/assembly-orders",
        json={"product_id": str(kit["P"].id), "quantity_planned": "0", "production_location_id": str(workshop.id)},
        headers=headers,
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["field_errors"][0]["field"].endswith("quantity_planned")
