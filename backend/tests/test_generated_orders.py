from sqlalchemy import select

from backend.app.db.models.models_v1 import Product, StockMovement
from backend.services.replenishment import ReplenishmentRunner

from conftest import FIXED_NOW


def _generate(db_session) -> int:
    result = ReplenishmentRunner(db_session, clock=lambda: FIXED_NOW).run()
    (order_id,) = result.order_ids
    return order_id


def test_list_and_get_generated_orders(client, db_session, scenario):
    order_id = _generate(db_session)

    resp = client.get("/v1/generated-orders", params={"tenant_id": scenario["tenant"].id})
    assert resp.status_code == 200
    (order,) = resp.json()
    assert order["id"] == order_id
    assert order["status"] == "pending_review"
    assert order["generation_date"] == "2026-03-10"
    assert order["notes"] == "Auto-generated order - 2 product(s) below reorder threshold"
    assert [l["product_code"] for l in order["lines"]] == ["A", "B"]

    resp = client.get(f"/v1/generated-orders/{order_id}")
    assert resp.status_code == 200
    assert resp.json()["provider_id"] == scenario["provider"].id


def test_list_filters_by_status(client, db_session, scenario):
    _generate(db_session)

    resp = client.get("/v1/generated-orders", params={"status": "sent"})
    assert resp.status_code == 200
    assert resp.json() == []


def test_unknown_order_is_404(client):
    resp = client.get("/v1/generated-orders/999999")

    assert resp.status_code == 404
    assert resp.json()["error"] == "OrderNotFound"


def test_send_then_receive_updates_stock(client, db_session, scenario):
    """
    GIVEN
    - une commande générée pending_review (A x50, B x20)

    THEN
    - sent : sent_at renseigné
    - receive : completed, stock A 3 -> 53, B 1 -> 21, un mouvement RECEIPT par ligne
    """
    order_id = _generate(db_session)

    resp = client.post(f"/v1/generated-orders/{order_id}/status", json={"status": "sent"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "sent"
    assert resp.json()["sent_at"] is not None

    resp = client.post(f"/v1/generated-orders/{order_id}/receive")
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "completed"

    stocks = {
        p.code: p.stock
        for p in db_session.execute(
            select(Product).where(Product.tenant_id == scenario["tenant"].id)
        ).scalars()
    }
    assert stocks == {"A": 53, "B": 21, "C": 20}

    movements = db_session.execute(
        select(StockMovement).where(StockMovement.generated_order_id == order_id)
    ).scalars().all()
    assert sorted((m.quantity, m.stock_before, m.stock_after) for m in movements) == [(20, 1, 21), (50, 3, 53)]


def test_receiving_lifts_stock_above_thresholds(client, db_session, scenario):
    order_id = _generate(db_session)
    client.post(f"/v1/generated-orders/{order_id}/status", json={"status": "sent"})
    client.post(f"/v1/generated-orders/{order_id}/receive")

    result = ReplenishmentRunner(db_session, clock=lambda: FIXED_NOW).run()
    assert result.triggered == 0
    assert result.orders_created == 0


def test_completed_order_frees_products_for_same_day(client, db_session, scenario):
    """
    GIVEN
    - la commande du jour reçue (completed), A remonté à 53
    - A redescend sous son seuil le même jour (ajustement -50 -> 3)

    THEN
    - la commande terminée ne couvre plus A : nouvelle commande, aucun doublon
    """
    order_id = _generate(db_session)
    client.post(f"/v1/generated-orders/{order_id}/status", json={"status": "sent"})
    client.post(f"/v1/generated-orders/{order_id}/receive")

    resp = client.post(
        "/v1/stock-movements/adjustment",
        json={"product_id": scenario["a"].id, "delta": -50},
        headers={"Idempotency-Key": "adj-after-receipt"},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["stock_after"] == 3

    result = ReplenishmentRunner(db_session, clock=lambda: FIXED_NOW).run()

    assert result.triggered == 1
    assert result.orders_created == 1
    assert result.skipped_duplicate == 0
    (new_id,) = result.order_ids
    new_order = client.get(f"/v1/generated-orders/{new_id}").json()
    assert new_order["generation_date"] == "2026-03-10"
    assert [l["product_code"] for l in new_order["lines"]] == ["A"]


def test_cancel_pending_order(client, db_session, scenario):
    order_id = _generate(db_session)

    resp = client.post(f"/v1/generated-orders/{order_id}/status", json={"status": "cancelled"})

    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"


def test_invalid_transitions_are_rejected(client, db_session, scenario):
    order_id = _generate(db_session)
    client.post(f"/v1/generated-orders/{order_id}/status", json={"status": "cancelled"})

    resp = client.post(f"/v1/generated-orders/{order_id}/status", json={"status": "sent"})
    assert resp.status_code == 409
    assert resp.json()["error"] == "InvalidTransition"

    resp = client.post(f"/v1/generated-orders/{order_id}/receive")
    assert resp.status_code == 409


def test_receive_requires_sent_order(client, db_session, scenario):
    order_id = _generate(db_session)

    resp = client.post(f"/v1/generated-orders/{order_id}/receive")

    assert resp.status_code == 409
    assert db_session.get(Product, scenario["a"].id).stock == 3


def test_completed_status_only_through_receive(client, db_session, scenario):
    order_id = _generate(db_session)
    client.post(f"/v1/generated-orders/{order_id}/status", json={"status": "sent"})

    resp = client.post(f"/v1/generated-orders/{order_id}/status", json={"status": "completed"})

    assert resp.status_code == 400


def test_unknown_status_value_is_422(client, db_session, scenario):
    order_id = _generate(db_session)

    resp = client.post(f"/v1/generated-orders/{order_id}/status", json={"status": "shipped"})

    assert resp.status_code == 422
