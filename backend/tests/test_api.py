"""API contract tests for movements, products and statistics."""

from models.log import Log
from models.product import Product
from models.stock import StockMovement, StockSnapshot


def _move(client, headers, product_id, quantity, direction, **extra):
    payload = {"product_id": product_id, "quantity": quantity, "direction": direction, **extra}
    return client.post("/movements", json=payload, headers=headers)


class TestMovementEndpoints:
    """POST/GET /movements."""

    def test_record_exit(self, client, auth_headers, test_product):
        response = _move(client, auth_headers, test_product.id, 20, "exit")
        assert response.status_code == 201
        data = response.json()
        assert data["resulting_balance"] == 30
        assert data["direction"] == "exit"
        assert data["product_name"] == "Hammer"

    def test_legacy_payload_shape(self, client, auth_headers, test_product):
        response = client.post(
            "/movements",
            json={"productId": test_product.id, "quantity": 5, "type": "entrada", "referenceDocument": "PZ/7"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        assert response.json()["direction"] == "entry"
        assert response.json()["reference_document"] == "PZ/7"

    def test_insufficient_stock(self, client, auth_headers, test_product):
        _move(client, auth_headers, test_product.id, 20, "exit")
        response = _move(client, auth_headers, test_product.id, 40, "exit")
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["detail"] == "Insufficient stock. Available: 30"
        assert body["available"] == 30

    def test_invalid_payloads(self, client, auth_headers, test_product):
        for payload in (
            {"product_id": test_product.id, "quantity": 0, "direction": "exit"},
            {"product_id": test_product.id, "quantity": -2, "direction": "entry"},
            {"product_id": test_product.id, "quantity": 1, "direction": "sideways"},
            {"quantity": 1, "direction": "entry"},
        ):
            response = client.post("/movements", json=payload, headers=auth_headers)
            assert response.status_code == 400
            assert response.json()["code"] == "INVALID_INPUT"

    def test_quantity_beyond_integer_column(self, client, auth_headers, test_product, db_session):
        response = _move(client, auth_headers, test_product.id, 10**20, "entry")
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

        response = _move(client, auth_headers, test_product.id, 2**31, "entry")
        assert response.status_code == 400
        assert db_session.query(StockMovement).count() == 0

    def test_oversized_ids_are_invalid_input(self, client, auth_headers):
        assert _move(client, auth_headers, 10**20, 1, "entry").status_code == 400
        assert client.get(f"/movements/{10**20}", headers=auth_headers).status_code == 400
        assert client.get("/movements", params={"product_id": 10**20}, headers=auth_headers).status_code == 400

    def test_requires_authentication(self, client, test_product):
        response = _move(client, {}, test_product.id, 1, "entry")
        assert response.status_code == 401

    def test_rejects_invalid_token(self, client, test_product):
        response = _move(client, {"Authorization": "Bearer not-a-token"}, test_product.id, 1, "entry")
        assert response.status_code == 401

    def test_foreign_product_is_forbidden(self, client, other_headers, test_product, db_session):
        response = _move(client, other_headers, test_product.id, 1, "exit")
        assert response.status_code == 403
        assert db_session.query(StockMovement).count() == 0

    def test_unknown_product(self, client, auth_headers):
        response = _move(client, auth_headers, 9999, 1, "entry")
        assert response.status_code == 404

    def test_cannot_record_for_another_actor(self, client, auth_headers, test_product, other_user):
        response = _move(client, auth_headers, test_product.id, 1, "entry", actor_id=other_user.id)
        assert response.status_code == 403

    def test_admin_may_record_for_owner(self, client, admin_headers, test_product, test_user):
        response = _move(client, admin_headers, test_product.id, 1, "entry", actor_id=test_user.id)
        assert response.status_code == 201
        assert response.json()["user_id"] == test_user.id

    def test_audit_trail(self, client, auth_headers, test_product, db_session):
        _move(client, auth_headers, test_product.id, 5, "exit")
        _move(client, auth_headers, test_product.id, 500, "exit")
        statuses = [
            log.status for log in db_session.query(Log).filter(Log.action == "MOVEMENT_CREATE").order_by(Log.id)
        ]
        assert statuses == ["SUCCESS", "FAIL"]

    def test_list_and_get(self, client, auth_headers, other_headers, test_product):
        created = _move(client, auth_headers, test_product.id, 3, "exit").json()
        _move(client, auth_headers, test_product.id, 2, "entry")

        page = client.get("/movements", params={"direction": "exit"}, headers=auth_headers).json()
        assert page["total"] == 1
        assert page["items"][0]["id"] == created["id"]

        history = client.get(f"/movements/product/{test_product.id}", headers=auth_headers).json()
        assert history["total"] == 2

        assert client.get(f"/movements/{created['id']}", headers=auth_headers).status_code == 200
        assert client.get(f"/movements/{created['id']}", headers=other_headers).status_code == 403
        assert client.get("/movements", headers=other_headers).json()["total"] == 0
        assert client.get("/movements/777", headers=auth_headers).status_code == 404


class TestMovementMaintenanceEndpoints:

    def test_update_notes_only(self, client, auth_headers, test_product):
        created = _move(client, auth_headers, test_product.id, 3, "exit").json()

        response = client.put(f"/movements/{created['id']}", json={"notes": "Damaged box"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["notes"] == "Damaged box"

        response = client.put(f"/movements/{created['id']}", json={"quantity": 1}, headers=auth_headers)
        assert response.status_code == 400

    def test_verify(self, client, auth_headers, test_product, test_user):
        created = _move(client, auth_headers, test_product.id, 3, "exit").json()
        response = client.post(f"/movements/{created['id']}/verify", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["verified"] is True
        assert response.json()["verified_by"] == test_user.id

    def test_delete_records_reversal(self, client, auth_headers, test_product, db_session):
        created = _move(client, auth_headers, test_product.id, 20, "exit").json()

        response = client.delete(f"/movements/{created['id']}", headers=auth_headers)
        assert response.status_code == 200
        reversal = response.json()
        assert reversal["reverses_id"] == created["id"]
        assert reversal["direction"] == "entry"
        assert reversal["resulting_balance"] == 50
        assert db_session.query(StockMovement).count() == 2

        again = client.post(f"/movements/{created['id']}/reverse", headers=auth_headers)
        assert again.status_code == 400


class TestProductEndpoints:

    def test_create_product_with_snapshot(self, client, auth_headers, db_session):
        response = client.post("/products", json={"name": "Level", "price": 12.5, "stock": 8}, headers=auth_headers)
        assert response.status_code == 201
        product_id = response.json()["id"]

        product = db_session.query(Product).filter(Product.id == product_id).one()
        snapshot = db_session.query(StockSnapshot).filter(StockSnapshot.product_id == product_id).one()
        assert product.opening_stock == 8
        assert snapshot.current_stock == 8

        status = client.get(f"/products/{product_id}/stock", headers=auth_headers).json()
        assert status["in_sync"] is True

    def test_stock_cannot_be_patched(self, client, auth_headers, test_product):
        response = client.patch(f"/products/{test_product.id}", json={"stock": 1000}, headers=auth_headers)
        assert response.status_code == 400

        response = client.patch(f"/products/{test_product.id}", json={"price": 25.0}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["price"] == 25.0
        assert response.json()["stock"] == 50

    def test_required_fields_cannot_be_cleared(self, client, auth_headers, test_product):
        for field in ("price", "min_stock", "name"):
            response = client.patch(f"/products/{test_product.id}", json={field: None}, headers=auth_headers)
            assert response.status_code == 400
            assert response.json()["code"] == "INVALID_INPUT"

        product = client.get(f"/products/{test_product.id}", headers=auth_headers).json()
        assert product["price"] == 20.0
        assert product["min_stock"] == 10

    def test_optional_fields_can_be_cleared(self, client, auth_headers, test_product):
        response = client.patch(f"/products/{test_product.id}", json={"cost": None}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["cost"] is None

    def test_oversized_stock_on_create(self, client, auth_headers):
        response = client.post("/products", json={"name": "Crate", "price": 1.0, "stock": 10**20}, headers=auth_headers)
        assert response.status_code == 400

    def test_products_are_scoped_to_owner(self, client, auth_headers, other_headers, test_product):
        assert client.get("/products", headers=auth_headers).json()["total"] == 1
        assert client.get("/products", headers=other_headers).json()["total"] == 0
        assert client.get(f"/products/{test_product.id}", headers=other_headers).status_code == 403

    def test_product_with_movements_cannot_be_deleted(self, client, auth_headers, test_product):
        _move(client, auth_headers, test_product.id, 1, "exit")
        assert client.delete(f"/products/{test_product.id}", headers=auth_headers).status_code == 400

    def test_reconcile_endpoint(self, client, auth_headers, test_product, db_session):
        _move(client, auth_headers, test_product.id, 10, "exit")
        db_session.query(Product).filter(Product.id == test_product.id).update({"stock": 3})
        db_session.commit()

        status = client.get(f"/products/{test_product.id}/stock", headers=auth_headers).json()
        assert status["in_sync"] is False

        response = client.post(f"/products/{test_product.id}/reconcile", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"product_id": test_product.id, "previous_stock": 3, "stock": 40, "corrected": True}

    def test_reconcile_requires_stock_role(self, client, viewer_user, test_product):
        from conftest import headers_for

        response = client.post(f"/products/{test_product.id}/reconcile", headers=headers_for(viewer_user))
        assert response.status_code == 403


class TestStatsEndpoints:

    def test_inventory_statistics(self, client, auth_headers, db_session, test_user):
        from conftest import make_product

        product = make_product(db_session, test_user, stock=10, name="Glue", price=10.0, cost=3.0, min_stock=2)
        _move(client, auth_headers, product.id, 1, "exit", date="2026-03-30T10:00:00")

        response = client.get("/stats/inventory", params={"as_of": "2026-03-31T12:00:00"}, headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["window_days"] == 30
        assert data["general"]["total_products"] == 1
        assert data["current_period"]["exits_count"] == 1
        assert data["trends"]["exits_count"] == 100.0
        # (10 - 3) / 3 * 100, rounded on output
        assert data["roi"]["top_roi_products"][0]["roi"] == 233.33

        roi = client.get("/stats/inventory/roi", params={"as_of": "2026-03-31T12:00:00"}, headers=auth_headers)
        assert roi.status_code == 200
        assert roi.json()["roi"]["avg_roi"] == 233.33

    def test_requires_authentication(self, client):
        assert client.get("/stats/inventory").status_code == 401
