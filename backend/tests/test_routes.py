"""
HTTP API tests.

Verifies:
- Every ledger route requires a bearer token
- Role gates answer 403, ledger errors answer their kind and status
- A sale can be driven end to end over HTTP
"""

from conftest import auth_headers


class TestAuth:

    def test_health_is_public(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"

    def test_missing_token_401(self, client, db_session):
        response = client.get("/api/documents/?doc_type=sale")
        assert response.status_code == 401

    def test_unknown_token_401(self, client, store):
        response = client.get("/api/documents/?doc_type=sale", headers=auth_headers("not-a-token"))
        assert response.status_code == 401

    def test_rotated_token_stops_working(self, client, owner_with_token):
        from shopledger.services import auth_service
        user, token = owner_with_token
        new_token = auth_service.rotate_token(user.id)

        assert client.get("/api/expenses/", headers=auth_headers(token)).status_code == 401
        assert client.get("/api/expenses/", headers=auth_headers(new_token)).status_code == 200


class TestSaleFlow:

    def test_sale_end_to_end(self, client, owner_headers, seller_headers, customer, accessory):
        response = client.post(
            "/api/documents/", json={"doc_type": "sale", "customer_id": customer.id}, headers=seller_headers,
        )
        assert response.status_code == 201
        document = response.get_json()["document"]
        assert document["status"] == "draft"
        doc_id = document["id"]

        response = client.post(
            f"/api/documents/{doc_id}/items",
            json={"item_type": "accessory", "product_id": accessory.id, "qty": 4, "unit_price_cents": 1000},
            headers=seller_headers,
        )
        assert response.status_code == 201
        assert response.get_json()["document"]["total_cents"] == 4000

        response = client.post(f"/api/documents/{doc_id}/post", json={}, headers=seller_headers)
        assert response.status_code == 200
        assert response.get_json()["document"]["status"] == "posted"

        response = client.post(f"/api/documents/{doc_id}/payments", json={"amount_cents": 2500}, headers=seller_headers)
        assert response.status_code == 201
        assert response.get_json()["document"]["remaining_cents"] == 1500

        response = client.get(f"/api/products/accessories/{accessory.id}", headers=seller_headers)
        body = response.get_json()["accessory"]
        assert body["quantity"] == 6
        assert body["is_low_stock"] is False

        response = client.get(f"/api/customers/{customer.id}/balance", headers=owner_headers)
        assert response.get_json()["outstanding_cents"] == 1500

        response = client.get("/api/ledger/events?event_type=sale.posted", headers=owner_headers)
        assert [e["entity_id"] for e in response.get_json()["events"]] == [doc_id]

    def test_seller_cannot_cancel(self, client, seller_headers, store, seller, accessory):
        from shopledger.services import document_service
        sale = document_service.create_document(store.id, "sale", user_id=seller.id)
        document_service.add_item(store.id, sale.id, item_type="accessory", product_id=accessory.id, qty=1)
        document_service.post_document(store.id, sale.id, user_id=seller.id)

        response = client.post(f"/api/documents/{sale.id}/cancel", json={"reason": "Oops"}, headers=seller_headers)
        assert response.status_code == 403
        assert response.get_json()["kind"] == "Unauthorized"

    def test_insufficient_stock_maps_to_409(self, client, seller_headers, accessory):
        doc_id = client.post("/api/documents/", json={"doc_type": "sale"}, headers=seller_headers).get_json()["document"]["id"]
        response = client.post(
            f"/api/documents/{doc_id}/items",
            json={"item_type": "accessory", "product_id": accessory.id, "qty": 11},
            headers=seller_headers,
        )
        assert response.status_code == 409
        body = response.get_json()
        assert body["kind"] == "InsufficientStock"
        assert body["details"]["on_hand"] == 10

    def test_validation_maps_to_400(self, client, seller_headers):
        response = client.post("/api/documents/", json={"doc_type": "invoice"}, headers=seller_headers)
        assert response.status_code == 400
        assert response.get_json()["kind"] == "Validation"

    def test_non_object_body_maps_to_400(self, client, seller_headers):
        doc_id = client.post("/api/documents/", json={"doc_type": "sale"}, headers=seller_headers).get_json()["document"]["id"]

        response = client.patch(f"/api/documents/{doc_id}", json=["notes", "x"], headers=seller_headers)
        assert response.status_code == 400
        assert response.get_json()["kind"] == "Validation"

        response = client.post("/api/documents/", json=[{"doc_type": "sale"}], headers=seller_headers)
        assert response.status_code == 400

    def test_other_store_document_not_found(self, client, seller_headers, other_store):
        from shopledger.services import auth_service, document_service
        stranger, _ = auth_service.create_user(other_store.id, "stranger", role="owner")
        foreign = document_service.create_document(other_store.id, "sale", user_id=stranger.id)

        response = client.get(f"/api/documents/{foreign.id}", headers=seller_headers)
        assert response.status_code == 404
        assert response.get_json()["kind"] == "NotFound"


class TestProductRoutes:

    def test_seller_cannot_create_phone(self, client, seller_headers):
        response = client.post(
            "/api/products/phones",
            json={"imei": "490154203237518", "name": "iPhone 15", "sell_price_cents": 90000},
            headers=seller_headers,
        )
        assert response.status_code == 403

    def test_owner_creates_phone_and_duplicate_conflicts(self, client, owner_headers):
        payload = {"imei": "490154203237518", "name": "iPhone 15", "buy_price_cents": 70000, "sell_price_cents": 90000}
        response = client.post("/api/products/phones", json=payload, headers=owner_headers)
        assert response.status_code == 201
        assert response.get_json()["phone"]["status"] == "available"

        response = client.post("/api/products/phones", json=payload, headers=owner_headers)
        assert response.status_code == 409
        assert response.get_json()["kind"] == "DuplicateCode"

    def test_low_stock_listing(self, client, owner_headers, accessory):
        client.post(
            f"/api/products/accessories/{accessory.id}/adjust",
            json={"delta": -7, "reason": "Recount"},
            headers=owner_headers,
        )
        response = client.get("/api/products/low-stock", headers=owner_headers)
        assert [a["sku"] for a in response.get_json()["accessories"]] == ["CASE-01"]


class TestCashRoutes:

    def test_session_open_twice_conflicts(self, client, owner_headers):
        response = client.post("/api/cash/sessions/open", json={"opening_balance_cents": 5000}, headers=owner_headers)
        assert response.status_code == 201

        response = client.post("/api/cash/sessions/open", json={"opening_balance_cents": 5000}, headers=owner_headers)
        assert response.status_code == 409
        assert response.get_json()["kind"] == "SessionAlreadyOpen"

    def test_close_reports_difference(self, client, owner_headers):
        client.post("/api/cash/sessions/open", json={"opening_balance_cents": 5000}, headers=owner_headers)
        response = client.post("/api/cash/sessions/close", json={"actual_cash_cents": 4800}, headers=owner_headers)
        assert response.status_code == 200
        session = response.get_json()["session"]
        assert session["expected_balance_cents"] == 5000
        assert session["difference_cents"] == -200

    def test_current_session_empty(self, client, owner_headers):
        response = client.get("/api/cash/sessions/current", headers=owner_headers)
        assert response.get_json() == {"session": None}


class TestLedgerAndExpenseRoutes:

    def test_events_since_filter(self, client, owner_headers):
        client.post("/api/cash/sessions/open", json={"opening_balance_cents": 0}, headers=owner_headers)

        response = client.get("/api/ledger/events?since=2000-01-01T00:00:00Z", headers=owner_headers)
        assert response.status_code == 200
        assert [e["event_type"] for e in response.get_json()["events"]] == ["cash.session_opened"]

        response = client.get("/api/ledger/events?since=2999-01-01T00:00:00Z", headers=owner_headers)
        assert response.get_json()["events"] == []

    def test_events_bad_since_400(self, client, owner_headers):
        response = client.get("/api/ledger/events?since=yesterday", headers=owner_headers)
        assert response.status_code == 400
        assert response.get_json()["kind"] == "Validation"

    def test_expense_pay_and_fetch(self, client, owner_headers):
        response = client.post(
            "/api/expenses/", json={"category": "Rent", "amount_cents": 50000}, headers=owner_headers,
        )
        assert response.status_code == 201
        expense_id = response.get_json()["expense"]["id"]

        assert client.post(f"/api/expenses/{expense_id}/pay", headers=owner_headers).status_code == 200
        response = client.get(f"/api/expenses/{expense_id}", headers=owner_headers)
        assert response.get_json()["expense"]["status"] == "paid"

        assert client.get("/api/expenses/9999", headers=owner_headers).status_code == 404
