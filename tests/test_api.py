"""Request-level checks that are decided before any database work happens."""
from oilmart.core.security import create_access_token, create_refresh_token, decode_token


SALE = {
    "product_id": 1,
    "customer_name": "Ravi",
    "customer_phone": "9876543210",
    "quantity": 3,
    "payment_method": "cash",
}


def test_health(anonymous_client):
    response = anonymous_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_root(anonymous_client):
    assert anonymous_client.get("/").json() == {"message": "Oil Mart Retail API"}


def test_protected_routes_need_a_token(anonymous_client):
    assert anonymous_client.get("/api/sales/").status_code == 401
    assert anonymous_client.get("/api/orders/").status_code == 401
    assert anonymous_client.get("/api/auth/me").status_code == 401


def test_garbage_token_is_rejected(anonymous_client):
    response = anonymous_client.get("/api/sales/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_refresh_token_cannot_be_used_for_api_access(anonymous_client):
    token = create_refresh_token("1", "owner", email="owner@oilmart.test")
    response = anonymous_client.get("/api/dashboard/owner", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_role_comes_from_the_access_token(anonymous_client):
    token = create_access_token("2", "staff", email="staff@oilmart.test", name="Meena")
    response = anonymous_client.get("/api/dashboard/owner", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_customer_cannot_record_a_sale(client_as, customer):
    response = client_as(customer).post("/api/sales/", json=SALE)
    assert response.status_code == 403


def test_fractional_sale_quantity_is_rejected(client_as, staff):
    response = client_as(staff).post("/api/sales/", json={**SALE, "quantity": 2.5})
    assert response.status_code == 422


def test_bill_without_items_is_rejected(client_as, staff):
    response = client_as(staff).post(
        "/api/bills/", json={"customer_name": "Ravi", "payment_method": "cash", "items": []}
    )
    assert response.status_code == 422


def test_staff_cannot_void_a_bill(client_as, staff):
    response = client_as(staff).post("/api/bills/5/void", json={"reason": "Wrong customer"})
    assert response.status_code == 403


def test_customer_cannot_see_the_owner_dashboard(client_as, customer):
    assert client_as(customer).get("/api/dashboard/owner").status_code == 403


def test_staff_cannot_see_analytics(client_as, staff):
    assert client_as(staff).get("/api/dashboard/analytics", params={"date_range": "week"}).status_code == 403


def test_staff_cannot_approve_credit_requests(client_as, staff):
    assert client_as(staff).post("/api/credit-requests/1/approve").status_code == 403


def test_blank_rejection_reason_is_refused(client_as, owner):
    response = client_as(owner).post("/api/credit-requests/1/reject", json={"rejection_reason": "   "})
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["type"] == "ValidationFailed"
    assert error["extra"] == {"field": "rejection_reason"}


def test_staff_cannot_approve_transfers(client_as, staff):
    response = client_as(staff).patch("/api/stock/transfers/1", json={"status": "approved"})
    assert response.status_code == 403
    assert response.json()["error"]["type"] == "PermissionDeniedError"


def test_staff_cannot_reject_transfers(client_as, staff):
    response = client_as(staff).patch("/api/stock/transfers/1", json={"status": "rejected"})
    assert response.status_code == 403


def test_only_customers_place_orders(client_as, staff):
    response = client_as(staff).post(
        "/api/orders/", json={"items": [{"product_id": 1, "quantity": 1}], "payment_method": "cash"}
    )
    assert response.status_code == 403


def test_market_credits_are_owner_only(client_as, staff):
    assert client_as(staff).get("/api/market-credits/").status_code == 403


def test_pending_payments_are_closed_to_customers(client_as, customer):
    assert client_as(customer).get("/api/pending-payments/").status_code == 403


def test_admin_is_owner_only(client_as, staff):
    assert client_as(staff).get("/api/admin/users").status_code == 403


def test_unknown_date_range_is_rejected(client_as, owner):
    response = client_as(owner).get("/api/dashboard/analytics", params={"date_range": "decade"})
    assert response.status_code == 422


def test_tokens_minted_without_an_id_still_decode():
    access = decode_token(create_access_token("1", "owner"))
    refresh = decode_token(create_refresh_token("1", "owner"))
    assert access.jti and refresh.jti
    assert access.jti != refresh.jti
    assert refresh.type == "refresh"
