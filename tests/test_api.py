"""HTTP surface tests through FastAPI's TestClient."""

from marketplace.payment.checkout import frontend_url

ADDRESS = "House 12, Road 5, Dhanmondi, Dhaka"


def _headers(user_id="cust-1", role="CUSTOMER"):
    return {
        "X-User-Id": user_id,
        "X-User-Role": role,
        "X-User-Name": "Rahim",
        "X-User-Email": "rahim@example.com",
    }


def _product(client, price, stock, vendor="vendor-1"):
    resp = client.post(
        "/products",
        json={"name": f"Item {price}", "price": price, "stock": stock},
        headers=_headers(vendor, "VENDOR"),
    )
    assert resp.status_code == 201
    return resp.json()["id"]


def _order(client, *lines, user_id="cust-1"):
    return client.post(
        "/orders",
        json={
            "products": [{"product_id": pid, "quantity": qty} for pid, qty in lines],
            "shipping_address": ADDRESS,
        },
        headers=_headers(user_id),
    )


def test_health(api_client):
    resp = api_client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_place_order_ignores_client_total(api_client):
    first = _product(api_client, "100.00", 5)
    second = _product(api_client, "50.00", 5)

    resp = api_client.post(
        "/orders",
        json={
            "products": [
                {"product_id": first, "quantity": 2},
                {"product_id": second, "quantity": 1},
            ],
            "shipping_address": ADDRESS,
            "total_amount": 1,
        },
        headers=_headers(),
    )

    assert resp.status_code == 201
    body = resp.json()
    assert float(body["amount"]) == 250.0
    assert body["transactionId"].startswith("TXN-")
    assert api_client.get(f"/products/{first}").json()["stock"] == 3


def test_place_order_requires_identity(api_client):
    resp = api_client.post("/orders", json={"products": [], "shipping_address": ADDRESS})

    assert resp.status_code == 401


def test_validation_errors_name_fields(api_client):
    resp = api_client.post(
        "/orders",
        json={"products": [{"product_id": "p", "quantity": 0}], "shipping_address": "short"},
        headers=_headers(),
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "ValidationError"
    assert set(body["details"]["fields"]) == {"products[0].quantity", "shipping_address"}


def test_malformed_body_uses_same_error_shape(api_client):
    resp = api_client.post(
        "/orders",
        json={"products": [{"product_id": "p", "quantity": "many"}]},
        headers=_headers(),
    )

    assert resp.status_code == 400
    fields = resp.json()["details"]["fields"]
    assert "products[0].quantity" in fields
    assert "shipping_address" in fields


def test_out_of_stock(api_client):
    product_id = _product(api_client, "10.00", 1)

    resp = _order(api_client, (product_id, 2))

    assert resp.status_code == 400
    assert resp.json()["error"] == "OutOfStock"
    assert resp.json()["message"] == f"OutOfStock: {product_id}"
    assert api_client.get(f"/products/{product_id}").json()["stock"] == 1


def test_checkout_and_success_callback(api_client, gateway):
    product_id = _product(api_client, "10.00", 2)
    placed = _order(api_client, (product_id, 1)).json()

    resp = api_client.post(
        "/orders/checkout-session", json={"orderId": placed["orderId"]}, headers=_headers()
    )
    assert resp.status_code == 200
    assert resp.json()["redirectUrl"].startswith("https://checkout.fake.local/pay/")

    tx = placed["transactionId"]
    resp = api_client.post(f"/payments/success/{tx}", data={"val_id": "v-1"}, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == frontend_url("success", tx)

    order = api_client.get(f"/orders/{placed['orderId']}", headers=_headers()).json()
    assert order["payment_status"] == "Success"
    assert order["order_status"] == "Processing"
    verification = [c for c in gateway.calls if c["method"] == "verify_callback"][0]
    assert verification["payload"] == {"val_id": "v-1"}


def test_gateway_rejection_returns_502(api_client, gateway):
    product_id = _product(api_client, "10.00", 2)
    placed = _order(api_client, (product_id, 2)).json()
    gateway.configure(should_succeed=False)

    resp = api_client.post(
        "/orders/checkout-session", json={"orderId": placed["orderId"]}, headers=_headers()
    )

    assert resp.status_code == 502
    assert resp.json()["error"] == "GatewayError"
    assert api_client.get(f"/products/{product_id}").json()["stock"] == 2


def test_fail_callback_twice_restores_once(api_client):
    product_id = _product(api_client, "10.00", 1)
    tx = _order(api_client, (product_id, 1)).json()["transactionId"]
    assert api_client.get(f"/products/{product_id}").json()["stock"] == 0

    for _ in range(2):
        resp = api_client.post(f"/payments/fail/{tx}", follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == frontend_url("fail", tx)

    assert api_client.get(f"/products/{product_id}").json()["stock"] == 1


def test_cancel_callback_for_unknown_transaction(api_client):
    resp = api_client.post("/payments/cancel/TXN-UNKNOWN", follow_redirects=False)

    assert resp.status_code == 303
    assert resp.headers["location"] == frontend_url("fail")


def test_customer_cancel_then_cancel_again(api_client):
    product_id = _product(api_client, "10.00", 1)
    order_id = _order(api_client, (product_id, 1)).json()["orderId"]

    first = api_client.post(f"/orders/{order_id}/cancel", headers=_headers())
    second = api_client.post(f"/orders/{order_id}/cancel", headers=_headers())

    assert first.status_code == 200
    assert second.status_code == 409
    assert api_client.get(f"/products/{product_id}").json()["stock"] == 1


def test_order_visibility(api_client):
    product_id = _product(api_client, "10.00", 3)
    order_id = _order(api_client, (product_id, 1)).json()["orderId"]

    assert api_client.get(f"/orders/{order_id}", headers=_headers("cust-2")).status_code == 403
    assert api_client.get(f"/orders/{order_id}", headers=_headers("admin", "ADMIN")).status_code == 200
    assert api_client.get("/orders/missing", headers=_headers()).status_code == 404

    events = api_client.get(f"/orders/{order_id}/events", headers=_headers()).json()
    assert [e["event_type"] for e in events] == ["OrderPlaced"]
    assert len(api_client.get("/orders", headers=_headers()).json()) == 1


def test_status_update_by_customer_is_forbidden(api_client):
    product_id = _product(api_client, "10.00", 3)
    placed = _order(api_client, (product_id, 1)).json()
    api_client.post(f"/payments/success/{placed['transactionId']}", follow_redirects=False)

    resp = api_client.patch(
        f"/orders/{placed['orderId']}/status", json={"status": "Shipped"}, headers=_headers()
    )
    assert resp.status_code == 403

    resp = api_client.patch(
        f"/orders/{placed['orderId']}/status",
        json={"status": "Shipped"},
        headers=_headers("rider-1", "DELIVERY"),
    )
    assert resp.status_code == 200
    assert resp.json()["order_status"] == "Shipped"


def test_public_tracking(api_client):
    product_id = _product(api_client, "10.00", 3)
    tx = _order(api_client, (product_id, 1)).json()["transactionId"]

    resp = api_client.get(f"/orders/track/{tx}")

    assert resp.status_code == 200
    assert resp.json()["payment_status"] == "Pending"
    assert "shipping_address" not in resp.json()
    assert api_client.get("/orders/track/TXN-UNKNOWN").status_code == 404


def test_vendor_maintains_own_products(api_client):
    product_id = _product(api_client, "10.00", 0)

    resp = api_client.post(
        f"/products/{product_id}/restock", json={"quantity": 4}, headers=_headers("vendor-1", "VENDOR")
    )
    assert resp.status_code == 200
    assert resp.json()["stock"] == 4

    resp = api_client.patch(
        f"/products/{product_id}/price", json={"price": "12.50"}, headers=_headers("vendor-2", "VENDOR")
    )
    assert resp.status_code == 403

    resp = api_client.post("/products", json={"name": "x", "price": 1}, headers=_headers())
    assert resp.status_code == 403

    assert api_client.get("/events", headers=_headers()).status_code == 403
    assert api_client.get("/events", headers=_headers("admin", "ADMIN")).status_code == 200


def test_vendor_deletes_product(api_client):
    product_id = _product(api_client, "10.00", 3)

    assert api_client.delete(f"/products/{product_id}", headers=_headers("vendor-2", "VENDOR")).status_code == 403
    resp = api_client.delete(f"/products/{product_id}", headers=_headers("vendor-1", "VENDOR"))

    assert resp.status_code == 200
    assert api_client.get(f"/products/{product_id}").status_code == 404


def test_vendor_order_view(api_client):
    product_id = _product(api_client, "10.00", 3)
    order_id = _order(api_client, (product_id, 2)).json()["orderId"]

    resp = api_client.get("/vendor/orders", headers=_headers("vendor-1", "VENDOR"))

    assert resp.status_code == 200
    assert [o["id"] for o in resp.json()] == [order_id]
    assert float(resp.json()[0]["vendor_total"]) == 20.0
    assert api_client.get("/vendor/orders", headers=_headers()).status_code == 403
    assert api_client.get("/vendor/orders", headers=_headers("admin", "ADMIN")).status_code == 400
    admin_view = api_client.get("/vendor/orders?vendor_id=vendor-1", headers=_headers("admin", "ADMIN"))
    assert len(admin_view.json()) == 1
