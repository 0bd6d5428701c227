"""HTTP surface: auth, envelopes and the main order/payment/result flows."""

import json
from decimal import Decimal
from urllib.parse import quote

from tests.conftest import PASSWORD


def _order_body(service_ids, coupon_code=None):
    body = {
        "order_type": "company",
        "services": [{"service_id": sid, "title": f"Service {sid}", "quantity": 1, "price": "500"} for sid in service_ids],
        "subtotal_price": "1000",
        "promotion_discount": "100",
        "total_price": "900",
        "candidates": [{"first_name": "Jane", "last_name": "Doe", "services": service_ids}],
    }
    if coupon_code:
        body["coupon_code"] = coupon_code
    return body


async def test_health(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_login_and_me(client, users):
    response = await client.post("/api/auth/login", json={"username": "alice", "password": PASSWORD})
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["username"] == "alice"


async def test_bad_login_uses_error_envelope(client, users):
    response = await client.post("/api/auth/login", json={"username": "alice", "password": "wrong"})

    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["code"] == "UNAUTHORIZED"


async def test_logout_invalidates_token(client, users, auth_headers):
    headers = auth_headers(users.alice)

    assert (await client.post("/api/auth/logout", headers=headers)).status_code == 200
    assert (await client.get("/api/auth/me", headers=headers)).status_code == 401


async def test_missing_token(client):
    response = await client.get("/api/orders/my")

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


async def test_admin_only_route(client, users, auth_headers):
    response = await client.get("/api/orders", headers=auth_headers(users.alice))

    assert response.status_code == 403
    assert response.json() == {"success": False, "code": "FORBIDDEN", "message": "Permission denied"}


async def test_request_validation_envelope(client, users, auth_headers):
    response = await client.post("/api/orders", json={"order_type": "company"}, headers=auth_headers(users.alice))

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


async def test_order_flow(client, users, services, auth_headers):
    alice = auth_headers(users.alice)
    admin = auth_headers(users.admin)

    created = await client.post("/api/orders", json=_order_body([services.criminal.id]), headers=alice)
    assert created.status_code == 201
    order = created.json()["data"]
    assert order["order_status"] == "awaiting_payment"
    assert order["tracking_number"].startswith("SCT")
    candidate_id = order["candidates"][0]["id"]

    tracked = await client.get(f"/api/orders/tracking/{order['tracking_number']}", headers=alice)
    assert tracked.json()["data"]["id"] == order["id"]

    other = await client.get(f"/api/orders/{order['id']}", headers=auth_headers(users.bob))
    assert other.status_code == 403

    paid = await client.post(
        "/api/payments",
        data={
            "order_id": str(order["id"]),
            "payment_method": "bank_transfer",
            "transfer_info": json.dumps({"name": "Alice", "reference": "TX-9"}),
        },
        files={"receipt": ("slip.png", b"png-bytes", "image/png")},
        headers=alice,
    )
    assert paid.status_code == 201
    payment = paid.json()["data"]
    assert payment["transfer_info"]["reference"] == "TX-9"
    assert payment["transfer_info"]["receipt_path"].startswith(f"receipts/{order['id']}/")

    verified = await client.patch(f"/api/payments/{payment['id']}/status", json={"status": "completed"}, headers=admin)
    assert verified.status_code == 200

    status = await client.get(f"/api/orders/{order['id']}/payment-status", headers=alice)
    assert status.json()["data"]["order_status"] == "payment_verified"

    processing = await client.post(f"/api/orders/{order['id']}/start-processing", headers=admin)
    assert processing.json()["data"]["order_status"] == "processing"

    uploaded = await client.post(
        f"/api/candidates/{candidate_id}/services/{services.criminal.id}/result",
        data={"result_status": "pass"},
        files={"file": ("report.pdf", b"%PDF-1.4", "application/pdf")},
        headers=admin,
    )
    assert uploaded.status_code == 200
    summary = await client.post(
        f"/api/candidates/{candidate_id}/summary",
        data={"result_status": "pass"},
        files={"file": ("summary.pdf", b"%PDF-1.4 summary", "application/pdf")},
        headers=admin,
    )
    assert summary.status_code == 200

    results = await client.get(f"/api/candidates/{candidate_id}/results", headers=alice)
    assert results.json()["data"]["completion_percentage"] == 100

    completed = await client.get(f"/api/orders/{order['id']}", headers=alice)
    assert completed.json()["data"]["order_status"] == "completed"

    download = await client.get(f"/api/candidates/{candidate_id}/summary/download", headers=alice)
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 summary"

    review = await client.post("/api/reviews", json={"order_id": order["id"], "rating": 5}, headers=alice)
    assert review.status_code == 201
    assert (await client.get("/api/orders/reviewable", headers=alice)).json()["data"] == []


async def test_invalid_transfer_info(client, users, services, auth_headers):
    alice = auth_headers(users.alice)
    order = (await client.post("/api/orders", json=_order_body([services.criminal.id]), headers=alice)).json()["data"]

    response = await client.post(
        "/api/payments",
        data={"order_id": str(order["id"]), "payment_method": "bank_transfer", "transfer_info": "{not json"},
        headers=alice,
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


async def test_coupon_flow(client, users, services, auth_headers):
    admin = auth_headers(users.admin)
    alice = auth_headers(users.alice)

    created = await client.post(
        "/api/coupons/public",
        json={"code": "save10", "discount_percent": 10, "expiry_date": "2099-01-01T00:00:00Z", "remaining_claims": 5},
        headers=admin,
    )
    assert created.status_code == 201
    coupon_id = created.json()["data"]["id"]

    not_claimed = await client.post(
        "/api/coupons/check", json={"code": "SAVE10", "subtotal": "1000", "promotion_discount": "100"}, headers=alice
    )
    assert not_claimed.status_code == 400
    assert not_claimed.json()["code"] == "INVALID_STATE"

    claimed = await client.post(f"/api/coupons/{coupon_id}/claim", headers=alice)
    assert claimed.status_code == 201

    quote = await client.post(
        "/api/coupons/check", json={"code": "SAVE10", "subtotal": "1000", "promotion_discount": "100"}, headers=alice
    )
    assert quote.status_code == 200
    assert Decimal(quote.json()["data"]["discount_amount"]) == Decimal("90")

    order = await client.post("/api/orders", json=_order_body([services.criminal.id], "SAVE10"), headers=alice)
    assert order.status_code == 201
    assert Decimal(order.json()["data"]["coupon_discount"]) == Decimal("90")

    deleted = await client.delete(f"/api/orders/{order.json()['data']['id']}", headers=alice)
    assert deleted.status_code == 200
    assert deleted.json()["coupon_released"] is True

    released = await client.get("/api/coupons/released", headers=admin)
    assert [c["original_coupon_id"] for c in released.json()["data"]] == [coupon_id]


async def test_audit_trail_by_entity(client, users, services, auth_headers):
    alice = auth_headers(users.alice)
    admin = auth_headers(users.admin)
    order = (await client.post("/api/orders", json=_order_body([services.criminal.id]), headers=alice)).json()["data"]
    await client.patch(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin)

    response = await client.get(
        "/api/activities", params={"entity_type": "order", "entity_id": order["id"], "order": "asc"}, headers=admin
    )

    body = response.json()
    assert response.status_code == 200
    assert body["total"] == 2
    assert [a["username"] for a in body["data"]] == ["alice", "admin"]
    assert body["data"][1]["message"].endswith("to cancelled")


async def test_download_with_non_ascii_candidate_name(client, users, services, auth_headers):
    alice = auth_headers(users.alice)
    body = _order_body([services.criminal.id])
    body["candidates"] = [{"first_name": "สมชาย", "last_name": "ใจดี", "services": [services.criminal.id]}]
    order = (await client.post("/api/orders", json=body, headers=alice)).json()["data"]
    candidate_id = order["candidates"][0]["id"]

    uploaded = await client.post(
        f"/api/candidates/{candidate_id}/summary",
        data={"result_status": "pass"},
        files={"file": ("summary.pdf", b"%PDF-1.4 thai", "application/pdf")},
        headers=auth_headers(users.admin),
    )
    assert uploaded.status_code == 200

    download = await client.get(f"/api/candidates/{candidate_id}/summary/download", headers=alice)

    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 thai"
    disposition = download.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="summary_')
    assert f"filename*=UTF-8''{quote('สมชาย')}" in disposition


async def test_coupon_maintenance_routes(client, users, auth_headers):
    admin = auth_headers(users.admin)

    created = await client.post(
        "/api/coupons/easy-code",
        json={"prefix": "fest", "discount_percent": 20, "expiry_date": "2099-01-01T00:00:00Z"},
        headers=admin,
    )
    assert created.status_code == 201
    coupon = created.json()["data"]
    assert coupon["code"].startswith("FEST-")
    assert coupon["is_public"] is True

    other = await client.post(
        "/api/coupons/public",
        json={"code": "other", "discount_percent": 5, "expiry_date": "2099-01-01T00:00:00Z"},
        headers=admin,
    )
    conflict = await client.put(f"/api/coupons/{coupon['id']}", json={"code": "OTHER"}, headers=admin)
    assert other.status_code == 201
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "CONFLICT"

    updated = await client.put(
        f"/api/coupons/{coupon['id']}", json={"code": " summer ", "is_active": False}, headers=admin
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["code"] == "SUMMER"
    assert updated.json()["data"]["is_active"] is False

    forbidden = await client.delete(f"/api/coupons/{coupon['id']}", headers=auth_headers(users.alice))
    assert forbidden.status_code == 403

    deleted = await client.delete(f"/api/coupons/{coupon['id']}", headers=admin)
    assert deleted.status_code == 200
    assert deleted.json()["data"] == coupon["id"]

    missing = await client.get(f"/api/coupons/{coupon['id']}", headers=admin)
    assert missing.status_code == 404
