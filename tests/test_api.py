from conftest import ADMIN, BUYER, OTHER, SELLER


def test_health(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    assert resp.json()["service"] == "settlement-service"
    assert client.get('/health/live').json() == {"status": "alive"}


def test_requires_bearer_token(client):
    resp = client.get('/orders/mine')
    assert resp.status_code == 401


def test_purchase_scenario(client, auth_header, make_listing, signed_event):
    listing = make_listing(price="10.00", quantity=5)

    resp = client.post('/orders/', json={"product_id": listing.id, "quantity": 2}, headers=auth_header(BUYER))
    assert resp.status_code == 201
    body = resp.json()
    order = body["order"]
    assert order["total_amount"] == 20.0
    assert order["platform_fee"] == 2.0
    assert order["gateway_fee"] == 0.53
    assert order["seller_payout"] == 17.47
    assert order["status"] == "PENDING"
    assert order["pickup_address"] is None
    assert body["checkout_url"].startswith("https://pay.test/")

    payload, signature = signed_event("checkout.session.completed", {
        "id": body["session_id"], "payment_intent": "pi_1", "metadata": {"order_id": str(order["id"])},
    })
    resp = client.post('/webhooks/payments', content=payload, headers={"Payment-Signature": signature})
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "APPLIED"

    buyer_view = client.get(f'/orders/{order["id"]}', headers=auth_header(BUYER)).json()
    assert buyer_view["status"] == "PAID"
    assert buyer_view["pickup_address"] == "Carrer de Mallorca 12, Barcelona"

    code = client.get(f'/orders/{order["id"]}/pickup-pass', headers=auth_header(BUYER)).json()["pickup_code"]
    resp = client.post('/orders/pickup/confirm', json={"code": code}, headers=auth_header(SELLER))
    assert resp.status_code == 200
    assert resp.json()["status"] == "DELIVERED"
    assert resp.json()["pickup_code"] is None

    resp = client.patch(f'/orders/{order["id"]}/status', json={"status": "COMPLETED"}, headers=auth_header(SELLER))
    assert resp.status_code == 200

    balance = client.get('/impact/balance', headers=auth_header(BUYER)).json()
    assert balance["eco_credits"] == 200
    assert balance["total_co2_saved"] == 4.0


def test_errors_render_with_code_and_context(client, auth_header, make_listing):
    listing = make_listing(quantity=1)
    resp = client.post('/orders/', json={"product_id": listing.id, "quantity": 3}, headers=auth_header(BUYER))
    assert resp.status_code == 409
    assert resp.json() == {
        "error": "insufficient_stock",
        "detail": "Only 1 item(s) available",
        "requested": 3,
        "available": 1,
    }

    resp = client.post('/orders/', json={"product_id": listing.id}, headers=auth_header(SELLER))
    assert resp.status_code == 422
    assert resp.json()["error"] == "self_purchase"

    resp = client.post('/orders/', json={"product_id": 9999}, headers=auth_header(BUYER))
    assert resp.status_code == 404


def test_shipped_order_needs_address(client, auth_header, make_listing):
    listing = make_listing()
    resp = client.post('/orders/', json={"product_id": listing.id, "delivery_type": "SELLER_SHIPS"},
                       headers=auth_header(BUYER))
    assert resp.status_code == 422
    assert resp.json()["error"] == "missing_shipping_info"


def test_strangers_cannot_read_orders(client, auth_header, place_order):
    order_id = place_order()
    assert client.get(f'/orders/{order_id}', headers=auth_header(OTHER)).status_code == 403
    assert client.get(f'/orders/{order_id}', headers=auth_header(ADMIN)).status_code == 200


def test_order_lists_for_buyer_and_seller(client, auth_header, place_order):
    place_order()
    place_order()
    mine = client.get('/orders/mine', headers=auth_header(BUYER)).json()
    assert mine["total"] == 2
    assert mine["total_pages"] == 1
    selling = client.get('/orders/selling?status=PAID', headers=auth_header(SELLER)).json()
    assert selling["total"] == 0


def test_strikes_suspend_ordering(client, auth_header, make_listing):
    for _ in range(3):
        resp = client.post('/admin/strikes', json={"user_id": BUYER.user_id, "strike_type": "BUYER_NO_SHOW"},
                           headers=auth_header(ADMIN))
        assert resp.status_code == 201
    assert client.post('/admin/strikes', json={"user_id": 5, "strike_type": "ABUSE"},
                       headers=auth_header(SELLER)).status_code == 403

    listing = make_listing()
    resp = client.post('/orders/', json={"product_id": listing.id}, headers=auth_header(BUYER))
    assert resp.status_code == 403
    assert resp.json()["error"] == "ordering_suspended"


def test_redeem_needs_balance(client, auth_header):
    rewards = client.get('/impact/rewards').json()
    assert {"reward": "TREE", "cost": 300, "description": "Tree planting pledge"} in rewards

    resp = client.post('/impact/redeem', json={"reward": "TREE"}, headers=auth_header(BUYER))
    assert resp.status_code == 409
    assert resp.json()["error"] == "insufficient_balance"

    client.post(f'/admin/users/{BUYER.user_id}/credits', json={"delta": 500, "reason": "Welcome bonus"},
                headers=auth_header(ADMIN))
    resp = client.post('/impact/redeem', json={"reward": "TREE"}, headers=auth_header(BUYER))
    assert resp.status_code == 201
    assert resp.json()["balance"] == 200

    check = client.get(f'/admin/users/{BUYER.user_id}/ledger-check', headers=auth_header(ADMIN)).json()
    assert check["consistent"] is True


def test_leaderboard_and_rank(client, auth_header):
    assert client.get('/impact/leaderboard/me', headers=auth_header(BUYER)).status_code == 404
    board = client.get('/impact/leaderboard?period=ALLTIME').json()
    assert board["entries"] == []


def test_bad_webhook_signature_is_400(client):
    resp = client.post('/webhooks/payments', content=b'{"id": "evt_x"}', headers={"Payment-Signature": "t=1,v1=00"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_signature"


def test_reviews_after_delivery(client, auth_header, service, place_order, pay):
    order_id = place_order()
    resp = client.post(f'/orders/{order_id}/reviews', json={"rating": 5}, headers=auth_header(BUYER))
    assert resp.status_code == 422

    pay(order_id)
    service.confirm_pickup(SELLER, service.store.get(order_id).pickup_code)

    resp = client.post(f'/orders/{order_id}/reviews', json={"rating": 4, "comment": "Great table", "is_anonymous": True},
                       headers=auth_header(BUYER))
    assert resp.status_code == 201
    assert resp.json()["reviewer_id"] is None
    assert resp.json()["reviewed_id"] == SELLER.user_id

    resp = client.post(f'/orders/{order_id}/reviews', json={"rating": 2}, headers=auth_header(BUYER))
    assert resp.status_code == 409
    assert resp.json()["error"] == "duplicate_review"
