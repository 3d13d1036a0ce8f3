from uuid import uuid4

from fastapi.testclient import TestClient

from groomquote.main import app

client = TestClient(app)


def _uid(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:8]}"


def _register(role: str, latitude=None, longitude=None, business_name=None) -> dict:
    user_id = _uid(role.lower())
    response = client.post(
        "/auth/register",
        json={
            "user_id": user_id,
            "name": user_id,
            "role": role,
            "password": "groomquote-demo",
            "latitude": latitude,
            "longitude": longitude,
            "business_name": business_name,
        },
    )
    assert response.status_code == 201
    token = response.json()["access_token"]
    return {"user_id": user_id, "headers": {"Authorization": f"Bearer {token}"}}


def _create_request(customer: dict) -> dict:
    response = client.post(
        "/quotes",
        json={
            "pet_type": "DOG",
            "pet_breed": "Maltese",
            "service_type": "BASIC",
            "latitude": 37.5,
            "longitude": 127.0,
            "address": "Gangnam-gu",
            "items": [{"name": "Face trim", "price": 3000, "type": "ADDITIONAL"}],
        },
        headers=customer["headers"],
    )
    assert response.status_code == 201
    return response.json()


def test_health_and_ready():
    assert client.get("/health").json()["status"] == "ok"
    ready = client.get("/ready").json()
    assert ready["status"] == "ready"
    assert ready["push_enabled"] is False


def test_auth_register_login_and_me():
    business = _register("BUSINESS", 37.5, 127.0, business_name="Clip Shop")
    login = client.post("/auth/login", json={"user_id": business["user_id"], "password": "groomquote-demo"})
    assert login.status_code == 200
    assert login.json()["role"] == "BUSINESS"

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {login.json()['access_token']}"})
    assert me.status_code == 200
    assert me.json() == {"user_id": business["user_id"], "role": "BUSINESS"}

    duplicate = client.post("/auth/register", json={"user_id": business["user_id"], "name": "again"})
    assert duplicate.status_code == 409
    bad_password = client.post("/auth/login", json={"user_id": business["user_id"], "password": "nope"})
    assert bad_password.status_code == 401


def test_missing_or_forged_identity_is_rejected():
    assert client.get("/quotes/mine").status_code == 401
    assert client.get("/quotes/mine", headers={"Authorization": "Bearer forged.token"}).status_code == 401
    assert client.get("/quotes/mine", headers={"X-User-Id": "nobody_here"}).status_code == 401


def test_dev_user_header_when_auth_not_required():
    customer = _register("CUSTOMER", 37.5, 127.0)
    response = client.get("/quotes/mine", headers={"X-User-Id": customer["user_id"]})
    assert response.status_code == 200
    assert response.json() == []


def test_golden_path_from_request_to_review():
    customer = _register("CUSTOMER", 37.5, 127.0)
    business_a = _register("BUSINESS", 37.501, 127.001, business_name="Fluffy Salon")
    business_b = _register("BUSINESS", 37.502, 127.002, business_name="Paw Spa")

    quote_request = _create_request(customer)
    assert quote_request["status"] == "PENDING"
    assert quote_request["items"][0]["id"]

    available = client.get("/quotes/available", headers=business_a["headers"])
    assert available.status_code == 200
    assert quote_request["id"] in [row["id"] for row in available.json()]

    offer_a = client.post(
        f"/quotes/{quote_request['id']}/offers",
        json={"price": 45000, "description": "Full groom", "estimated_time": "2h"},
        headers=business_a["headers"],
    )
    assert offer_a.status_code == 201
    offer_b = client.post(
        f"/quotes/{quote_request['id']}/offers",
        json={"price": 38000},
        headers=business_b["headers"],
    )
    assert offer_b.status_code == 201
    repeat = client.post(
        f"/quotes/{quote_request['id']}/offers",
        json={"price": 30000},
        headers=business_a["headers"],
    )
    assert repeat.status_code == 409

    details = client.get(f"/quotes/{quote_request['id']}", headers=customer["headers"]).json()
    assert details["request"]["status"] == "OFFERED"
    assert len(details["offers"]) == 2

    offer_id = offer_a.json()["id"]
    accepted = client.post(f"/quotes/{quote_request['id']}/offers/{offer_id}/accept", headers=customer["headers"])
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "ACCEPTED"
    assert client.get(f"/offers/{offer_b.json()['id']}", headers=customer["headers"]).json()["status"] == "REJECTED"

    early_review = client.post(
        "/reviews",
        json={"offer_id": offer_id, "rating": 5, "content": "early"},
        headers=customer["headers"],
    )
    assert early_review.status_code == 409

    prepared = client.post(
        "/payments/prepare",
        json={"offer_id": offer_id, "method": "CARD"},
        headers=customer["headers"],
    )
    assert prepared.status_code == 201
    preparation = prepared.json()
    assert preparation["amount"] == 45000

    mismatch = client.post("/payments/confirm", json={"order_id": preparation["order_id"], "amount": 100})
    assert mismatch.status_code == 400
    assert mismatch.json()["detail"]["expected"] == 45000

    callback = {
        "order_id": preparation["order_id"],
        "amount": 45000,
        "payment_key": preparation["gateway_handle"]["payment_key"],
    }
    confirmed = client.post("/payments/confirm", json=callback)
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "DONE"
    replay = client.post("/payments/confirm", json=callback)
    assert replay.status_code == 200
    assert replay.json()["id"] == confirmed.json()["id"]

    completed = client.post(
        f"/offers/{offer_id}/complete",
        json={"before_photos": ["before-1.jpg"], "after_photos": ["after-1.jpg"]},
        headers=business_a["headers"],
    )
    assert completed.status_code == 200
    assert completed.json()["after_photos"] == ["after-1.jpg"]
    again = client.post(f"/offers/{offer_id}/complete", json={}, headers=business_a["headers"])
    assert again.status_code == 409

    bad_rating = client.post("/reviews", json={"offer_id": offer_id, "rating": 6}, headers=customer["headers"])
    assert bad_rating.status_code == 400
    review = client.post(
        "/reviews",
        json={"offer_id": offer_id, "rating": 5, "content": "Lovely", "tags": ["kind"]},
        headers=customer["headers"],
    )
    assert review.status_code == 201

    details = client.get(f"/quotes/{quote_request['id']}", headers=customer["headers"]).json()
    assert details["request"]["status"] == "COMPLETED"
    assert details["request"]["review_status"] == "REVIEWED"

    stats = client.get(f"/statistics/business/{business_a['user_id']}", headers=business_a["headers"])
    assert stats.status_code == 200
    assert stats.json()["total_revenue"] == 45000
    assert stats.json()["average_rating"] == 5.0
    forbidden = client.get(f"/statistics/business/{business_a['user_id']}", headers=business_b["headers"])
    assert forbidden.status_code == 403

    listed = client.get(f"/reviews/business/{business_a['user_id']}", params={"view": "best"})
    assert [row["id"] for row in listed.json()] == [review.json()["id"]]

    inbox = client.get("/notifications", headers=business_a["headers"]).json()
    titles = [row["title"] for row in inbox]
    assert "Quote accepted" in titles
    assert "Payment received" in titles
    assert "New review" in titles
    customer_inbox = client.get("/notifications", headers=customer["headers"]).json()
    assert "Grooming completed" in [row["title"] for row in customer_inbox]


def test_payment_cancel_and_lookup_routes():
    customer = _register("CUSTOMER", 37.5, 127.0)
    business = _register("BUSINESS", 37.5, 127.0)
    quote_request = _create_request(customer)
    offer = client.post(
        f"/quotes/{quote_request['id']}/offers",
        json={"price": 20000},
        headers=business["headers"],
    ).json()
    preparation = client.post(
        "/payments/prepare",
        json={"offer_id": offer["id"]},
        headers=customer["headers"],
    ).json()
    confirmed = client.post(
        "/payments/confirm",
        json={
            "order_id": preparation["order_id"],
            "amount": 20000,
            "payment_key": preparation["gateway_handle"]["payment_key"],
        },
    ).json()

    by_offer = client.get(f"/payments/offers/{offer['id']}", headers=business["headers"])
    assert by_offer.json()["id"] == confirmed["id"]
    assert [row["id"] for row in client.get("/payments", headers=customer["headers"]).json()] == [confirmed["id"]]

    cancelled = client.post(
        f"/payments/{confirmed['id']}/cancel",
        json={"reason": "schedule changed"},
        headers=customer["headers"],
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELED"
    assert client.get(f"/offers/{offer['id']}", headers=customer["headers"]).json()["payment_status"] == "REFUNDED"
    reprepare = client.post("/payments/prepare", json={"offer_id": offer["id"]}, headers=customer["headers"])
    assert reprepare.status_code == 409
    assert client.get("/payments/pay_missing", headers=customer["headers"]).status_code == 404


def test_customer_cannot_browse_and_stranger_cannot_view():
    customer = _register("CUSTOMER", 37.5, 127.0)
    stranger = _register("CUSTOMER", 37.5, 127.0)
    quote_request = _create_request(customer)

    assert client.get("/quotes/available", headers=customer["headers"]).status_code == 403
    assert client.get(f"/quotes/{quote_request['id']}", headers=stranger["headers"]).status_code == 403
    assert client.get("/quotes/qr_missing", headers=customer["headers"]).status_code == 404
    cancelled = client.post(f"/quotes/{quote_request['id']}/cancel", headers=customer["headers"])
    assert cancelled.json()["status"] == "CANCELLED"


def test_offer_route_is_limited_to_its_parties():
    customer = _register("CUSTOMER", 37.5, 127.0)
    business = _register("BUSINESS", 37.5, 127.0)
    rival = _register("BUSINESS", 37.5, 127.0)
    quote_request = _create_request(customer)
    offer = client.post(
        f"/quotes/{quote_request['id']}/offers",
        json={"price": 25000},
        headers=business["headers"],
    ).json()

    assert client.get(f"/offers/{offer['id']}", headers=customer["headers"]).status_code == 200
    assert client.get(f"/offers/{offer['id']}", headers=business["headers"]).status_code == 200
    assert client.get(f"/offers/{offer['id']}", headers=rival["headers"]).status_code == 403


def test_chat_routes_and_notification_inbox():
    customer = _register("CUSTOMER", 37.5, 127.0)
    business = _register("BUSINESS", 37.5, 127.0)
    rival = _register("BUSINESS", 37.5, 127.0)
    quote_request = _create_request(customer)
    client.post(f"/quotes/{quote_request['id']}/offers", json={"price": 25000}, headers=business["headers"])

    missing_business = client.post(
        "/chat/rooms", json={"quote_request_id": quote_request["id"]}, headers=customer["headers"]
    )
    assert missing_business.status_code == 400
    room = client.post(
        "/chat/rooms",
        json={"quote_request_id": quote_request["id"], "business_id": business["user_id"]},
        headers=customer["headers"],
    ).json()
    sent = client.post(f"/chat/rooms/{room['id']}/messages", json={"content": "Hi there"}, headers=customer["headers"])
    assert sent.status_code == 201
    assert client.get(f"/chat/rooms/{room['id']}", headers=rival["headers"]).status_code == 403

    rooms = client.get("/chat/rooms", headers=business["headers"]).json()
    assert [(row["room"]["id"], row["unread_count"]) for row in rooms] == [(room["id"], 1)]
    marked = client.post(f"/chat/rooms/{room['id']}/read", json={}, headers=business["headers"])
    assert marked.json() == {"marked": 1}

    inbox = client.get("/notifications", headers=business["headers"]).json()
    assert any(row["category"] == "chat" and row["deep_link"] == f"chat:{room['id']}" for row in inbox)
    unread = client.get("/notifications/unread-count", headers=business["headers"]).json()["unread"]
    assert unread >= 1
    assert client.post("/notifications/read-all", headers=business["headers"]).json() == {"marked": unread}
    assert client.get("/notifications/unread-count", headers=business["headers"]).json() == {"unread": 0}
