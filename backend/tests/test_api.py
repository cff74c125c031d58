import os
import sys
from uuid import uuid4

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from marketplace.main import app

client = TestClient(app)

BOOKING_DAY = "2030-03-04"


def _login(user_id: str, name: str = "") -> dict:
    response = client.post("/auth/login", json={"user_id": user_id, "password": "marketplace-demo", "name": name})
    assert response.status_code == 200
    return response.json()


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _provider() -> tuple[str, str]:
    user_id = f"prov_{uuid4().hex[:8]}"
    token = _login(user_id, name="Test Provider")["access_token"]
    chosen = client.post("/profile/role", json={"user_id": user_id, "role": "PROVIDER"}, headers=_auth(token))
    assert chosen.status_code == 200
    assert chosen.json()["role"] == "PROVIDER"
    return user_id, token


def _customer() -> tuple[str, str]:
    user_id = f"cust_{uuid4().hex[:8]}"
    return user_id, _login(user_id)["access_token"]


def _create_service(provider_id: str, token: str, duration: int = 60, title: str = "Aircon Cleaning") -> dict:
    response = client.post(
        "/services",
        json={
            "provider_id": provider_id,
            "title": title,
            "description": "Split-type aircon cleaning.",
            "category": "AIRCON_REPAIR",
            "base_price": "1200.00",
            "duration_minutes": duration,
        },
        headers=_auth(token),
    )
    assert response.status_code == 200
    return response.json()


def _book(customer_id: str, token: str, service_id: str, start: str):
    return client.post(
        "/bookings",
        json={"customer_id": customer_id, "service_id": service_id, "start_time": start},
        headers=_auth(token),
    )


def test_health_ok():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_ready_reports_scheduling_defaults():
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json()["slot_step_minutes"] == 30


def test_auth_login_and_me():
    user_id = f"user_{uuid4().hex[:8]}"
    login = _login(user_id)
    assert login["role"] == "CUSTOMER"

    me = client.get("/auth/me", headers=_auth(login["access_token"]))
    assert me.status_code == 200
    assert me.json()["user_id"] == user_id


def test_auth_login_rejects_wrong_password():
    response = client.post("/auth/login", json={"user_id": "someone", "password": "nope"})
    assert response.status_code == 401


def test_auth_me_requires_token():
    assert client.get("/auth/me").status_code == 401


def test_token_user_must_match_actor():
    provider_id, _ = _provider()
    _, other_token = _customer()
    response = client.get("/services/capacity", params={"provider_id": provider_id}, headers=_auth(other_token))
    assert response.status_code == 403


def test_create_and_list_services():
    provider_id, token = _provider()
    title = f"Aircon {uuid4().hex[:6]}"
    created = _create_service(provider_id, token, title=title)
    assert created["provider_id"] == provider_id
    assert created["category"] == "AIRCON_REPAIR"

    listed = client.get("/services", params={"category": "AIRCON_REPAIR", "search": title})
    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [created["id"]]

    fetched = client.get(f"/services/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["title"] == title


def test_service_validation_and_unknown_service():
    provider_id, token = _provider()
    invalid = client.post(
        "/services",
        json={
            "provider_id": provider_id,
            "title": "Too long",
            "description": "Runs past closing.",
            "category": "CLEANING",
            "base_price": "100",
            "duration_minutes": 600,
        },
        headers=_auth(token),
    )
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "VALIDATION"

    assert client.get("/services/svc_does_not_exist").status_code == 404
    assert client.get("/services", params={"category": "PLUMBING"}).status_code == 400


def test_customer_cannot_create_service():
    customer_id, token = _customer()
    response = client.post(
        "/services",
        json={
            "provider_id": customer_id,
            "title": "Not allowed",
            "description": "Customers do not list services.",
            "category": "CLEANING",
            "base_price": "100",
            "duration_minutes": 60,
        },
        headers=_auth(token),
    )
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "PERMISSION"


def test_free_tier_capacity_error_is_distinguishable():
    provider_id, token = _provider()
    _create_service(provider_id, token)

    capacity = client.get("/services/capacity", params={"provider_id": provider_id}, headers=_auth(token))
    assert capacity.status_code == 200
    assert capacity.json()["allowed"] is False

    second = client.post(
        "/services",
        json={
            "provider_id": provider_id,
            "title": "Second listing",
            "description": "Over the free tier.",
            "category": "CLEANING",
            "base_price": "300",
            "duration_minutes": 60,
        },
        headers=_auth(token),
    )
    assert second.status_code == 403
    detail = second.json()["detail"]
    assert detail["code"] == "CAPACITY"
    assert detail["limit"] == 1
    assert detail["current_count"] == 1


def test_slots_reflect_bookings():
    provider_id, provider_token = _provider()
    service = _create_service(provider_id, provider_token)
    customer_id, customer_token = _customer()

    booked = _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T10:00:00")
    assert booked.status_code == 200
    assert booked.json()["end_time"] == f"{BOOKING_DAY}T11:00:00"

    slots = client.get(f"/services/{service['id']}/slots", params={"date": BOOKING_DAY})
    assert slots.status_code == 200
    by_start = {item["start_time"][11:16]: item["available"] for item in slots.json()}
    assert by_start["09:00"] is True
    assert by_start["09:30"] is False
    assert by_start["10:30"] is False
    assert by_start["11:00"] is True
    assert "16:30" not in by_start


def test_slots_require_valid_date():
    assert client.get("/services/svc_lawn/slots", params={"date": "not-a-date"}).status_code == 422


def test_overlapping_booking_returns_conflict():
    provider_id, provider_token = _provider()
    service = _create_service(provider_id, provider_token)
    customer_id, customer_token = _customer()

    assert _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T13:00:00").status_code == 200
    clash = _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T13:30:00")
    assert clash.status_code == 409
    detail = clash.json()["detail"]
    assert detail["code"] == "CONFLICT"
    assert detail["conflict_start"] == f"{BOOKING_DAY}T13:00:00"

    touching = _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T14:00:00")
    assert touching.status_code == 200


def test_booking_for_unknown_service_is_not_found():
    customer_id, token = _customer()
    response = _book(customer_id, token, "svc_missing", f"{BOOKING_DAY}T10:00:00")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


def test_stranger_cannot_touch_booking():
    provider_id, provider_token = _provider()
    service = _create_service(provider_id, provider_token)
    customer_id, customer_token = _customer()
    booking = _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T09:00:00").json()

    stranger_id, stranger_token = _customer()
    cancel = client.post(
        f"/bookings/{booking['id']}/cancel",
        json={"actor_user_id": stranger_id},
        headers=_auth(stranger_token),
    )
    assert cancel.status_code == 403
    read = client.get(f"/bookings/{booking['id']}", params={"user_id": stranger_id}, headers=_auth(stranger_token))
    assert read.status_code == 403

    unchanged = client.get(f"/bookings/{booking['id']}", params={"user_id": customer_id}, headers=_auth(customer_token))
    assert unchanged.status_code == 200
    assert unchanged.json()["status"] == "PENDING"


def test_customer_cannot_confirm_booking():
    provider_id, provider_token = _provider()
    service = _create_service(provider_id, provider_token)
    customer_id, customer_token = _customer()
    booking = _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T09:00:00").json()

    response = client.post(
        f"/bookings/{booking['id']}/status",
        json={"actor_user_id": customer_id, "status": "CONFIRMED"},
        headers=_auth(customer_token),
    )
    assert response.status_code == 403


def test_invalid_status_target_is_rejected():
    response = client.post("/bookings/bk_missing/status", json={"actor_user_id": "x", "status": "PENDING"})
    assert response.status_code == 422


def test_payment_flow_and_bad_state():
    provider_id, provider_token = _provider()
    service = _create_service(provider_id, provider_token)
    customer_id, customer_token = _customer()
    booking = _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T15:00:00").json()

    early = client.post(
        f"/bookings/{booking['id']}/confirm-payment",
        json={"actor_user_id": provider_id},
        headers=_auth(provider_token),
    )
    assert early.status_code == 409
    assert early.json()["detail"]["code"] == "BAD_STATE"

    paid = client.post(
        f"/bookings/{booking['id']}/mark-paid",
        json={"actor_user_id": customer_id},
        headers=_auth(customer_token),
    )
    assert paid.status_code == 200
    assert paid.json()["payment_status"] == "CUSTOMER_MARKED_PAID"

    again = client.post(
        f"/bookings/{booking['id']}/mark-paid",
        json={"actor_user_id": customer_id},
        headers=_auth(customer_token),
    )
    assert again.status_code == 409
    assert again.json()["detail"]["current_payment_status"] == "CUSTOMER_MARKED_PAID"

    confirmed = client.post(
        f"/bookings/{booking['id']}/confirm-payment",
        json={"actor_user_id": provider_id},
        headers=_auth(provider_token),
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "CONFIRMED"
    assert confirmed.json()["payment_status"] == "PROVIDER_CONFIRMED"


def test_payment_info_exposes_provider_qr():
    provider_id, provider_token = _provider()
    details = client.post(
        "/profile/payment-details",
        json={"user_id": provider_id, "payment_qr_code": "https://example.com/qr/test", "payment_notes": "GCash"},
        headers=_auth(provider_token),
    )
    assert details.status_code == 200
    service = _create_service(provider_id, provider_token)
    customer_id, customer_token = _customer()
    booking = _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T12:00:00").json()

    info = client.get(
        f"/bookings/{booking['id']}/payment-info",
        params={"user_id": customer_id},
        headers=_auth(customer_token),
    )
    assert info.status_code == 200
    payload = info.json()
    assert payload["is_customer"] is True
    assert payload["provider"]["payment_qr_code"] == "https://example.com/qr/test"

    cleared = client.delete(
        "/profile/payment-details/qr-code",
        params={"user_id": provider_id},
        headers=_auth(provider_token),
    )
    assert cleared.status_code == 200
    assert cleared.json()["payment_qr_code"] is None


def test_schedule_and_customer_listing():
    provider_id, provider_token = _provider()
    service = _create_service(provider_id, provider_token)
    customer_id, customer_token = _customer()
    first = _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T09:00:00").json()
    second = _book(customer_id, customer_token, service["id"], f"{BOOKING_DAY}T11:00:00").json()

    confirm = client.post(
        f"/bookings/{second['id']}/status",
        json={"actor_user_id": provider_id, "status": "CONFIRMED"},
        headers=_auth(provider_token),
    )
    assert confirm.status_code == 200

    schedule = client.get(
        "/bookings/provider-schedule",
        params={"provider_id": provider_id},
        headers=_auth(provider_token),
    )
    assert schedule.status_code == 200
    assert [item["id"] for item in schedule.json()] == [first["id"], second["id"]]

    confirmed_only = client.get(
        "/bookings/provider-schedule",
        params={"provider_id": provider_id, "status": "CONFIRMED"},
        headers=_auth(provider_token),
    )
    assert [item["id"] for item in confirmed_only.json()] == [second["id"]]

    mine = client.get("/bookings/mine", params={"customer_id": customer_id}, headers=_auth(customer_token))
    assert mine.status_code == 200
    assert [item["id"] for item in mine.json()] == [second["id"], first["id"]]

    history = client.get(
        f"/bookings/{second['id']}/history",
        params={"user_id": customer_id},
        headers=_auth(customer_token),
    )
    assert history.status_code == 200
    assert [entry["to_value"] for entry in history.json()] == ["PENDING", "CONFIRMED"]


def test_subscription_activation_flow():
    provider_id, provider_token = _provider()
    _create_service(provider_id, provider_token)

    overview = client.get("/business/subscription", params={"provider_id": provider_id}, headers=_auth(provider_token))
    assert overview.status_code == 200
    assert overview.json()["subscription"]["status"] == "PENDING"
    assert overview.json()["can_add_service"] is False

    sent = client.post(
        "/business/subscription/payment-sent",
        json={"actor_user_id": provider_id},
        headers=_auth(provider_token),
    )
    assert sent.status_code == 200
    subscription_id = sent.json()["id"]

    denied = client.post(
        f"/business/activations/{subscription_id}/activate",
        json={"actor_user_id": provider_id},
        headers=_auth(provider_token),
    )
    assert denied.status_code == 403

    admin_token = _login("admin_1")["access_token"]
    pending = client.get("/business/activations", params={"admin_id": "admin_1"}, headers=_auth(admin_token))
    assert pending.status_code == 200
    assert subscription_id in {item["id"] for item in pending.json()}

    activated = client.post(
        f"/business/activations/{subscription_id}/activate",
        json={"actor_user_id": "admin_1", "service_limit": 3},
        headers=_auth(admin_token),
    )
    assert activated.status_code == 200
    assert activated.json()["status"] == "ACTIVE"
    assert activated.json()["service_limit"] == 3

    capacity = client.get("/services/capacity", params={"provider_id": provider_id}, headers=_auth(provider_token))
    assert capacity.json()["allowed"] is True
    assert capacity.json()["limit"] == 3


def test_role_assignment_requires_admin():
    customer_id, customer_token = _customer()
    response = client.post(
        "/profile/roles/assign",
        json={"actor_user_id": customer_id, "user_id": customer_id, "role": "ADMIN"},
        headers=_auth(customer_token),
    )
    assert response.status_code == 403

    me = client.get("/profile/me", params={"user_id": customer_id}, headers=_auth(customer_token))
    assert me.status_code == 200
    assert me.json()["role"] == "CUSTOMER"


def test_profile_name_can_be_updated():
    customer_id, customer_token = _customer()
    updated = client.post(
        "/profile/me",
        json={"user_id": customer_id, "name": "Diana Lopez"},
        headers=_auth(customer_token),
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "Diana Lopez"

    _, other_token = _customer()
    forbidden = client.post("/profile/me", json={"user_id": customer_id, "name": "Hijack"}, headers=_auth(other_token))
    assert forbidden.status_code == 403
    assert client.post("/profile/me", json={"user_id": customer_id, "name": ""}).status_code == 422
