import os
import sys
from uuid import uuid4

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from marketplace.main import app

client = TestClient(app)


def _login(user_id: str) -> str:
    response = client.post("/auth/login", json={"user_id": user_id, "password": "marketplace-demo"})
    assert response.status_code == 200
    payload = response.json()
    return payload["access_token"]


def test_golden_path_list_book_pay_confirm_cancel():
    provider_user = f"golden_provider_{uuid4().hex[:8]}"
    customer_user = f"golden_customer_{uuid4().hex[:8]}"

    provider_token = _login(provider_user)
    provider_headers = {"Authorization": f"Bearer {provider_token}"}
    role = client.post("/profile/role", json={"user_id": provider_user, "role": "PROVIDER"}, headers=provider_headers)
    assert role.status_code == 200

    title = f"Golden Lawn Care {uuid4().hex[:6]}"
    created_service = client.post(
        "/services",
        json={
            "provider_id": provider_user,
            "title": title,
            "description": "Mowing, edging and cleanup.",
            "category": "GRASS_CUTTING",
            "base_price": "650",
            "duration_minutes": 90,
        },
        headers=provider_headers,
    )
    assert created_service.status_code == 200
    service_id = created_service.json()["id"]

    search = client.get("/services", params={"search": title})
    assert search.status_code == 200
    assert any(item["id"] == service_id for item in search.json())

    availability = client.get(f"/services/{service_id}/slots", params={"date": "2030-06-12"})
    assert availability.status_code == 200
    slots = availability.json()
    assert slots
    assert all(slot["available"] for slot in slots)
    assert slots[-1]["end_time"] <= "2030-06-12T17:00:00"
    selected_slot = slots[2]

    customer_token = _login(customer_user)
    customer_headers = {"Authorization": f"Bearer {customer_token}"}
    booking = client.post(
        "/bookings",
        json={
            "customer_id": customer_user,
            "service_id": service_id,
            "start_time": selected_slot["start_time"],
            "notes": "Golden path booking",
        },
        headers=customer_headers,
    )
    assert booking.status_code == 200
    booking_payload = booking.json()
    assert booking_payload["provider_id"] == provider_user
    assert booking_payload["end_time"] == selected_slot["end_time"]
    booking_id = booking_payload["id"]

    refreshed = client.get(f"/services/{service_id}/slots", params={"date": "2030-06-12"}).json()
    taken = next(slot for slot in refreshed if slot["start_time"] == selected_slot["start_time"])
    assert taken["available"] is False

    paid = client.post(f"/bookings/{booking_id}/mark-paid", json={"actor_user_id": customer_user}, headers=customer_headers)
    assert paid.status_code == 200

    confirmed = client.post(
        f"/bookings/{booking_id}/confirm-payment",
        json={"actor_user_id": provider_user},
        headers=provider_headers,
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "CONFIRMED"

    cancelled = client.post(f"/bookings/{booking_id}/cancel", json={"actor_user_id": customer_user}, headers=customer_headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    reopened = client.get(f"/services/{service_id}/slots", params={"date": "2030-06-12"}).json()
    assert all(slot["available"] for slot in reopened)

    history = client.get(
        f"/bookings/{booking_id}/history",
        params={"user_id": provider_user},
        headers=provider_headers,
    )
    assert history.status_code == 200
    assert [(entry["field"], entry["to_value"]) for entry in history.json()] == [
        ("status", "PENDING"),
        ("payment_status", "CUSTOMER_MARKED_PAID"),
        ("status", "CONFIRMED"),
        ("payment_status", "PROVIDER_CONFIRMED"),
        ("status", "CANCELLED"),
    ]
