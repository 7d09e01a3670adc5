"""Tests for login and the bearer token checks."""
from __future__ import annotations

from itsdangerous import URLSafeTimedSerializer


def test_login_success_returns_token(client, staff) -> None:
    response = client.post("/auth/login", json={"email": staff.email, "password": staff.password})

    assert response.status_code == 200
    data = response.get_json()
    assert data["token"]
    assert data["user"]["role"] == "staff"


def test_login_wrong_password(client, staff) -> None:
    response = client.post("/auth/login", json={"email": staff.email, "password": "nope"})

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"


def test_login_missing_fields(client) -> None:
    response = client.post("/auth/login", json={"email": "someone@studio.test"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_token_from_login_is_accepted(client, staff, make_booking) -> None:
    booking_id = make_booking(status="Pending")
    login = client.post("/auth/login", json={"email": staff.email, "password": staff.password})
    token = login.get_json()["token"]

    response = client.post(f"/bookings/{booking_id}/cancel", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200


def test_token_signed_with_another_key_is_rejected(client, make_booking) -> None:
    booking_id = make_booking(status="Pending")
    forged = URLSafeTimedSerializer("not-the-secret", salt="auth-token").dumps({"user_id": 1, "role": "admin"})

    response = client.post(f"/bookings/{booking_id}/cancel", headers={"Authorization": f"Bearer {forged}"})

    assert response.status_code == 401
