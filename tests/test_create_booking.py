"""Tests for POST /bookings and POST /bookings/quote."""
from __future__ import annotations

import base64
import logging
import os
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from studio.extensions import db
from studio.models import Booking, Client, Notification
from studio.notifications import get_queue

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _payload(catalog, **overrides):
    payload = {
        "name": "Ana Putri",
        "email": "Ana@Example.com",
        "phone": "08123456789",
        "date": "2026-11-20",
        "time": "10:00",
        "package_id": catalog.studio_id,
        "sub_package_id": catalog.studio_sub_id,
        "sub_addon_ids": [],
        "people": 1,
        "payment_method": "Bank Transfer",
    }
    payload.update(overrides)
    return payload


def _proof():
    return {"base64": base64.b64encode(PNG_BYTES).decode(), "mimeType": "image/png"}


def test_create_booking_creates_pending_booking_and_client(app, client, catalog) -> None:
    response = client.post("/bookings", json=_payload(catalog, sub_addon_ids=[catalog.print_ids[0]]))

    assert response.status_code == 201
    data = response.get_json()
    assert data["status"] == "Pending"
    assert data["booking_code"].startswith("S8-")
    assert data["price"]["subtotal"] == 125000
    assert data["price"]["final_price"] == 125000

    with app.app_context():
        booking = Booking.query.filter_by(booking_code=data["booking_code"]).one()
        assert booking.client_email == "ana@example.com"
        assert booking.total_price == 125000
        assert booking.remaining_balance == 125000
        assert booking.payment_status == "Pending"
        assert booking.selection_data["sub_addons"][0]["name"] == "4R print x5"

        new_client = db.session.get(Client, "ana@example.com")
        assert new_client.total_bookings == 0
        assert new_client.loyalty_tier == "Newbie"
        assert new_client.referral_code.startswith("S8REF-")


def test_create_booking_applies_group_surcharge(client, catalog) -> None:
    response = client.post(
        "/bookings",
        json=_payload(catalog, package_id=catalog.group_id, sub_package_id=catalog.group_sub_id, people=4),
    )

    assert response.status_code == 201
    price = response.get_json()["price"]
    assert price["extra_person_charge"] == 30000
    assert price["subtotal"] == 180000


def test_create_booking_with_promo(client, catalog) -> None:
    response = client.post("/bookings", json=_payload(catalog, promo_code="disc10"))

    assert response.status_code == 201
    price = response.get_json()["price"]
    assert price["discount_amount"] == 10000
    assert price["promo_code_used"] == "DISC10"
    assert price["final_price"] == 90000


def test_create_booking_with_referral_records_referrer(app, client, catalog, make_client) -> None:
    make_client("budi@example.com", name="Budi", referral_code="S8REF-BUDI01")

    response = client.post("/bookings", json=_payload(catalog, referral_code="s8ref-budi01"))

    assert response.status_code == 201
    price = response.get_json()["price"]
    assert price["discount_kind"] == "referral"
    assert price["discount_amount"] == 15000
    with app.app_context():
        assert db.session.get(Client, "ana@example.com").referred_by == "S8REF-BUDI01"
        booking = Booking.query.one()
        assert booking.referral_code_used == "S8REF-BUDI01"


def test_own_referral_code_is_ignored(client, catalog, make_client) -> None:
    make_client("ana@example.com", referral_code="S8REF-ANA001")

    response = client.post("/bookings", json=_payload(catalog, referral_code="S8REF-ANA001"))

    assert response.status_code == 201
    assert response.get_json()["price"]["discount_amount"] == 0


def test_referral_is_ignored_once_client_has_booked(app, client, catalog, make_client) -> None:
    make_client("budi@example.com", name="Budi", referral_code="S8REF-BUDI01")
    first = client.post("/bookings", json=_payload(catalog))
    assert first.status_code == 201

    response = client.post("/bookings", json=_payload(catalog, referral_code="S8REF-BUDI01"))

    assert response.status_code == 201
    price = response.get_json()["price"]
    assert price["discount_amount"] == 0
    assert price["discount_kind"] is None
    assert price["referral_code_used"] is None
    with app.app_context():
        assert db.session.get(Client, "ana@example.com").referred_by is None


def test_redeemed_points_are_deducted_from_client(app, client, catalog, make_client) -> None:
    make_client("ana@example.com", total_bookings=2, loyalty_points=500)

    response = client.post("/bookings", json=_payload(catalog, use_points=True))

    assert response.status_code == 201
    price = response.get_json()["price"]
    assert price["points_redeemed"] == 500
    assert price["points_value"] == 50000
    assert price["final_price"] == 50000
    with app.app_context():
        assert db.session.get(Client, "ana@example.com").loyalty_points == 0


def test_create_booking_missing_contact_fields(client, catalog) -> None:
    response = client.post("/bookings", json=_payload(catalog, name="", phone=None))

    assert response.status_code == 400
    data = response.get_json()
    assert data["error"] == "invalid_payload"
    assert "name" in data["message"]
    assert "phone" in data["message"]


def test_create_booking_deleted_package_is_validation_error(client, catalog) -> None:
    response = client.post("/bookings", json=_payload(catalog, package_id=9999))

    assert response.status_code == 400
    assert response.get_json()["message"] == "The selected package was not found."


def test_create_booking_sub_package_from_other_package(client, catalog) -> None:
    response = client.post("/bookings", json=_payload(catalog, sub_package_id=catalog.outdoor_sub_id))

    assert response.status_code == 400


def test_create_booking_unknown_add_on(client, catalog) -> None:
    response = client.post("/bookings", json=_payload(catalog, sub_addon_ids=[catalog.print_ids[0], 4242]))

    assert response.status_code == 400
    assert "4242" in response.get_json()["message"]


def test_create_booking_invalid_date(client, catalog) -> None:
    response = client.post("/bookings", json=_payload(catalog, date="tomorrow"))

    assert response.status_code == 400


def test_create_booking_stores_payment_proof(app, client, catalog) -> None:
    response = client.post("/bookings", json=_payload(catalog, payment_proof=_proof()))

    assert response.status_code == 201
    url = response.get_json()["payment_proof_url"]
    assert url.startswith("/uploads/Ana_Putri-")
    assert url.endswith(".png")

    served = client.get(url)
    assert served.status_code == 200
    assert served.data == PNG_BYTES


def test_create_booking_rejects_unsupported_proof_type(client, catalog) -> None:
    proof = {"base64": base64.b64encode(b"hello").decode(), "mimeType": "text/plain"}

    response = client.post("/bookings", json=_payload(catalog, payment_proof=proof))

    assert response.status_code == 400


def test_create_booking_rejects_malformed_proof(app, client, catalog) -> None:
    for proof in ("abc", {"base64": 123, "mimeType": "image/png"}):
        response = client.post("/bookings", json=_payload(catalog, payment_proof=proof))

        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_payload"

    with app.app_context():
        assert Booking.query.count() == 0


def test_failed_transaction_deletes_uploaded_proof(app, client, catalog) -> None:
    upload_dir = app.config["UPLOAD_FOLDER"]

    with patch("studio.bookings._create_booking_txn", side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))):
        response = client.post("/bookings", json=_payload(catalog, payment_proof=_proof()))

    assert response.status_code == 500
    data = response.get_json()
    assert data["error"] == "transaction_failed"
    assert "disk I/O error" in data["detail"]
    assert os.listdir(upload_dir) == []
    with app.app_context():
        assert Booking.query.count() == 0


def test_failed_cleanup_is_logged_not_raised(app, client, catalog, caplog) -> None:
    with patch("studio.bookings._create_booking_txn", side_effect=RuntimeError("boom")), \
            patch("studio.storage.LocalBlobStore.delete", side_effect=OSError("read-only file system")):
        with caplog.at_level(logging.WARNING, logger="studio.bookings"):
            response = client.post("/bookings", json=_payload(catalog, payment_proof=_proof()))

    assert response.status_code == 500
    assert response.get_json()["error"] == "transaction_failed"
    assert "Manual cleanup required" in caplog.text


def test_create_booking_notifies_staff(app, client, catalog, staff, admin) -> None:
    response = client.post("/bookings", json=_payload(catalog))
    assert response.status_code == 201

    with app.app_context():
        get_queue().join(timeout=10)
        notifications = Notification.query.order_by(Notification.user_id).all()
        assert [n.user_id for n in notifications] == sorted([staff.user_id, admin.user_id])
        assert notifications[0].title == "New booking received!"
        assert notifications[0].link == "/admin/schedule"


def test_quote_prices_without_saving(app, client, catalog, make_client) -> None:
    make_client("ana@example.com", total_bookings=3)

    response = client.post(
        "/bookings/quote",
        json={"email": "ana@example.com", "package_id": catalog.studio_id, "sub_package_id": catalog.studio_sub_id},
    )

    assert response.status_code == 200
    price = response.get_json()["price"]
    assert price["tier_name"] == "Bronze"
    assert price["discount_amount"] == 5000
    with app.app_context():
        assert Booking.query.count() == 0
