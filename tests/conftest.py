"""pytest configuration and shared fixtures."""
from __future__ import annotations

import itertools
import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

# Ensure the project root is available on sys.path so tests can import the studio package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from studio import create_app  # noqa: E402
from studio.auth import build_token  # noqa: E402
from studio.extensions import db  # noqa: E402
from studio.models import (AddOn, AuthAccount, Booking, Client, Package,  # noqa: E402
                           Promo, SubAddOn, SubPackage, User)
from studio.notifications import get_queue  # noqa: E402

_codes = itertools.count(1)

SESSION_DATE = datetime(2026, 11, 20, 10, 0)


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'studio.db'}",
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "BLOB_S3_BUCKET": None,
        "BLOB_PUBLIC_BASE_URL": None,
        "VAPID_PRIVATE_KEY": None,
        "VAPID_PUBLIC_KEY": None,
        "WEB_PUSH_EMAIL": None,
        "NOTIFICATION_WORKERS": 1,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        queue = get_queue()
        queue.join(timeout=10)
        db.session.remove()
        db.drop_all()
    queue.shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def catalog(app):
    with app.app_context():
        studio = Package(name="Self Photo", package_type="Studio", is_group_package=False)
        studio.sub_packages = [SubPackage(name="Basic 30 min", price=100000)]
        group = Package(name="Group Studio", package_type="Studio", is_group_package=True, extra_person_rate=15000)
        group.sub_packages = [SubPackage(name="Group 30 min", price=150000)]
        outdoor = Package(name="Outdoor Session", package_type="Outdoor", is_group_package=False)
        outdoor.sub_packages = [SubPackage(name="Half day", price=900000)]
        prints = AddOn(name="Extra Prints")
        prints.sub_addons = [SubAddOn(name="4R print x5", price=25000), SubAddOn(name="10R print", price=40000)]
        db.session.add_all([
            studio,
            group,
            outdoor,
            prints,
            Promo(code="DISC10", description="Diskon 10%", discount_percentage=10),
            Promo(code="OLD50", description="Expired promo", discount_percentage=50, is_active=False),
        ])
        db.session.commit()

        return SimpleNamespace(
            studio_id=studio.package_id,
            studio_sub_id=studio.sub_packages[0].sub_package_id,
            group_id=group.package_id,
            group_sub_id=group.sub_packages[0].sub_package_id,
            outdoor_id=outdoor.package_id,
            outdoor_sub_id=outdoor.sub_packages[0].sub_package_id,
            print_ids=[sa.sub_addon_id for sa in prints.sub_addons],
        )


def _make_user(app, role: str, email: str, password: str = "secret123") -> SimpleNamespace:
    with app.app_context():
        user = User(name=f"{role.title()} User", email=email, role=role)
        db.session.add(user)
        db.session.flush()
        db.session.add(AuthAccount(user_id=user.user_id, password_hash=generate_password_hash(password)))
        db.session.commit()
        token = build_token(user)
        return SimpleNamespace(
            user_id=user.user_id,
            email=email,
            password=password,
            headers={"Authorization": f"Bearer {token}"},
        )


@pytest.fixture
def admin(app):
    return _make_user(app, "admin", "admin@studio.test")


@pytest.fixture
def staff(app):
    return _make_user(app, "staff", "staff@studio.test")


@pytest.fixture
def intern(app):
    return _make_user(app, "intern", "intern@studio.test")


@pytest.fixture
def make_client(app):
    """Insert a client row and return its email."""

    def _make(email: str = "ana@example.com", **fields) -> str:
        with app.app_context():
            values = {
                "name": "Ana Putri",
                "phone": "08123456789",
                "referral_code": f"S8REF-T{next(_codes):05d}",
            }
            values.update(fields)
            db.session.add(Client(email=email, **values))
            db.session.commit()
        return email

    return _make


@pytest.fixture
def make_booking(app, catalog):
    """Insert a booking directly, bypassing pricing, and return its id."""

    def _make(
        email: str = "ana@example.com",
        *,
        total_price: int = 100000,
        amount_paid: int = 0,
        status: str = "Confirmed",
        package_id: int | None = None,
        **fields,
    ) -> int:
        with app.app_context():
            package = db.session.get(Package, package_id or catalog.studio_id)
            booking = Booking(
                booking_code=f"S8-T{next(_codes):05d}",
                client_name=fields.pop("client_name", "Ana Putri"),
                client_email=email,
                client_phone="08123456789",
                booking_date=fields.pop("booking_date", SESSION_DATE),
                package_id=package.package_id,
                sub_package_id=package.sub_packages[0].sub_package_id,
                subtotal=total_price,
                total_price=total_price,
                amount_paid=amount_paid,
                remaining_balance=total_price - amount_paid,
                booking_status=status,
                payment_status="DP Paid" if amount_paid else "Pending",
                **fields,
            )
            db.session.add(booking)
            db.session.commit()
            return booking.booking_id

    return _make
