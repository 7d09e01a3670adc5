"""Database models for the studio booking backend."""
from __future__ import annotations

from datetime import datetime, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


ELEVATED_ROLES = ("admin", "staff")

BOOKING_STATUSES = (
    "Pending",
    "Confirmed",
    "Completed",
    "Cancelled",
    "Reschedule Requested",
)

PAYMENT_STATUSES = ("Pending", "DP Paid", "Paid")


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(
        db.Enum(
            "admin",
            "staff",
            "intern",
            "client",
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="client",
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    auth_account = db.relationship("AuthAccount", back_populates="user", uselist=False)

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
        }


class AuthAccount(db.Model):
    __tablename__ = "auth_accounts"

    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), primary_key=True)
    password_hash = db.Column(db.String(255), nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    user = db.relationship("User", back_populates="auth_account")


class Package(db.Model):
    """A photo-session package; the bookable prices live on its sub-packages."""

    __tablename__ = "packages"

    package_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    package_type = db.Column(
        db.Enum("Studio", "Outdoor", name="package_type", native_enum=False, validate_strings=True),
        nullable=False,
        server_default="Studio",
    )
    is_group_package = db.Column(db.Boolean, nullable=False, default=False)
    extra_person_rate = db.Column(db.Integer, nullable=False, default=15000)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    sub_packages = db.relationship(
        "SubPackage",
        back_populates="package",
        cascade="all, delete-orphan",
        order_by="SubPackage.sub_package_id",
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.package_id,
            "name": self.name,
            "description": self.description,
            "type": self.package_type,
            "is_group_package": bool(self.is_group_package),
            "extra_person_rate": self.extra_person_rate,
            "sub_packages": [sp.to_dict() for sp in self.sub_packages],
        }


class SubPackage(db.Model):
    __tablename__ = "sub_packages"

    sub_package_id = db.Column(db.Integer, primary_key=True)
    package_id = db.Column(db.Integer, db.ForeignKey("packages.package_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Integer, nullable=False)

    package = db.relationship("Package", back_populates="sub_packages")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.sub_package_id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
        }


class AddOn(db.Model):
    __tablename__ = "addons"

    addon_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)

    sub_addons = db.relationship(
        "SubAddOn",
        back_populates="addon",
        cascade="all, delete-orphan",
        order_by="SubAddOn.sub_addon_id",
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.addon_id,
            "name": self.name,
            "sub_addons": [sa.to_dict() for sa in self.sub_addons],
        }


class SubAddOn(db.Model):
    __tablename__ = "sub_addons"

    sub_addon_id = db.Column(db.Integer, primary_key=True)
    addon_id = db.Column(db.Integer, db.ForeignKey("addons.addon_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    price = db.Column(db.Integer, nullable=False)

    addon = db.relationship("AddOn", back_populates="sub_addons")

    def to_dict(self) -> dict[str, object]:
        return {"id": self.sub_addon_id, "name": self.name, "price": self.price}


class Promo(db.Model):
    __tablename__ = "promos"

    promo_id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class SystemSettings(db.Model):
    """Single-row system configuration; loyalty rules are stored as JSON."""

    __tablename__ = "system_settings"

    settings_id = db.Column(db.Integer, primary_key=True)
    loyalty_settings = db.Column(db.JSON, nullable=True, default=dict)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)


class Client(db.Model):
    """Repeat customer, keyed by lowercased email."""

    __tablename__ = "clients"

    email = db.Column(db.String(255), primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    phone = db.Column(db.String(30))
    first_booking_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    last_booking_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    total_bookings = db.Column(db.Integer, nullable=False, default=0)
    total_spent = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    loyalty_tier = db.Column(db.String(50), nullable=False, default="Newbie")
    referral_code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    referred_by = db.Column(db.String(20), nullable=True)
    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict[str, object]:
        return {
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "first_booking_at": _iso(self.first_booking_at),
            "last_booking_at": _iso(self.last_booking_at),
            "total_bookings": self.total_bookings,
            "total_spent": self.total_spent,
            "loyalty_points": self.loyalty_points,
            "loyalty_tier": self.loyalty_tier,
            "referral_code": self.referral_code,
            "referred_by": self.referred_by,
        }


class Booking(db.Model):
    __tablename__ = "bookings"

    booking_id = db.Column(db.Integer, primary_key=True)
    booking_code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    client_name = db.Column(db.String(150), nullable=False)
    client_email = db.Column(db.String(255), nullable=False, index=True)
    client_phone = db.Column(db.String(30))
    booking_date = db.Column(db.DateTime, nullable=False)
    package_id = db.Column(db.Integer, db.ForeignKey("packages.package_id"), nullable=False)
    sub_package_id = db.Column(db.Integer, db.ForeignKey("sub_packages.sub_package_id"), nullable=False)
    # Catalog rows as priced at booking time.
    selection_data = db.Column(db.JSON, nullable=True, default=dict)
    number_of_people = db.Column(db.Integer, nullable=False, default=1)
    payment_method = db.Column(db.String(50))

    extra_person_charge = db.Column(db.Integer, nullable=False, default=0)
    subtotal = db.Column(db.Integer, nullable=False, default=0)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    discount_reason = db.Column(db.String(255), nullable=False, default="")
    promo_code_used = db.Column(db.String(50))
    referral_code_used = db.Column(db.String(20))
    points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    points_value = db.Column(db.Integer, nullable=False, default=0)
    total_price = db.Column(db.Integer, nullable=False, default=0)
    amount_paid = db.Column(db.Integer, nullable=False, default=0)
    remaining_balance = db.Column(db.Integer, nullable=False, default=0)
    points_earned = db.Column(db.Integer, nullable=True)

    booking_status = db.Column(
        db.Enum(*BOOKING_STATUSES, name="booking_status", native_enum=False, validate_strings=True),
        nullable=False,
        default="Pending",
    )
    payment_status = db.Column(
        db.Enum(*PAYMENT_STATUSES, name="payment_status", native_enum=False, validate_strings=True),
        nullable=False,
        default="Pending",
    )
    payment_proof_url = db.Column(db.String(500))
    payment_proof_public_id = db.Column(db.String(255))
    delivery_link = db.Column(db.String(500))
    reschedule_request_date = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)
    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    package = db.relationship("Package")
    sub_package = db.relationship("SubPackage")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.booking_id,
            "booking_code": self.booking_code,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_phone": self.client_phone,
            "booking_date": _iso(self.booking_date),
            "package_id": self.package_id,
            "sub_package_id": self.sub_package_id,
            "selection": self.selection_data or {},
            "number_of_people": self.number_of_people,
            "payment_method": self.payment_method,
            "extra_person_charge": self.extra_person_charge,
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "discount_reason": self.discount_reason,
            "promo_code_used": self.promo_code_used,
            "referral_code_used": self.referral_code_used,
            "points_redeemed": self.points_redeemed,
            "points_value": self.points_value,
            "total_price": self.total_price,
            "amount_paid": self.amount_paid,
            "remaining_balance": self.remaining_balance,
            "points_earned": self.points_earned,
            "booking_status": self.booking_status,
            "payment_status": self.payment_status,
            "payment_proof_url": self.payment_proof_url,
            "delivery_link": self.delivery_link,
            "reschedule_request_date": _iso(self.reschedule_request_date),
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }

    def to_status_dict(self) -> dict[str, object]:
        """Public view for the status page; no contact details or proofs."""
        return {
            "booking_code": self.booking_code,
            "client_name": self.client_name,
            "booking_date": _iso(self.booking_date),
            "booking_status": self.booking_status,
            "payment_status": self.payment_status,
            "total_price": self.total_price,
            "remaining_balance": self.remaining_balance,
            "delivery_link": self.delivery_link if self.booking_status == "Completed" else None,
        }


class Transaction(db.Model):
    """Ledger entry for money in or out (append-only)."""

    __tablename__ = "transactions"

    transaction_id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.DateTime, nullable=False, default=utc_now)
    description = db.Column(db.String(255), nullable=False)
    transaction_type = db.Column(
        db.Enum("Income", "Expense", name="transaction_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    amount = db.Column(db.Integer, nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.booking_id"), nullable=True)

    booking = db.relationship("Booking")


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    log_id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=utc_now)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    user_name = db.Column(db.String(100), nullable=False)
    action = db.Column(db.String(255), nullable=False)
    details = db.Column(db.Text)


class Notification(db.Model):
    __tablename__ = "notifications"

    notification_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(255))
    is_read = db.Column(db.Boolean, nullable=False, server_default="0")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    user = db.relationship("User")


class PushSubscription(db.Model):
    """Web-push subscription for one device of one user."""

    __tablename__ = "push_subscriptions"

    subscription_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    endpoint = db.Column(db.String(500), unique=True, nullable=False)
    keys = db.Column(db.JSON, nullable=False, default=dict)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    user = db.relationship("User")

    def subscription_info(self) -> dict[str, object]:
        return {"endpoint": self.endpoint, "keys": self.keys or {}}
