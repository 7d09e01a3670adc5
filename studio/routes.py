"""HTTP routes for the studio booking backend."""
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import bookings
from .auth import authenticate, build_token, current_user, require_roles
from .errors import ValidationError
from .extensions import db
from .models import AddOn, Package
from .notifications import save_subscription
from .settings_store import load_loyalty_settings, parse_loyalty_settings, save_loyalty_settings
from .storage import decode_base64_file

bp = Blueprint("api", __name__)


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database."""
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


@bp.post("/auth/login")
def login() -> tuple[dict[str, object], int]:
    """Authenticate a staff member by email/password and return an access token.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            email:
              type: string
            password:
              type: string
    responses:
      200:
        description: Login successful, returns access token
      400:
        description: Missing email or password
      401:
        description: Invalid credentials
    """
    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return (
            jsonify({"error": "invalid_payload", "message": "email and password are required"}),
            400,
        )

    user = authenticate(email, password)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update last login timestamp", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"token": build_token(user), "user": user.to_dict_basic()}), 200


@bp.get("/packages")
def list_packages() -> tuple[dict[str, object], int]:
    """List packages with their sub-packages for the booking form."""
    try:
        packages = Package.query.order_by(Package.package_id).all()
        return jsonify({"packages": [p.to_dict() for p in packages]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch packages", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/addons")
def list_addons() -> tuple[dict[str, object], int]:
    try:
        addons = AddOn.query.order_by(AddOn.addon_id).all()
        return jsonify({"addons": [a.to_dict() for a in addons]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch add-ons", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/bookings/quote")
def quote_booking() -> tuple[dict[str, object], int]:
    """Price a selection without booking it.

    Takes the same body as ``POST /bookings``; name, phone and date are
    optional here. The email, when given, is used to look up loyalty history.
    """
    payload = request.get_json(silent=True) or {}
    form = bookings.BookingForm.from_payload(payload, for_quote=True)
    breakdown = bookings.quote_price(form)
    return jsonify({"price": breakdown.to_dict()}), 200


@bp.post("/bookings")
def create_booking() -> tuple[dict[str, object], int]:
    """Create a public booking.
    ---
    tags:
      - Bookings
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
            email:
              type: string
            phone:
              type: string
            date:
              type: string
              format: date
            time:
              type: string
            package_id:
              type: integer
            sub_package_id:
              type: integer
            sub_addon_ids:
              type: array
              items:
                type: integer
            people:
              type: integer
            promo_code:
              type: string
            referral_code:
              type: string
            use_points:
              type: boolean
            payment_method:
              type: string
            payment_proof:
              type: object
              properties:
                base64:
                  type: string
                mimeType:
                  type: string
          required:
            - name
            - email
            - phone
            - package_id
            - sub_package_id
    responses:
      201:
        description: Booking created in Pending state
      400:
        description: Invalid payload or the selection no longer exists
      500:
        description: The booking transaction failed
    """
    payload = request.get_json(silent=True) or {}
    form = bookings.BookingForm.from_payload(payload)
    proof = decode_base64_file(payload.get("payment_proof"))

    booking, breakdown = bookings.create_booking(form, proof, bookings.blob_store_for_app())
    return (
        jsonify({
            "message": "Booking created successfully",
            "booking_code": booking.booking_code,
            "status": booking.booking_status,
            "payment_proof_url": booking.payment_proof_url,
            "price": breakdown.to_dict(),
        }),
        201,
    )


@bp.get("/bookings/<string:booking_code>/status")
def get_booking_status(booking_code: str) -> tuple[dict[str, object], int]:
    """Public status lookup by booking code."""
    booking = bookings.get_booking_by_code(booking_code)
    return jsonify({"booking": booking.to_status_dict()}), 200


@bp.post("/bookings/<string:booking_code>/reschedule")
def request_reschedule(booking_code: str) -> tuple[dict[str, object], int]:
    """Client asks to move a confirmed session.

    Body: ``email`` of the client who booked and the ``new_date`` (ISO).
    """
    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    raw_date = payload.get("new_date")
    if not email or not raw_date:
        raise ValidationError("email and new_date are required")
    try:
        new_date = datetime.fromisoformat(str(raw_date))
    except ValueError as exc:
        raise ValidationError("new_date must be a valid ISO format datetime") from exc

    booking = bookings.request_reschedule(booking_code, email, new_date)
    return jsonify({"booking": booking.to_status_dict()}), 200


@bp.post("/bookings/<int:booking_id>/confirm")
def confirm_booking(booking_id: int) -> tuple[dict[str, object], int]:
    """Confirm a pending booking and record its down payment (admin/staff)."""
    caller = require_roles("admin", "staff")
    booking = bookings.confirm_booking(booking_id, caller)
    return jsonify({"booking": booking.to_dict()}), 200


@bp.post("/bookings/<int:booking_id>/complete")
def complete_booking(booking_id: int) -> tuple[dict[str, object], int]:
    """Mark a session completed, settle the balance and award loyalty points.
    ---
    tags:
      - Bookings
    security:
      - Bearer: []
    parameters:
      - in: path
        name: booking_id
        required: true
        schema:
          type: integer
      - in: body
        name: body
        required: true
        schema:
          properties:
            delivery_link:
              type: string
    responses:
      200:
        description: Booking completed, or already completed (unchanged)
      400:
        description: delivery_link missing
      401:
        description: Authentication required
      403:
        description: Caller is not admin or staff
      404:
        description: Booking or client not found
      409:
        description: Booking is not confirmed
      500:
        description: The completion transaction failed
    """
    caller = require_roles("admin", "staff")
    payload = request.get_json(silent=True) or {}
    booking = bookings.complete_booking(booking_id, payload.get("delivery_link"), caller)
    return jsonify({"booking": booking.to_dict()}), 200


@bp.post("/bookings/<int:booking_id>/cancel")
def cancel_booking(booking_id: int) -> tuple[dict[str, object], int]:
    caller = require_roles("admin", "staff")
    booking = bookings.cancel_booking(booking_id, caller)
    return jsonify({"booking": booking.to_dict()}), 200


@bp.post("/bookings/<int:booking_id>/reschedule/confirm")
def confirm_reschedule(booking_id: int) -> tuple[dict[str, object], int]:
    caller = require_roles("admin", "staff")
    booking = bookings.confirm_reschedule(booking_id, caller)
    return jsonify({"booking": booking.to_dict()}), 200


@bp.get("/clients/<string:email>/loyalty")
def get_client_loyalty(email: str) -> tuple[dict[str, object], int]:
    """Loyalty summary for a client: points, their rupiah value and tier progress."""
    try:
        summary = bookings.client_loyalty_summary(email)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch loyalty summary", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    return jsonify(summary), 200


@bp.get("/settings/loyalty")
def get_loyalty_settings() -> tuple[dict[str, object], int]:
    settings = load_loyalty_settings(db.session)
    return jsonify({"loyalty_settings": settings.to_dict()}), 200


@bp.put("/settings/loyalty")
def update_loyalty_settings() -> tuple[dict[str, object], int]:
    """Replace the loyalty configuration (admin only)."""
    caller = require_roles("admin")
    payload = request.get_json(silent=True) or {}
    settings = parse_loyalty_settings(payload)

    try:
        save_loyalty_settings(db.session, settings)
        bookings.log_activity(caller, "Updated loyalty settings")
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to save loyalty settings", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"loyalty_settings": settings.to_dict()}), 200


@bp.post("/push-subscriptions")
def create_push_subscription() -> tuple[dict[str, object], int]:
    """Store a browser push subscription for the signed-in user."""
    user = current_user()
    payload = request.get_json(silent=True) or {}
    subscription = payload.get("subscription") or {}
    if not subscription.get("endpoint") or not (subscription.get("keys") or {}).get("p256dh"):
        raise ValidationError("subscription with endpoint and keys is required")

    try:
        save_subscription(user, subscription)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to save push subscription", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"message": "Subscription saved successfully."}), 201
