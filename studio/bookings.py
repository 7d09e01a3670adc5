"""Booking lifecycle: creation, confirmation, completion, cancellation and rescheduling.

Pending -> Confirmed -> Completed, Pending/Confirmed -> Cancelled and
Confirmed -> Reschedule Requested -> Confirmed. Creation and completion are the
two transitions with money attached; both run inside
:func:`run_in_transaction` so the booking, the client and the ledger change
together or not at all.
"""
from __future__ import annotations

import logging
import random
import string
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import current_app

from .errors import (ForbiddenError, InvalidTransitionError, NotFoundError,
                     StudioError, TransactionFailedError, ValidationError)
from .extensions import db
from .loyalty import apply_delta, apply_settlement
from .models import (ActivityLog, Booking, Client, Package, Promo, SubAddOn,
                     Transaction, User, utc_now)
from .notifications import enqueue_staff_notification
from .pricing import (ClientHistory, DiscountInputs, PriceBreakdown, PromoRule,
                      Selection, calculate_dp_amount, compute_price, select_tier)
from .settings_store import load_loyalty_settings
from .storage import BlobStore, StoredBlob, UploadedFile, safe_public_id
from .transactional import run_in_transaction

logger = logging.getLogger(__name__)

PENDING = "Pending"
CONFIRMED = "Confirmed"
COMPLETED = "Completed"
CANCELLED = "Cancelled"
RESCHEDULE_REQUESTED = "Reschedule Requested"

CANCELLABLE = (PENDING, CONFIRMED)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def _random_code(prefix: str) -> str:
    return prefix + "".join(random.choices(CODE_ALPHABET, k=6))


def _parse_datetime(payload: Mapping[str, Any]) -> datetime:
    raw = payload.get("booking_date")
    if not raw and payload.get("date") and payload.get("time"):
        raw = f"{payload['date']}T{payload['time']}"
    if not raw:
        raise ValidationError("booking_date (or date and time) is required")
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError as exc:
        raise ValidationError("booking_date must be a valid ISO format datetime") from exc


def _parse_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer") from exc
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return number


@dataclass(frozen=True)
class BookingForm:
    name: str
    email: str
    phone: str | None
    booking_date: datetime | None
    package_id: int
    sub_package_id: int
    sub_addon_ids: tuple[int, ...]
    people: int
    payment_method: str | None
    notes: str | None
    discounts: DiscountInputs

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, for_quote: bool = False) -> "BookingForm":
        name = (payload.get("name") or "").strip()
        email = (payload.get("email") or "").strip().lower()
        phone = (payload.get("phone") or payload.get("whatsapp") or "").strip() or None

        if not for_quote:
            missing = [f for f, v in (("name", name), ("email", email), ("phone", phone)) if not v]
            if missing:
                raise ValidationError(f"{', '.join(missing)} required")
        if email and "@" not in email:
            raise ValidationError("email is not valid")
        if payload.get("package_id") is None or payload.get("sub_package_id") is None:
            raise ValidationError("package_id and sub_package_id are required")

        addon_ids = payload.get("sub_addon_ids") or []
        if not isinstance(addon_ids, list):
            raise ValidationError("sub_addon_ids must be a list")

        return cls(
            name=name,
            email=email,
            phone=phone,
            booking_date=None if for_quote else _parse_datetime(payload),
            package_id=_parse_int(payload.get("package_id"), "package_id"),
            sub_package_id=_parse_int(payload.get("sub_package_id"), "sub_package_id"),
            sub_addon_ids=tuple(_parse_int(i, "sub_addon_ids") for i in addon_ids),
            people=_parse_int(payload.get("people", 1), "people", minimum=1),
            payment_method=(payload.get("payment_method") or "").strip() or None,
            notes=(payload.get("notes") or "").strip() or None,
            discounts=DiscountInputs(
                promo_code=(payload.get("promo_code") or "").strip() or None,
                referral_code=(payload.get("referral_code") or "").strip() or None,
                use_points=bool(payload.get("use_points")),
            ),
        )


@dataclass
class PricedSelection:
    package: Package
    sub_package: Any
    sub_addons: list
    client: Client | None
    breakdown: PriceBreakdown

    def snapshot(self) -> dict[str, Any]:
        return {
            "package": {
                "id": self.package.package_id,
                "name": self.package.name,
                "type": self.package.package_type,
            },
            "sub_package": self.sub_package.to_dict(),
            "sub_addons": [sa.to_dict() for sa in self.sub_addons],
        }


def _price_selection(session, form: BookingForm, settings) -> PricedSelection:
    """Resolve the form against the current catalog and price it. Reads only."""
    package = session.get(Package, form.package_id)
    if package is None:
        raise ValidationError("The selected package was not found.")
    sub_package = next((sp for sp in package.sub_packages if sp.sub_package_id == form.sub_package_id), None)
    if sub_package is None:
        raise ValidationError("The selected package variant was not found.")

    sub_addons = []
    if form.sub_addon_ids:
        sub_addons = SubAddOn.query.filter(SubAddOn.sub_addon_id.in_(form.sub_addon_ids)).all()
        found = {sa.sub_addon_id for sa in sub_addons}
        missing = [i for i in form.sub_addon_ids if i not in found]
        if missing:
            raise ValidationError(f"Add-ons not found: {', '.join(map(str, missing))}")

    promos = [
        PromoRule(code=p.code, discount_percentage=p.discount_percentage, description=p.description, is_active=p.is_active)
        for p in Promo.query.filter_by(is_active=True).all()
    ]

    client = session.get(Client, form.email) if form.email else None

    referral_codes: set[str] = set()
    if form.discounts.referral_code:
        code = form.discounts.referral_code.upper()
        referrer = Client.query.filter_by(referral_code=code).first()
        if referrer is not None and referrer.email != form.email:
            referral_codes.add(referrer.referral_code)

    history = ClientHistory()
    if client is not None:
        history = ClientHistory(
            total_bookings=client.total_bookings,
            loyalty_points=client.loyalty_points,
            referred_by=client.referred_by,
            is_new_client=False,
        )

    selection = Selection(
        sub_package_price=sub_package.price,
        add_on_prices=tuple(sa.price for sa in sub_addons),
        participants=form.people,
        is_group_package=bool(package.is_group_package),
        per_person_rate=package.extra_person_rate,
    )
    breakdown = compute_price(
        selection,
        form.discounts,
        history,
        settings,
        promos=promos,
        referral_codes=referral_codes,
    )
    return PricedSelection(package, sub_package, sub_addons, client, breakdown)


def quote_price(form: BookingForm) -> PriceBreakdown:
    settings = load_loyalty_settings(db.session)
    return _price_selection(db.session, form, settings).breakdown


def _unique_code(prefix: str, column) -> str:
    while True:
        code = _random_code(prefix)
        if not db.session.query(column).filter(column == code).first():
            return code


def _create_booking_txn(form: BookingForm, proof: StoredBlob | None) -> tuple[Booking, PriceBreakdown]:
    session = db.session
    settings = load_loyalty_settings(session)
    priced = _price_selection(session, form, settings)
    breakdown = priced.breakdown
    now = utc_now()

    client = priced.client
    if client is None:
        client = Client(
            email=form.email,
            name=form.name,
            phone=form.phone,
            first_booking_at=now,
            last_booking_at=now,
            total_bookings=0,
            total_spent=0,
            loyalty_points=0,
            loyalty_tier="Newbie",
            referral_code=_unique_code("S8REF-", Client.referral_code),
        )
        session.add(client)
    if breakdown.referral_code_used:
        client.referred_by = breakdown.referral_code_used
    if breakdown.points_redeemed:
        client.loyalty_points -= breakdown.points_redeemed

    booking = Booking(
        booking_code=_unique_code("S8-", Booking.booking_code),
        client_name=form.name,
        client_email=form.email,
        client_phone=form.phone,
        booking_date=form.booking_date,
        package_id=priced.package.package_id,
        sub_package_id=priced.sub_package.sub_package_id,
        selection_data=priced.snapshot(),
        number_of_people=form.people,
        payment_method=form.payment_method,
        extra_person_charge=breakdown.extra_person_charge,
        subtotal=breakdown.subtotal,
        discount_amount=breakdown.discount_amount,
        discount_reason=breakdown.discount_reason,
        promo_code_used=breakdown.promo_code_used,
        referral_code_used=breakdown.referral_code_used,
        points_redeemed=breakdown.points_redeemed,
        points_value=breakdown.points_value,
        total_price=breakdown.final_price,
        amount_paid=0,
        remaining_balance=breakdown.final_price,
        booking_status=PENDING,
        payment_status="Pending",
        payment_proof_url=proof.url if proof else None,
        payment_proof_public_id=proof.public_id if proof else None,
        notes=form.notes,
    )
    session.add(booking)
    session.flush()
    return booking, breakdown


def _discard_orphan(blob_store: BlobStore, public_id: str) -> None:
    logger.warning("Booking transaction failed. Deleting orphaned blob: %s", public_id)
    try:
        blob_store.delete(public_id)
    except Exception:
        logger.exception("Failed to delete orphaned blob %s. Manual cleanup required.", public_id)
    else:
        logger.info("Deleted orphaned blob: %s", public_id)


def create_booking(
    form: BookingForm,
    proof: UploadedFile | None = None,
    blob_store: BlobStore | None = None,
) -> tuple[Booking, PriceBreakdown]:
    """Store the payment proof, then price and persist a Pending booking.

    The upload happens before the transaction. If the transaction fails the
    uploaded blob is deleted again; that cleanup never raises.
    """
    stored = None
    if proof is not None:
        if blob_store is None:
            raise ValidationError("payment proof uploads are not available")
        base = safe_public_id(form.name) or "proof"
        stored = blob_store.upload(proof, f"{base}-{_random_code('').lower()}")

    try:
        booking, breakdown = run_in_transaction(_create_booking_txn, form, stored)
    except StudioError:
        if stored is not None:
            _discard_orphan(blob_store, stored.public_id)
        raise
    except Exception as exc:
        if stored is not None:
            _discard_orphan(blob_store, stored.public_id)
        raise TransactionFailedError("Failed to create booking.", detail=str(exc)) from exc

    logger.info("Created booking %s for %s", booking.booking_code, booking.client_email)
    enqueue_staff_notification(
        "New booking received!",
        f"Session for {booking.client_name} on {booking.booking_date:%d %B %Y %H:%M}",
        "/admin/schedule",
    )
    return booking, breakdown


def _get_booking(booking_id: int) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found.")
    return booking


def _require_elevated(caller: User) -> None:
    if caller is None or not caller.is_elevated:
        raise ForbiddenError("You do not have permission to manage bookings.")


def log_activity(caller: User, action: str, details: str | None = None) -> None:
    db.session.add(ActivityLog(user_id=caller.user_id, user_name=caller.name, action=action, details=details))


def _confirm_txn(booking_id: int, caller: User) -> Booking:
    booking = _get_booking(booking_id)
    if booking.booking_status != PENDING:
        raise InvalidTransitionError(f"Only pending bookings can be confirmed (status is {booking.booking_status}).")

    package_type = booking.package.package_type if booking.package else None
    dp_amount = calculate_dp_amount(booking.total_price, package_type)
    booking.booking_status = CONFIRMED
    booking.amount_paid = dp_amount
    booking.remaining_balance = booking.total_price - dp_amount
    booking.payment_status = "Paid" if booking.remaining_balance <= 0 else "DP Paid"

    if dp_amount > 0:
        db.session.add(Transaction(
            description=f"Down payment {booking.booking_code} - {booking.client_name}",
            transaction_type="Income",
            amount=dp_amount,
            booking_id=booking.booking_id,
        ))
    log_activity(caller, f"Confirmed booking {booking.booking_code}", f"Down payment Rp {dp_amount:,} recorded.")
    return booking


def confirm_booking(booking_id: int, caller: User) -> Booking:
    _require_elevated(caller)
    booking = run_in_transaction(_confirm_txn, booking_id, caller)
    enqueue_staff_notification(
        "Booking confirmed",
        f"Booking {booking.booking_code} by {booking.client_name} has been confirmed.",
        "/staff/schedule",
    )
    return booking


def _complete_txn(booking_id: int, delivery_link: str, caller: User):
    session = db.session
    booking = _get_booking(booking_id)
    if booking.booking_status == COMPLETED:
        logger.warning("Attempted to complete an already completed session: %s", booking_id)
        return booking, None
    if booking.booking_status != CONFIRMED:
        raise InvalidTransitionError(f"Only confirmed bookings can be completed (status is {booking.booking_status}).")
    if not delivery_link:
        raise ValidationError("delivery_link is required")

    settings = load_loyalty_settings(session)
    client = session.get(Client, booking.client_email.lower())
    if client is None:
        raise NotFoundError("Client not found for booking completion.")

    referrer = None
    if booking.referral_code_used and client.total_bookings == 0:
        referrer = Client.query.filter_by(referral_code=booking.referral_code_used).first()

    settlement = apply_settlement(booking, client, settings, referrer=referrer)
    apply_delta(client, settlement.client_delta)
    if settlement.referrer_delta is not None:
        referrer.loyalty_points += settlement.referrer_delta.loyalty_points

    settled_amount = 0
    if settlement.ledger_entry is not None:
        settled_amount = settlement.ledger_entry.amount
        session.add(Transaction(
            description=settlement.ledger_entry.description,
            transaction_type=settlement.ledger_entry.transaction_type,
            amount=settled_amount,
            booking_id=booking.booking_id,
        ))

    booking.booking_status = COMPLETED
    booking.payment_status = "Paid"
    booking.amount_paid += max(booking.remaining_balance, 0)
    booking.remaining_balance = 0
    booking.delivery_link = delivery_link
    booking.points_earned = settlement.points_earned

    log_activity(caller, f"Completed session {booking.booking_code}", f"Settlement Rp {settled_amount:,} recorded.")
    return booking, settlement


def complete_booking(booking_id: int, delivery_link: str, caller: User) -> Booking:
    """Complete a session and settle loyalty points.

    Completing an already completed booking returns it unchanged; the link
    is only required for the first completion.
    """
    _require_elevated(caller)
    delivery_link = (delivery_link or "").strip()
    booking, settlement = run_in_transaction(_complete_txn, booking_id, delivery_link, caller)
    if settlement is not None:
        enqueue_staff_notification(
            "Session completed",
            f"{booking.client_name} earned {settlement.points_earned} points for {booking.booking_code}.",
            "/admin/bookings",
        )
    return booking


def _cancel_txn(booking_id: int, caller: User) -> Booking:
    booking = _get_booking(booking_id)
    if booking.booking_status not in CANCELLABLE:
        raise InvalidTransitionError(f"A {booking.booking_status.lower()} booking cannot be cancelled.")
    booking.booking_status = CANCELLED
    log_activity(caller, f"Cancelled booking {booking.booking_code}", f"Client: {booking.client_name}")
    return booking


def cancel_booking(booking_id: int, caller: User) -> Booking:
    _require_elevated(caller)
    return run_in_transaction(_cancel_txn, booking_id, caller)


def _request_reschedule_txn(booking_code: str, email: str, new_date: datetime) -> Booking:
    booking = Booking.query.filter_by(booking_code=booking_code.upper()).first()
    if booking is None:
        raise NotFoundError("Booking not found.")
    if booking.client_email.lower() != email.lower():
        raise ForbiddenError("This booking belongs to a different client.")
    if booking.booking_status != CONFIRMED:
        raise InvalidTransitionError("Only confirmed bookings can be rescheduled.")
    booking.booking_status = RESCHEDULE_REQUESTED
    booking.reschedule_request_date = new_date
    return booking


def request_reschedule(booking_code: str, email: str, new_date: datetime) -> Booking:
    booking = run_in_transaction(_request_reschedule_txn, booking_code, email, new_date)
    enqueue_staff_notification(
        "Reschedule requested",
        f"Client {booking.client_name} asked to move {booking.booking_code} to {new_date:%d %B %Y %H:%M}.",
        "/admin/schedule",
    )
    return booking


def _confirm_reschedule_txn(booking_id: int, caller: User) -> Booking:
    booking = _get_booking(booking_id)
    if booking.booking_status != RESCHEDULE_REQUESTED or booking.reschedule_request_date is None:
        raise InvalidTransitionError("This booking has no pending reschedule request.")
    booking.booking_date = booking.reschedule_request_date
    booking.reschedule_request_date = None
    booking.booking_status = CONFIRMED
    log_activity(caller, f"Rescheduled booking {booking.booking_code}", f"New date: {booking.booking_date.isoformat()}")
    return booking


def confirm_reschedule(booking_id: int, caller: User) -> Booking:
    _require_elevated(caller)
    booking = run_in_transaction(_confirm_reschedule_txn, booking_id, caller)
    enqueue_staff_notification(
        "Reschedule confirmed",
        f"The reschedule for {booking.client_name} has been confirmed.",
        "/admin/schedule",
    )
    return booking


def get_booking_by_code(booking_code: str) -> Booking:
    booking = Booking.query.filter_by(booking_code=booking_code.upper()).first()
    if booking is None:
        raise NotFoundError("Booking not found.")
    return booking


def client_loyalty_summary(email: str) -> dict[str, Any]:
    client = db.session.get(Client, email.strip().lower())
    if client is None:
        raise NotFoundError("Client not found.")

    settings = load_loyalty_settings(db.session)
    tier = select_tier(settings.tiers, client.total_bookings)
    upcoming = sorted(
        (t for t in settings.tiers if t.booking_threshold > client.total_bookings),
        key=lambda t: t.booking_threshold,
    )
    next_tier = upcoming[0] if upcoming else None
    return {
        "client": client.to_dict(),
        "points_value": client.loyalty_points * settings.currency_per_point,
        "current_tier": tier.to_dict() if tier else None,
        "next_tier": next_tier.to_dict() if next_tier else None,
        "bookings_to_next_tier": next_tier.booking_threshold - client.total_bookings if next_tier else None,
    }


def blob_store_for_app() -> BlobStore:
    return current_app.extensions["blob_store"]
