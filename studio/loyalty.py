"""Loyalty settlement applied when a session is completed.

:func:`apply_settlement` only computes; the booking service writes the result
inside the same transaction that marks the booking Completed.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from .models import utc_now
from .pricing import LoyaltySettings, round_down, select_tier

COMPLETED = "Completed"


@dataclass(frozen=True)
class ClientDelta:
    loyalty_points: int
    total_bookings: int
    total_spent: int
    last_booking_at: datetime
    loyalty_tier: str | None = None


@dataclass(frozen=True)
class ReferrerDelta:
    referral_code: str
    loyalty_points: int


@dataclass(frozen=True)
class LedgerEntry:
    description: str
    amount: int
    transaction_type: str = "Income"


@dataclass(frozen=True)
class Settlement:
    points_earned: int
    client_delta: ClientDelta
    referrer_delta: ReferrerDelta | None = None
    ledger_entry: LedgerEntry | None = None


def points_for(amount: int, settings: LoyaltySettings) -> int:
    # A negative total never takes points away.
    return max(0, round_down(Decimal(amount) * settings.points_per_currency))


def apply_settlement(booking, client, settings: LoyaltySettings, *, referrer=None, now=None) -> Settlement | None:
    """Work out what completing ``booking`` does to the client's loyalty record.

    ``booking`` and ``client`` only need the attributes the models carry
    (``total_price``, ``remaining_balance``, ``referral_code_used``,
    ``booking_status``, ``booking_code``, ``client_name``; ``total_bookings``,
    ``loyalty_tier``). ``referrer`` is the client owning the referral code, if
    it still exists.

    Returns ``None`` for a booking that is already Completed.
    """
    if booking.booking_status == COMPLETED:
        return None

    now = now or utc_now()
    points_earned = points_for(booking.total_price, settings)
    client_points = points_earned

    referrer_delta = None
    if booking.referral_code_used and client.total_bookings == 0 and referrer is not None:
        bonus = settings.referral_bonus_points
        referrer_delta = ReferrerDelta(referral_code=referrer.referral_code, loyalty_points=bonus)
        # The referred client is credited the same bonus as the referrer.
        client_points += bonus

    new_total_bookings = client.total_bookings + 1
    tier = select_tier(settings.tiers, new_total_bookings)
    new_tier = tier.name if tier is not None and tier.name != client.loyalty_tier else None

    ledger_entry = None
    if booking.remaining_balance > 0:
        ledger_entry = LedgerEntry(
            description=f"Settlement {booking.booking_code} - {booking.client_name}",
            amount=booking.remaining_balance,
        )

    return Settlement(
        points_earned=points_earned,
        client_delta=ClientDelta(
            loyalty_points=client_points,
            total_bookings=1,
            total_spent=booking.total_price,
            last_booking_at=now,
            loyalty_tier=new_tier,
        ),
        referrer_delta=referrer_delta,
        ledger_entry=ledger_entry,
    )


def apply_delta(client, delta: ClientDelta) -> None:
    """Add ``delta`` onto ``client``; counters only ever grow here."""
    client.loyalty_points += delta.loyalty_points
    client.total_bookings += delta.total_bookings
    client.total_spent += delta.total_spent
    client.last_booking_at = delta.last_booking_at
    if delta.loyalty_tier is not None:
        client.loyalty_tier = delta.loyalty_tier
