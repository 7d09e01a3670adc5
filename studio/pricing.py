"""Booking price calculation.

Everything in this module is pure: no database access and no clock. The
booking service resolves catalog rows, promos and referral codes, then hands
plain values to :func:`compute_price` and stores the resulting
:class:`PriceBreakdown` as a whole.

Amounts are whole rupiah. Percentages and point conversions go through
``Decimal`` and are rounded half-up.
"""
from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any

BASE_PARTICIPANTS = 2
DEFAULT_EXTRA_PERSON_RATE = 15000

# Down payment for small studio sessions.
STUDIO_FLAT_DP = 35000
STUDIO_FLAT_DP_LIMIT = 150000


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_down(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_FLOOR))


@dataclass(frozen=True)
class LoyaltyTier:
    name: str
    booking_threshold: int
    discount_percentage: Decimal

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LoyaltyTier":
        return cls(
            name=str(data["name"]),
            booking_threshold=int(data["booking_threshold"]),
            discount_percentage=_to_decimal(data["discount_percentage"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "booking_threshold": self.booking_threshold,
            "discount_percentage": float(self.discount_percentage),
        }


DEFAULT_TIERS = (
    LoyaltyTier("Bronze", 3, Decimal("5")),
    LoyaltyTier("Silver", 10, Decimal("7")),
    LoyaltyTier("Gold", 20, Decimal("10")),
)


@dataclass(frozen=True)
class LoyaltySettings:
    """System-wide loyalty rules, fetched once per request and passed along."""

    points_per_currency: Decimal = Decimal("0.001")
    currency_per_point: int = 100
    referral_bonus_points: int = 50
    first_booking_referral_discount: int = 15000
    tiers: tuple[LoyaltyTier, ...] = DEFAULT_TIERS

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "LoyaltySettings":
        """Build settings from stored JSON, falling back to defaults per key."""
        data = data or {}
        defaults = cls()
        tiers = data.get("tiers")
        return cls(
            points_per_currency=_to_decimal(data.get("points_per_currency", defaults.points_per_currency)),
            currency_per_point=int(data.get("currency_per_point", defaults.currency_per_point)),
            referral_bonus_points=int(data.get("referral_bonus_points", defaults.referral_bonus_points)),
            first_booking_referral_discount=int(
                data.get("first_booking_referral_discount", defaults.first_booking_referral_discount)
            ),
            tiers=tuple(LoyaltyTier.from_dict(t) for t in tiers) if tiers is not None else defaults.tiers,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "points_per_currency": float(self.points_per_currency),
            "currency_per_point": self.currency_per_point,
            "referral_bonus_points": self.referral_bonus_points,
            "first_booking_referral_discount": self.first_booking_referral_discount,
            "tiers": [tier.to_dict() for tier in self.tiers],
        }


@dataclass(frozen=True)
class PromoRule:
    code: str
    discount_percentage: Decimal
    description: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class Selection:
    """What the client picked, already resolved against the catalog."""

    sub_package_price: int
    add_on_prices: tuple[int, ...] = ()
    participants: int = 1
    is_group_package: bool = False
    per_person_rate: int = DEFAULT_EXTRA_PERSON_RATE


@dataclass(frozen=True)
class DiscountInputs:
    promo_code: str | None = None
    referral_code: str | None = None
    use_points: bool = False


@dataclass(frozen=True)
class ClientHistory:
    """The parts of a client record pricing depends on. New clients use the defaults."""

    total_bookings: int = 0
    loyalty_points: int = 0
    referred_by: str | None = None
    # False once any client record exists, even with no completed booking.
    is_new_client: bool = True

    @property
    def is_first_booking(self) -> bool:
        return self.is_new_client and self.total_bookings == 0 and not self.referred_by


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: int
    extra_person_charge: int
    discount_amount: int
    points_value: int
    points_redeemed: int
    final_price: int
    discount_reason: str = ""
    discount_kind: str | None = None
    promo_code_used: str | None = None
    referral_code_used: str | None = None
    tier_name: str | None = None
    add_on_total: int = field(default=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "extra_person_charge": self.extra_person_charge,
            "add_on_total": self.add_on_total,
            "discount_amount": self.discount_amount,
            "discount_reason": self.discount_reason,
            "discount_kind": self.discount_kind,
            "promo_code_used": self.promo_code_used,
            "referral_code_used": self.referral_code_used,
            "tier_name": self.tier_name,
            "points_redeemed": self.points_redeemed,
            "points_value": self.points_value,
            "final_price": self.final_price,
        }


def select_tier(tiers: Iterable[LoyaltyTier], booking_count: int) -> LoyaltyTier | None:
    """Return the highest-threshold tier that ``booking_count`` reaches."""
    for tier in sorted(tiers, key=lambda t: t.booking_threshold, reverse=True):
        if booking_count >= tier.booking_threshold:
            return tier
    return None


def extra_person_charge(selection: Selection) -> int:
    if not selection.is_group_package:
        return 0
    return max(0, selection.participants - BASE_PARTICIPANTS) * selection.per_person_rate


def _match_promo(promos: Iterable[PromoRule], code: str | None) -> PromoRule | None:
    if not code or not code.strip():
        return None
    wanted = code.strip().upper()
    for promo in promos:
        if promo.is_active and promo.code.upper() == wanted:
            return promo
    return None


def compute_price(
    selection: Selection,
    discounts: DiscountInputs,
    client: ClientHistory,
    settings: LoyaltySettings,
    *,
    promos: Iterable[PromoRule] = (),
    referral_codes: Collection[str] = (),
) -> PriceBreakdown:
    """Price one booking.

    ``referral_codes`` holds the codes that belong to clients other than the
    one booking; a referral code outside it is ignored, as is an unknown or
    inactive promo code. Exactly one of promo, referral or tier discount can
    apply, in that order of precedence. Point redemption comes after and is
    capped at what is left to pay.
    """
    extra = extra_person_charge(selection)
    add_on_total = sum(selection.add_on_prices)
    subtotal = selection.sub_package_price + add_on_total + extra

    discount_amount = 0
    discount_reason = ""
    discount_kind = None
    promo_code_used = None
    referral_code_used = None
    tier_name = None

    promo = _match_promo(promos, discounts.promo_code)
    referral = (discounts.referral_code or "").strip().upper()
    if promo is not None:
        discount_amount = round_half_up(Decimal(subtotal) * _to_decimal(promo.discount_percentage) / 100)
        discount_reason = promo.description or f"Promo {promo.code}"
        discount_kind = "promo"
        promo_code_used = promo.code
    elif client.is_first_booking and referral and referral in referral_codes:
        discount_amount = settings.first_booking_referral_discount
        discount_reason = "Referral discount"
        discount_kind = "referral"
        referral_code_used = referral
    elif client.total_bookings > 0:
        tier = select_tier(settings.tiers, client.total_bookings)
        if tier is not None:
            discount_amount = round_half_up(Decimal(subtotal) * tier.discount_percentage / 100)
            discount_reason = f"Tier {tier.name} discount ({tier.discount_percentage.normalize():f}%)"
            discount_kind = "tier"
            tier_name = tier.name

    points_value = 0
    points_redeemed = 0
    if discounts.use_points and client.loyalty_points > 0:
        rate = settings.currency_per_point
        points_value = min(subtotal - discount_amount, client.loyalty_points * rate)
        points_redeemed = round_half_up(Decimal(points_value) / rate)
        points_note = f"{points_redeemed:,} points"
        discount_reason = f"{discount_reason} & {points_note}" if discount_reason else points_note

    return PriceBreakdown(
        subtotal=subtotal,
        extra_person_charge=extra,
        add_on_total=add_on_total,
        discount_amount=discount_amount,
        points_value=points_value,
        points_redeemed=points_redeemed,
        final_price=subtotal - discount_amount - points_value,
        discount_reason=discount_reason,
        discount_kind=discount_kind,
        promo_code_used=promo_code_used,
        referral_code_used=referral_code_used,
        tier_name=tier_name,
    )


def calculate_dp_amount(total_price: int, package_type: str | None) -> int:
    """Down payment recorded when a booking is confirmed."""
    if (package_type or "Studio") == "Outdoor" or total_price > STUDIO_FLAT_DP_LIMIT:
        return round_half_up(Decimal(total_price) / 2)
    return min(STUDIO_FLAT_DP, max(total_price, 0))
