"""Read and write the loyalty configuration row."""
from __future__ import annotations

from collections.abc import Mapping
from decimal import InvalidOperation
from typing import Any

from .errors import ValidationError
from .models import SystemSettings
from .pricing import LoyaltySettings

SETTINGS_ID = 1


def load_loyalty_settings(session) -> LoyaltySettings:
    """Fetch the settings row once and merge it over the defaults."""
    row = session.get(SystemSettings, SETTINGS_ID)
    return LoyaltySettings.from_dict(row.loyalty_settings if row else None)


def parse_loyalty_settings(payload: Mapping[str, Any]) -> LoyaltySettings:
    try:
        settings = LoyaltySettings.from_dict(payload)
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise ValidationError(f"invalid loyalty settings: {exc}") from exc

    if settings.currency_per_point <= 0:
        raise ValidationError("currency_per_point must be positive")
    if settings.points_per_currency < 0:
        raise ValidationError("points_per_currency must not be negative")
    if settings.referral_bonus_points < 0 or settings.first_booking_referral_discount < 0:
        raise ValidationError("referral amounts must not be negative")
    names = [tier.name for tier in settings.tiers]
    if len(set(names)) != len(names):
        raise ValidationError("tier names must be unique")
    for tier in settings.tiers:
        if tier.booking_threshold < 0 or not 0 <= tier.discount_percentage <= 100:
            raise ValidationError(f"tier {tier.name!r} has an invalid threshold or percentage")
    return settings


def save_loyalty_settings(session, settings: LoyaltySettings) -> SystemSettings:
    row = session.get(SystemSettings, SETTINGS_ID)
    if row is None:
        row = SystemSettings(settings_id=SETTINGS_ID)
        session.add(row)
    row.loyalty_settings = settings.to_dict()
    return row
