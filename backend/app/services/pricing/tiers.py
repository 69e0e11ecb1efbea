"""Shared threshold tables and money rounding for the pricing engine."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence

from app.core.config import settings
from app.services.pricing.reasons import PricingReason

CENT = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")


def to_decimal(value) -> Decimal:
    """Coerce a price-like value. Raises ValueError for non-numeric input."""
    if isinstance(value, bool):
        raise ValueError(f"Not a price: {value!r}")
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, (int, str)):
            result = Decimal(value)
        elif isinstance(value, float):
            result = Decimal(str(value))
        else:
            raise ValueError(f"Not a price: {value!r}")
    except InvalidOperation:
        raise ValueError(f"Not a price: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Not a price: {value!r}")
    return result


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def apply_multiplier(base: Decimal, multiplier: Decimal) -> Decimal:
    """base x multiplier rounded to cents.

    Discounts (multiplier <= 1) are clamped to [0, base]; surcharges are
    returned as computed.
    """
    price = round_money(base * multiplier)
    if multiplier <= ONE:
        return min(max(price, ZERO), base)
    return price


@dataclass(frozen=True)
class Tier:
    """One row of a threshold table.

    Matches when the measured value is >= ``above`` (or > when
    ``inclusive`` is False).
    """

    above: float
    multiplier: Decimal
    reason: PricingReason
    inclusive: bool = True

    def matches(self, value: float) -> bool:
        return value >= self.above if self.inclusive else value > self.above


def resolve_tier(value: float, tiers: Sequence[Tier]) -> Optional[Tier]:
    """First tier ``value`` reaches, tables being ordered high to low."""
    for tier in tiers:
        if tier.matches(value):
            return tier
    return None


# Minutes until today's opening, tickets
COVER_PREOPEN_TIERS = (
    Tier(180, Decimal("0.7"), PricingReason.COVERS_PREOPEN_3H_PLUS_30_OFF, inclusive=False),
    Tier(120, Decimal("0.9"), PricingReason.COVERS_PREOPEN_2_3H_10_OFF, inclusive=False),
    Tier(0, ONE, PricingReason.COVERS_PREOPEN_LT2H_BASE),
)
COVER_CLOSED_DAY = Tier(0, Decimal("0.7"), PricingReason.COVERS_CLOSED_NEXT_OPEN_30_OFF)
COVER_OPEN = Tier(0, ONE, PricingReason.COVERS_OPEN_HOURS_BASE)
COVER_AFTER_HOURS = Tier(0, ONE, PricingReason.COVERS_AFTER_HOURS_BASE)

# Minutes until today's opening, menu
MENU_PREOPEN_TIERS = (
    Tier(180, Decimal("0.7"), PricingReason.MENU_PREOPEN_3H_PLUS_30_OFF, inclusive=False),
    Tier(0, Decimal("0.9"), PricingReason.MENU_PREOPEN_LT3H_10_OFF, inclusive=False),
)
MENU_CLOSED = Tier(0, Decimal("0.7"), PricingReason.MENU_CLOSED_DAY_30_OFF)
MENU_OPEN = Tier(0, ONE, PricingReason.MENU_OPEN_HOURS_BASE)

# Hours until event start, menu (never above base)
EVENT_MENU_TIERS = (
    Tier(48, Decimal("0.7"), PricingReason.EVENT_MENU_48_PLUS_30_OFF),
    Tier(24, ONE, PricingReason.EVENT_MENU_24_48_BASE),
    Tier(0, ONE, PricingReason.EVENT_MENU_LT24_BASE),
)
EVENT_MENU_PASSED = Tier(0, ONE, PricingReason.EVENT_MENU_PASSED_BASE)
EVENT_MENU_OPEN = Tier(0, ONE, PricingReason.EVENT_MENU_OPEN_HOURS_BASE)


def grace_tier() -> Tier:
    return Tier(
        -settings.event_grace_period_hours,
        to_decimal(settings.event_grace_multiplier),
        PricingReason.EVENT_GRACE_PERIOD,
    )


def event_ticket_tiers() -> tuple:
    """Hours until event start, tickets. Grace values are read from settings."""
    return (
        Tier(48, Decimal("0.7"), PricingReason.EVENT_48_PLUS),
        Tier(24, ONE, PricingReason.EVENT_24_48),
        Tier(0, Decimal("1.2"), PricingReason.EVENT_LESS_24),
        grace_tier(),
    )
