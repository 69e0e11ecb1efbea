"""Dynamic pricing engine.

Pure functions mapping {base price, schedule or event timing, now} to a
tagged result: ``Priced(amount, reason)`` or ``Blocked(reason)`` when the
sale must not happen (event ticket past its grace period).

Four variants, dispatched on ``PricingKind``:

- COVER: general tickets, minutes until the venue opens on the target day
- MENU: menu items on regular days, same idea with menu multipliers
- EVENT_TICKET: hours until the event starts, surcharges allowed
- EVENT_MENU: hours until the event starts, never above base

Bad input (malformed schedule, non-numeric price) never raises: the
variant logs and falls back to the base price so a sale is not blocked
by a pricing bug.
"""

import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union

from app.services.pricing import clock
from app.services.pricing.reasons import PricingReason
from app.services.pricing.tiers import (
    COVER_AFTER_HOURS,
    COVER_CLOSED_DAY,
    COVER_OPEN,
    COVER_PREOPEN_TIERS,
    EVENT_MENU_OPEN,
    EVENT_MENU_PASSED,
    EVENT_MENU_TIERS,
    MENU_CLOSED,
    MENU_OPEN,
    MENU_PREOPEN_TIERS,
    ZERO,
    Tier,
    apply_multiplier,
    event_ticket_tiers,
    grace_tier,
    resolve_tier,
    to_decimal,
)

logger = logging.getLogger(__name__)


class PricingKind(str, Enum):
    COVER = "cover"
    MENU = "menu"
    EVENT_TICKET = "event_ticket"
    EVENT_MENU = "event_menu"


@dataclass(frozen=True)
class Priced:
    amount: Decimal
    reason: Optional[PricingReason]
    base_price: Decimal

    is_blocked = False

    @property
    def dynamic_applied(self) -> bool:
        return self.amount != self.base_price


@dataclass(frozen=True)
class Blocked:
    reason: PricingReason

    is_blocked = True


PricingResult = Union[Priced, Blocked]


def _priced(base: Decimal, tier: Tier) -> Priced:
    return Priced(apply_multiplier(base, tier.multiplier), tier.reason, base)


def _fallback(base: Any) -> Priced:
    try:
        amount = max(to_decimal(base), ZERO)
    except ValueError:
        amount = ZERO
    return Priced(amount, PricingReason.PRICING_FALLBACK_BASE, amount)


def never_raises(func):
    """Turn pricing errors into a logged base-price fallback."""

    @functools.wraps(func)
    def wrapper(base_price, *args, **kwargs):
        try:
            return func(base_price, *args, **kwargs)
        except (ValueError, TypeError, KeyError, AttributeError, InvalidOperation) as e:
            logger.warning(f"{func.__name__} fell back to base price {base_price!r}: {e}")
            return _fallback(base_price)

    return wrapper


# ============================================================================
# Variants
# ============================================================================


@never_raises
def price_cover(
    base_price,
    open_days: Sequence[str],
    open_hours: Sequence[Mapping],
    target_date: clock.DateLike,
    now: datetime,
) -> Priced:
    """General ticket price by minutes until the venue opens on ``target_date``."""
    base = to_decimal(base_price)
    if base <= ZERO:
        return Priced(ZERO, None, ZERO)

    now = clock.ensure_utc(now)
    day = clock.local_day(target_date)
    weekday = clock.weekday_name(day)
    hours = clock.hours_for(open_hours, weekday)
    if weekday not in (open_days or ()) or hours is None:
        return _priced(base, COVER_CLOSED_DAY)

    open_utc, close_utc = clock.open_window(day, hours["open"], hours["close"])
    if open_utc <= now < close_utc:
        return _priced(base, COVER_OPEN)

    tier = resolve_tier(clock.minutes_until(open_utc, now), COVER_PREOPEN_TIERS)
    # Today's window already closed
    return _priced(base, tier or COVER_AFTER_HOURS)


@never_raises
def price_menu(
    base_price,
    open_days: Sequence[str],
    open_hours: Sequence[Mapping],
    target_date: clock.DateLike,
    now: datetime,
) -> Priced:
    """Menu price on a regular (non-event) day.

    Closed weekday and after-hours are both 30% off; before opening it is
    30% off from 3h out and 10% off inside the last 3h.
    """
    base = to_decimal(base_price)
    if base <= ZERO:
        return Priced(ZERO, None, ZERO)

    now = clock.ensure_utc(now)
    day = clock.local_day(target_date)
    weekday = clock.weekday_name(day)
    hours = clock.hours_for(open_hours, weekday)
    if weekday not in (open_days or ()) or hours is None:
        return _priced(base, MENU_CLOSED)

    open_utc, close_utc = clock.open_window(day, hours["open"], hours["close"])
    if open_utc <= now < close_utc:
        return _priced(base, MENU_OPEN)

    tier = resolve_tier(clock.minutes_until(open_utc, now), MENU_PREOPEN_TIERS)
    return _priced(base, tier or MENU_CLOSED)


@never_raises
def price_event_ticket(
    base_price,
    event_date: clock.DateLike,
    event_open_hours: Optional[Mapping],
    now: datetime,
    dynamic_enabled: bool = True,
    is_free: bool = False,
) -> PricingResult:
    """Event ticket price by whole hours until the event starts.

    The grace surcharge applies even with dynamic pricing disabled; past
    the grace period every ticket, free ones included, is blocked.
    """
    now = clock.ensure_utc(now)
    hours_left = clock.hours_until(clock.event_start(event_date, event_open_hours), now)
    grace = grace_tier()

    if not grace.matches(hours_left):
        return Blocked(PricingReason.EVENT_EXPIRED)

    if is_free:
        return Priced(ZERO, PricingReason.FREE_TICKET_NO_DP, ZERO)

    base = to_decimal(base_price)
    if base <= ZERO:
        return Priced(ZERO, None, ZERO)

    if not dynamic_enabled:
        if hours_left >= 0:
            return Priced(base, PricingReason.TICKET_DP_DISABLED_BASE, base)
        return _priced(base, grace)

    return _priced(base, resolve_tier(hours_left, event_ticket_tiers()))


@never_raises
def price_event_menu(
    base_price,
    event_date: clock.DateLike,
    event_open_hours: Optional[Mapping],
    now: datetime,
) -> Priced:
    """Menu price on an event day. Discounts only, base while the event runs."""
    base = to_decimal(base_price)
    if base <= ZERO:
        return Priced(ZERO, None, ZERO)

    now = clock.ensure_utc(now)
    window = clock.event_window(event_date, event_open_hours)
    if window is not None:
        start, end = window
        if start <= now < end:
            return _priced(base, EVENT_MENU_OPEN)
        if now >= end:
            return _priced(base, EVENT_MENU_PASSED)

    hours_left = clock.hours_until(clock.event_start(event_date, event_open_hours), now)
    result = _priced(base, resolve_tier(hours_left, EVENT_MENU_TIERS) or EVENT_MENU_PASSED)
    if result.amount > base:
        return Priced(base, result.reason, base)
    return result


# ============================================================================
# Dispatch
# ============================================================================


def price_for(
    kind: PricingKind,
    base_price,
    now: datetime,
    *,
    target_date: Optional[clock.DateLike] = None,
    open_days: Sequence[str] = (),
    open_hours: Sequence[Mapping] = (),
    event_date: Optional[clock.DateLike] = None,
    event_open_hours: Optional[Mapping] = None,
    dynamic_enabled: bool = True,
    is_free: bool = False,
) -> PricingResult:
    if kind is PricingKind.COVER:
        return price_cover(base_price, open_days, open_hours, target_date, now)
    if kind is PricingKind.MENU:
        return price_menu(base_price, open_days, open_hours, target_date, now)
    if kind is PricingKind.EVENT_TICKET:
        return price_event_ticket(
            base_price, event_date, event_open_hours, now,
            dynamic_enabled=dynamic_enabled, is_free=is_free,
        )
    if kind is PricingKind.EVENT_MENU:
        return price_event_menu(base_price, event_date, event_open_hours, now)
    raise ValueError(f"Unknown pricing kind {kind!r}")


# ============================================================================
# Policy entry points (model objects in, result out)
# ============================================================================


def price_ticket(ticket, club, target_date: clock.DateLike, now: datetime, event=None) -> PricingResult:
    """Price one ticket for ``target_date`` (the event's date for event tickets)."""
    if event is not None:
        return price_for(
            PricingKind.EVENT_TICKET,
            ticket.price,
            now,
            event_date=event.available_date,
            event_open_hours=event.open_hours,
            dynamic_enabled=ticket.dynamic_pricing_allowed,
            is_free=ticket.is_free,
        )

    if ticket.is_free:
        return Priced(ZERO, PricingReason.FREE_TICKET_NO_DP, ZERO)

    if not ticket.dynamic_pricing_enabled:
        return _static(ticket.price, PricingReason.TICKET_DP_DISABLED_BASE)

    return price_for(
        PricingKind.COVER,
        ticket.price,
        now,
        target_date=target_date,
        open_days=club.open_days,
        open_hours=club.open_hours,
    )


def price_menu_line(item, variant, club, target_date: clock.DateLike, now: datetime, event=None) -> Priced:
    """Price a menu item (or one of its variants) for ``target_date``.

    ``event`` is the club's event on that date, if any.
    """
    base_price = variant.price if variant is not None else item.price

    if item.has_variants and variant is None:
        return _static(base_price, PricingReason.MENU_PARENT_HAS_VARIANTS_NO_DP)
    if variant is not None and not variant.dynamic_pricing_enabled:
        return _static(base_price, PricingReason.MENU_VARIANT_DP_DISABLED)
    if variant is None and not item.dynamic_pricing_enabled:
        return _static(base_price, PricingReason.MENU_DP_DISABLED_BASE)

    if event is not None:
        return price_for(
            PricingKind.EVENT_MENU,
            base_price,
            now,
            event_date=event.available_date,
            event_open_hours=event.open_hours,
        )
    return price_for(
        PricingKind.MENU,
        base_price,
        now,
        target_date=target_date,
        open_days=club.open_days,
        open_hours=club.open_hours,
    )


def _static(base_price, reason: PricingReason) -> Priced:
    try:
        base = to_decimal(base_price if base_price is not None else 0)
    except ValueError:
        logger.warning(f"Invalid base price {base_price!r}, pricing at zero")
        return _fallback(0)
    if base <= ZERO:
        return Priced(ZERO, None, ZERO)
    return Priced(base, reason, base)
