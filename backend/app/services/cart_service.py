"""Cart Service - buyer cart lines and checkout validation.

A buyer has either a ticket cart or a menu cart, never both at once. Every
line shares one club and one night. Lines are priced live on read and
re-priced from the database at checkout; the client never supplies prices.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import CartItemNotFoundError, CartValidationError, CheckoutInProgressError
from app.models.cart import CartItem, CartItemKind
from app.models.club import Club
from app.models.event import Event
from app.models.menu import MenuItem, MenuItemVariant
from app.models.ticket import Ticket
from app.services.cart_lock_service import CartIdentity, CartLockManager, get_cart_lock_manager
from app.services.fee_service import CheckoutTotals, FeeKind, LineFees, allocate_totals, line_fees
from app.services.pricing import Priced, price_menu_line, price_ticket
from app.services.pricing.clock import ensure_utc, local_day, now_utc, today_local, weekday_name

logger = logging.getLogger(__name__)


# ============================================================================
# Priced cart snapshot
# ============================================================================


@dataclass
class PricedLine:
    """A cart line priced at checkout time (per-unit amounts)."""

    kind: CartItemKind
    cart_item_id: int
    item_id: int
    variant_id: Optional[int]
    event_id: Optional[int]
    name: str
    target_date: date
    quantity: int
    base_price: Decimal
    unit_price: Decimal
    reason: Optional[str]
    dynamic_applied: bool
    fees: LineFees

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "cart_item_id": self.cart_item_id,
            "item_id": self.item_id,
            "variant_id": self.variant_id,
            "event_id": self.event_id,
            "name": self.name,
            "target_date": self.target_date.isoformat(),
            "quantity": self.quantity,
            "base_price": str(self.base_price),
            "unit_price": str(self.unit_price),
            "reason": self.reason,
            "dynamic_applied": self.dynamic_applied,
            "platform_fee": str(self.fees.platform_fee),
            "club_receives": str(self.fees.club_receives),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PricedLine":
        unit_price = Decimal(data["unit_price"])
        return cls(
            kind=CartItemKind(data["kind"]),
            cart_item_id=data["cart_item_id"],
            item_id=data["item_id"],
            variant_id=data.get("variant_id"),
            event_id=data.get("event_id"),
            name=data["name"],
            target_date=date.fromisoformat(data["target_date"]),
            quantity=int(data["quantity"]),
            base_price=Decimal(data["base_price"]),
            unit_price=unit_price,
            reason=data.get("reason"),
            dynamic_applied=bool(data.get("dynamic_applied")),
            fees=LineFees(
                price=unit_price,
                platform_fee=Decimal(data["platform_fee"]),
                club_receives=Decimal(data["club_receives"]),
            ),
        )


@dataclass
class ValidatedCart:
    """A cart that passed checkout validation, with totals."""

    identity: CartIdentity
    kind: CartItemKind
    club_id: int
    club_name: str
    target_date: date
    is_event: bool
    lines: List[PricedLine]
    totals: CheckoutTotals
    oldest_line_at: Optional[datetime] = None

    @property
    def units(self) -> int:
        return sum(line.quantity for line in self.lines)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-able form kept in the checkout session and on the transaction row."""
        return {
            "user_id": self.identity.user_id,
            "session_id": self.identity.session_id,
            "kind": self.kind.value,
            "club_id": self.club_id,
            "club_name": self.club_name,
            "target_date": self.target_date.isoformat(),
            "is_event": self.is_event,
            "lines": [line.to_dict() for line in self.lines],
            "totals": self.totals.as_dict(),
        }


# ============================================================================
# Lookups
# ============================================================================


def find_event_for(db: Session, club_id: int, day: date) -> Optional[Event]:
    """The club's active event on ``day``, if any."""
    return db.query(Event).filter(
        Event.club_id == club_id,
        Event.available_date == day,
        Event.is_active.is_(True),
        Event.not_deleted(),
    ).order_by(Event.id).first()


def has_paid_event(db: Session, club_id: int, day: date) -> bool:
    """True when the club sells paid event tickets for ``day``."""
    return db.query(Ticket.id).join(Event, Ticket.event_id == Event.id).filter(
        Event.club_id == club_id,
        Event.available_date == day,
        Event.is_active.is_(True),
        Event.not_deleted(),
        Ticket.is_active.is_(True),
        Ticket.not_deleted(),
        Ticket.price > 0,
    ).first() is not None


def _owner_filter(identity: CartIdentity):
    if identity.user_id:
        return CartItem.user_id == identity.user_id
    return CartItem.session_id == identity.session_id


# ============================================================================
# Service
# ============================================================================


class CartService:
    """Cart operations for one request's database session."""

    def __init__(
        self,
        db: Session,
        lock_manager: Optional[CartLockManager] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.db = db
        self.locks = lock_manager or get_cart_lock_manager()
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_cart(self, identity: CartIdentity) -> List[CartItem]:
        return self.db.query(CartItem).filter(_owner_filter(identity)).order_by(
            CartItem.created_at, CartItem.id
        ).all()

    def is_empty(self, identity: CartIdentity) -> bool:
        return self.db.query(CartItem.id).filter(_owner_filter(identity)).first() is None

    def is_locked(self, identity: CartIdentity) -> bool:
        return self.locks.is_locked_smart(identity, lambda: self.is_empty(identity))

    def cart_summary(self, identity: CartIdentity, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Cart lines with their current dynamic price and a fee preview."""
        now = ensure_utc(now or self._clock())
        lines = self.get_cart(identity)
        result: Dict[str, Any] = {
            "items": [],
            "kind": lines[0].kind.value if lines else None,
            "club_id": lines[0].club_id if lines else None,
            "target_date": lines[0].target_date.isoformat() if lines else None,
            "locked": self.is_locked(identity),
            "expires_at": None,
            "totals": None,
        }
        if not lines:
            return result

        oldest = min(ensure_utc(line.created_at) for line in lines)
        result["expires_at"] = (oldest + self._max_age).isoformat()

        ticket_subtotal = Decimal("0")
        menu_subtotal = Decimal("0")
        is_event = False
        for line in lines:
            try:
                priced = self._price_line(line, now)
            except CartValidationError as e:
                result["items"].append(self._line_view(line, None, error=e.message))
                continue
            view = self._line_view(line, priced.unit_price, reason=priced.reason)
            view["base_price"] = float(priced.base_price)
            result["items"].append(view)
            if line.kind == CartItemKind.TICKET:
                ticket_subtotal += priced.line_total
                is_event = is_event or priced.event_id is not None
            else:
                menu_subtotal += priced.line_total

        result["totals"] = allocate_totals(ticket_subtotal, menu_subtotal, is_event=is_event).as_dict()
        return result

    def _line_view(self, line: CartItem, unit_price, reason=None, error=None) -> Dict[str, Any]:
        return {
            "id": line.id,
            "kind": line.kind.value,
            "name": self._line_name(line),
            "ticket_id": line.ticket_id,
            "menu_item_id": line.menu_item_id,
            "variant_id": line.variant_id,
            "target_date": line.target_date.isoformat(),
            "quantity": line.quantity,
            "unit_price": float(unit_price) if unit_price is not None else None,
            "dynamic_pricing_reason": reason,
            "error": error,
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_ticket(
        self,
        identity: CartIdentity,
        ticket_id: int,
        quantity: int = 1,
        target_date: Optional[date] = None,
    ) -> CartItem:
        now = ensure_utc(self._clock())
        self._ensure_unlocked(identity)
        lines = self._drop_if_expired(identity, now)

        ticket = self._get_ticket(ticket_id)
        if any(line.kind == CartItemKind.MENU for line in lines):
            raise CartValidationError(
                "Your cart has menu items. Clear it before adding tickets.", code="cart_type_conflict"
            )

        event = self._ticket_event(ticket)
        day = self._ticket_day(ticket, event, target_date)
        self._check_ticket_date(ticket, event, day, now)

        for line in lines:
            if line.club_id != ticket.club_id:
                raise CartValidationError("All tickets must be from the same club", code="mixed_club")
            if line.target_date != day:
                raise CartValidationError("All tickets must be for the same date", code="mixed_date")
            if line.ticket is not None and line.ticket.is_event_ticket != ticket.is_event_ticket:
                raise CartValidationError(
                    "Event tickets cannot be combined with general tickets", code="mixed_ticket_type"
                )

        existing = next(
            (l for l in lines if l.ticket_id == ticket.id and l.target_date == day), None
        )
        new_quantity = quantity + (existing.quantity if existing else 0)
        self._check_ticket_quantity(ticket, new_quantity)

        if existing:
            existing.quantity = new_quantity
            line = existing
        else:
            line = self._new_line(identity, CartItemKind.TICKET, ticket.club_id, day, quantity, now)
            line.ticket_id = ticket.id
            self.db.add(line)
        self.db.commit()
        self.db.refresh(line)
        logger.info(f"Cart {identity}: ticket {ticket.id} x{new_quantity} for {day}")
        return line

    def add_menu_item(
        self,
        identity: CartIdentity,
        menu_item_id: int,
        quantity: int = 1,
        target_date: Optional[date] = None,
        variant_id: Optional[int] = None,
    ) -> CartItem:
        now = ensure_utc(self._clock())
        self._ensure_unlocked(identity)
        lines = self._drop_if_expired(identity, now)

        item = self._get_menu_item(menu_item_id)
        if any(line.kind == CartItemKind.TICKET for line in lines):
            raise CartValidationError(
                "Your cart has tickets. Clear it before adding menu items.", code="cart_type_conflict"
            )
        variant = self._resolve_variant(item, variant_id)

        if target_date is None:
            raise CartValidationError("A date is required for menu items", code="date_required")
        day = local_day(target_date)
        if day < today_local(now):
            raise CartValidationError("Cannot order for a past date", code="past_date")

        for line in lines:
            if line.club_id != item.club_id:
                raise CartValidationError("All menu items must be from the same club", code="mixed_club")
            if line.target_date != day:
                raise CartValidationError("All menu items must be for the same date", code="mixed_date")

        existing = next(
            (
                l for l in lines
                if l.menu_item_id == item.id and l.variant_id == (variant.id if variant else None)
            ),
            None,
        )
        new_quantity = quantity + (existing.quantity if existing else 0)
        self._check_menu_quantity(item, new_quantity)

        if existing:
            existing.quantity = new_quantity
            line = existing
        else:
            line = self._new_line(identity, CartItemKind.MENU, item.club_id, day, quantity, now)
            line.menu_item_id = item.id
            line.variant_id = variant.id if variant else None
            self.db.add(line)
        self.db.commit()
        self.db.refresh(line)
        logger.info(f"Cart {identity}: menu item {item.id} x{new_quantity} for {day}")
        return line

    def update_quantity(self, identity: CartIdentity, cart_item_id: int, quantity: int) -> Optional[CartItem]:
        """Set a line's quantity. Zero removes the line (returns None)."""
        self._ensure_unlocked(identity)
        line = self._get_line(identity, cart_item_id)
        if quantity <= 0:
            self.db.delete(line)
            self.db.commit()
            return None

        if line.kind == CartItemKind.TICKET:
            self._check_ticket_quantity(self._get_ticket(line.ticket_id), quantity)
        else:
            self._check_menu_quantity(self._get_menu_item(line.menu_item_id), quantity)
        line.quantity = quantity
        self.db.commit()
        self.db.refresh(line)
        return line

    def remove_item(self, identity: CartIdentity, cart_item_id: int) -> None:
        self._ensure_unlocked(identity)
        line = self._get_line(identity, cart_item_id)
        self.db.delete(line)
        self.db.commit()

    def clear_cart(self, identity: CartIdentity, respect_lock: bool = True) -> int:
        """Delete every line. Checkout fulfillment clears while holding the lock."""
        if respect_lock:
            self._ensure_unlocked(identity)
        removed = self.db.query(CartItem).filter(_owner_filter(identity)).delete(
            synchronize_session=False
        )
        self.db.commit()
        if removed:
            logger.info(f"Cart {identity} cleared ({removed} lines)")
        return removed

    # ------------------------------------------------------------------
    # Checkout validation
    # ------------------------------------------------------------------

    def validate_for_checkout(self, identity: CartIdentity, now: Optional[datetime] = None) -> ValidatedCart:
        """Reload, check and price the cart. Raises CartValidationError."""
        now = ensure_utc(now or self._clock())
        lines = self.get_cart(identity)
        if not lines:
            raise CartValidationError("Cart is empty", code="cart_empty")

        oldest = min(ensure_utc(line.created_at) for line in lines)
        if now - oldest > self._max_age:
            self.clear_cart(identity, respect_lock=False)
            raise CartValidationError("Cart expired, please add your items again", code="cart_expired")

        kinds = {line.kind for line in lines}
        if len(kinds) > 1:
            raise CartValidationError("Cart mixes tickets and menu items", code="cart_type_conflict")
        if len({line.club_id for line in lines}) > 1:
            raise CartValidationError("All items must be from the same club", code="mixed_club")
        if len({line.target_date for line in lines}) > 1:
            raise CartValidationError("All items must be for the same date", code="mixed_date")

        club = self.db.get(Club, lines[0].club_id)
        if club is None or not club.is_active:
            raise CartValidationError("Club is not available", code="club_inactive")

        priced_lines: List[PricedLine] = []
        for line in lines:
            if line.kind == CartItemKind.TICKET:
                ticket = self._get_ticket(line.ticket_id)
                event = self._ticket_event(ticket)
                self._check_ticket_date(ticket, event, line.target_date, now)
                self._check_ticket_quantity(ticket, line.quantity)
            else:
                item = self._get_menu_item(line.menu_item_id)
                self._resolve_variant(item, line.variant_id)
                if line.target_date < today_local(now):
                    raise CartValidationError("Cannot order for a past date", code="past_date")
                self._check_menu_quantity(item, line.quantity)
            priced_lines.append(self._price_line(line, now, club=club))

        ticket_subtotal = sum(
            (p.line_total for p in priced_lines if p.kind == CartItemKind.TICKET), Decimal("0")
        )
        menu_subtotal = sum(
            (p.line_total for p in priced_lines if p.kind == CartItemKind.MENU), Decimal("0")
        )
        is_event = any(p.event_id is not None for p in priced_lines if p.kind == CartItemKind.TICKET)

        return ValidatedCart(
            identity=identity,
            kind=lines[0].kind,
            club_id=club.id,
            club_name=club.name,
            target_date=lines[0].target_date,
            is_event=is_event,
            lines=priced_lines,
            totals=allocate_totals(ticket_subtotal, menu_subtotal, is_event=is_event),
            oldest_line_at=oldest,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def _max_age(self) -> timedelta:
        return timedelta(minutes=settings.cart_max_age_minutes)

    def _ensure_unlocked(self, identity: CartIdentity) -> None:
        if self.is_locked(identity):
            raise CheckoutInProgressError("Cart is locked while a checkout is in progress")

    def _drop_if_expired(self, identity: CartIdentity, now: datetime) -> List[CartItem]:
        lines = self.get_cart(identity)
        if lines and now - min(ensure_utc(l.created_at) for l in lines) > self._max_age:
            logger.info(f"Cart {identity} expired, starting a new one")
            self.clear_cart(identity, respect_lock=False)
            return []
        return lines

    def _new_line(self, identity: CartIdentity, kind: CartItemKind, club_id: int,
                  day: date, quantity: int, now: datetime) -> CartItem:
        return CartItem(
            user_id=identity.user_id,
            session_id=identity.session_id,
            kind=kind,
            club_id=club_id,
            target_date=day,
            quantity=quantity,
            created_at=now,
            updated_at=now,
        )

    def _get_line(self, identity: CartIdentity, cart_item_id: int) -> CartItem:
        line = self.db.query(CartItem).filter(
            CartItem.id == cart_item_id, _owner_filter(identity)
        ).first()
        if line is None:
            raise CartItemNotFoundError("Cart item not found")
        return line

    def _get_ticket(self, ticket_id: Optional[int]) -> Ticket:
        ticket = self.db.get(Ticket, ticket_id) if ticket_id else None
        if ticket is None or ticket.is_deleted or not ticket.is_active:
            raise CartValidationError("Ticket is not available", code="item_inactive")
        if ticket.club is None or not ticket.club.is_active:
            raise CartValidationError("Club is not available", code="club_inactive")
        return ticket

    def _get_menu_item(self, menu_item_id: Optional[int]) -> MenuItem:
        item = self.db.get(MenuItem, menu_item_id) if menu_item_id else None
        if item is None or item.is_deleted or not item.is_active:
            raise CartValidationError("Menu item is not available", code="item_inactive")
        if item.club is None or not item.club.is_active:
            raise CartValidationError("Club is not available", code="club_inactive")
        return item

    def _resolve_variant(self, item: MenuItem, variant_id: Optional[int]) -> Optional[MenuItemVariant]:
        if not item.has_variants:
            if variant_id is not None:
                raise CartValidationError(f"{item.name} has no variants", code="variant_invalid")
            if item.price is None:
                raise CartValidationError(f"{item.name} has no price", code="item_inactive")
            return None
        if variant_id is None:
            raise CartValidationError(f"Choose a variant of {item.name}", code="variant_required")
        variant = self.db.get(MenuItemVariant, variant_id)
        if variant is None or variant.menu_item_id != item.id:
            raise CartValidationError("Variant not found", code="variant_invalid")
        if variant.is_deleted or not variant.is_active:
            raise CartValidationError("Variant is not available", code="item_inactive")
        return variant

    def _ticket_event(self, ticket: Ticket) -> Optional[Event]:
        if not ticket.is_event_ticket:
            return None
        event = ticket.event
        if event is None or event.is_deleted or not event.is_active:
            raise CartValidationError("Event is not available", code="event_inactive")
        return event

    def _ticket_day(self, ticket: Ticket, event: Optional[Event], target_date: Optional[date]) -> date:
        if event is not None:
            return event.available_date
        if ticket.is_free:
            if ticket.available_date is None:
                raise CartValidationError("Free ticket has no date", code="item_inactive")
            if target_date is not None and local_day(target_date) != ticket.available_date:
                raise CartValidationError(
                    "Free tickets are only valid on their date", code="invalid_date"
                )
            return ticket.available_date
        if target_date is None:
            raise CartValidationError("A date is required for general tickets", code="date_required")
        return local_day(target_date)

    def _check_ticket_date(self, ticket: Ticket, event: Optional[Event], day: date, now: datetime) -> None:
        today = today_local(now)
        if day < today:
            raise CartValidationError("Cannot buy tickets for a past date", code="past_date")

        if event is not None:
            if day != event.available_date:
                raise CartValidationError("Event tickets are only valid on the event date", code="invalid_date")
            if price_ticket(ticket, ticket.club, day, now, event=event).is_blocked:
                raise CartValidationError("This event has already ended", code="event_expired")
            return

        if ticket.is_free:
            if ticket.available_date != day:
                raise CartValidationError("Free tickets are only valid on their date", code="invalid_date")
            return

        if day > today + timedelta(days=settings.general_ticket_booking_window_days):
            raise CartValidationError(
                f"Tickets can be booked at most {settings.general_ticket_booking_window_days} days ahead",
                code="outside_booking_window",
            )
        club = ticket.club
        if weekday_name(day) not in (club.open_days or []):
            raise CartValidationError(f"{club.name} is closed on that day", code="club_closed")
        if has_paid_event(self.db, club.id, day):
            raise CartValidationError(
                "There is an event that night, buy an event ticket instead", code="event_night"
            )

    def _check_ticket_quantity(self, ticket: Ticket, quantity: int) -> None:
        if quantity <= 0:
            raise CartValidationError("Quantity must be at least 1", code="invalid_quantity")
        if quantity > ticket.max_per_person:
            raise CartValidationError(
                f"At most {ticket.max_per_person} of {ticket.name} per person", code="max_per_person"
            )
        if ticket.quantity is not None and quantity > ticket.quantity:
            raise CartValidationError(
                f"Only {ticket.quantity} of {ticket.name} left", code="insufficient_stock"
            )

    def _check_menu_quantity(self, item: MenuItem, quantity: int) -> None:
        if quantity <= 0:
            raise CartValidationError("Quantity must be at least 1", code="invalid_quantity")
        if quantity > item.max_per_person:
            raise CartValidationError(
                f"At most {item.max_per_person} of {item.name} per person", code="max_per_person"
            )

    def _line_name(self, line: CartItem) -> str:
        if line.kind == CartItemKind.TICKET:
            return line.ticket.name if line.ticket else "Ticket"
        name = line.menu_item.name if line.menu_item else "Menu item"
        if line.variant is not None:
            name = f"{name} - {line.variant.name}"
        return name

    def _price_line(self, line: CartItem, now: datetime, club: Optional[Club] = None) -> PricedLine:
        if line.kind == CartItemKind.TICKET:
            ticket = line.ticket
            club = club or ticket.club
            event = self._ticket_event(ticket)
            result = price_ticket(ticket, club, line.target_date, now, event=event)
            if result.is_blocked:
                raise CartValidationError("This event has already ended", code=str(result.reason))
            fee_kind = FeeKind.TICKET_EVENT if event is not None else FeeKind.TICKET_GENERAL
            item_id, variant_id, event_id = ticket.id, None, event.id if event else None
        else:
            item = line.menu_item
            club = club or item.club
            event = find_event_for(self.db, club.id, line.target_date)
            result = price_menu_line(item, line.variant, club, line.target_date, now, event=event)
            fee_kind = FeeKind.MENU
            item_id, variant_id, event_id = item.id, line.variant_id, event.id if event else None

        priced: Priced = result
        return PricedLine(
            kind=line.kind,
            cart_item_id=line.id,
            item_id=item_id,
            variant_id=variant_id,
            event_id=event_id,
            name=self._line_name(line),
            target_date=line.target_date,
            quantity=line.quantity,
            base_price=priced.base_price,
            unit_price=priced.amount,
            reason=str(priced.reason) if priced.reason is not None else None,
            dynamic_applied=priced.dynamic_applied,
            fees=line_fees(priced.amount, fee_kind),
        )


# ============================================================================
# Abandoned cart cleanup
# ============================================================================


class CartCleanupService:
    """Deletes cart lines older than the maximum cart age.

    Runs as a periodic background task. Carts whose owner holds a checkout
    lock are left alone.
    """

    def __init__(self, db: Session, lock_manager: Optional[CartLockManager] = None):
        self.db = db
        self.locks = lock_manager or get_cart_lock_manager()

    def cleanup_abandoned_carts(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = ensure_utc(now or now_utc())
        cutoff = now - timedelta(minutes=settings.cart_max_age_minutes)
        results: Dict[str, Any] = {"lines_removed": 0, "carts_skipped": 0, "errors": []}

        stale = self.db.query(CartItem).filter(CartItem.created_at < cutoff).all()
        if not stale:
            logger.debug("No abandoned cart lines found")
            return results

        owners = {(line.user_id, line.session_id) for line in stale}
        for user_id, session_id in owners:
            identity = CartIdentity(user_id=user_id, session_id=session_id)
            if self.locks.is_locked(identity):
                results["carts_skipped"] += 1
                continue
            try:
                removed = self.db.query(CartItem).filter(_owner_filter(identity)).delete(
                    synchronize_session=False
                )
                results["lines_removed"] += removed
            except Exception as e:
                results["errors"].append({"cart": identity.key, "error": str(e)})
                logger.warning(f"Failed to clean up cart {identity}: {e}")

        self.db.commit()
        logger.info(
            f"Cart cleanup: {results['lines_removed']} lines removed, "
            f"{results['carts_skipped']} locked carts skipped"
        )
        return results

