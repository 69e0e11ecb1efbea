"""SQLAlchemy models."""

from app.models.club import Club
from app.models.event import Event
from app.models.ticket import Ticket, TicketCategory, TicketIncludedMenuItem
from app.models.menu import MenuItem, MenuItemVariant
from app.models.cart import CartItem, CartItemKind
from app.models.payment import PaymentStatus, PaymentTransaction
from app.models.purchase import MenuItemFromTicket, MenuPurchase, TicketPurchase

__all__ = [
    "Club",
    "Event",
    "Ticket",
    "TicketCategory",
    "TicketIncludedMenuItem",
    "MenuItem",
    "MenuItemVariant",
    "CartItem",
    "CartItemKind",
    "PaymentStatus",
    "PaymentTransaction",
    "TicketPurchase",
    "MenuPurchase",
    "MenuItemFromTicket",
]
