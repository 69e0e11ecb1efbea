"""Purchase records: one row per unit sold."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class PurchaseMixin:
    """Columns shared by ticket and menu purchases."""

    club_id: Mapped[int] = mapped_column(ForeignKey("clubs.id"), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    target_date: Mapped[date] = mapped_column(Date, nullable=False)

    original_base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price_at_checkout: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    dynamic_pricing_was_applied: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Persisted PricingReason value
    dynamic_pricing_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    club_receives: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    qr_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class TicketPurchase(Base, TimestampMixin, PurchaseMixin):
    __tablename__ = "ticket_purchases"

    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("payment_transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ticket_id: Mapped[int] = mapped_column(ForeignKey("tickets.id"), nullable=False)
    event_id: Mapped[Optional[int]] = mapped_column(ForeignKey("events.id"), nullable=True)
    has_included_items: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Separate QR for the bundled menu items
    included_qr_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    transaction: Mapped["PaymentTransaction"] = relationship(
        "PaymentTransaction", back_populates="ticket_purchases"
    )
    ticket: Mapped["Ticket"] = relationship("Ticket")
    included_items: Mapped[list["MenuItemFromTicket"]] = relationship(
        "MenuItemFromTicket", back_populates="ticket_purchase", cascade="all, delete-orphan"
    )


class MenuItemFromTicket(Base, TimestampMixin):
    """Menu items a ticket purchase entitles the holder to, copied at fulfillment."""

    __tablename__ = "menu_items_from_tickets"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_purchase_id: Mapped[int] = mapped_column(
        ForeignKey("ticket_purchases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id"), nullable=False)
    variant_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("menu_item_variants.id"), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_redeemed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    ticket_purchase: Mapped["TicketPurchase"] = relationship(
        "TicketPurchase", back_populates="included_items"
    )
    menu_item: Mapped["MenuItem"] = relationship("MenuItem")
    variant: Mapped[Optional["MenuItemVariant"]] = relationship("MenuItemVariant")


class MenuPurchase(Base, TimestampMixin, PurchaseMixin):
    __tablename__ = "menu_purchases"

    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("payment_transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id"), nullable=False)
    variant_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("menu_item_variants.id"), nullable=True
    )

    transaction: Mapped["PaymentTransaction"] = relationship(
        "PaymentTransaction", back_populates="menu_purchases"
    )
    menu_item: Mapped["MenuItem"] = relationship("MenuItem")
    variant: Mapped[Optional["MenuItemVariant"]] = relationship("MenuItemVariant")


# Forward references
from app.models.payment import PaymentTransaction
from app.models.ticket import Ticket
from app.models.menu import MenuItem, MenuItemVariant
