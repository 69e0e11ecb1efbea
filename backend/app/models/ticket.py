"""Ticket model."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, SoftDeleteMixin, TimestampMixin


class TicketCategory(str, Enum):
    """Kind of admission ticket."""

    GENERAL = "general"
    FREE = "free"
    EVENT = "event"


class Ticket(Base, TimestampMixin, SoftDeleteMixin):
    """An admission ticket (cover) sold by a club.

    GENERAL tickets are bought for any open day inside the booking window,
    EVENT tickets belong to one event and FREE tickets are valid only on
    their ``available_date``.
    """

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(primary_key=True)
    club_id: Mapped[int] = mapped_column(
        ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("events.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[TicketCategory] = mapped_column(
        SQLEnum(TicketCategory), default=TicketCategory.GENERAL, nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    dynamic_pricing_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_per_person: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    # None means unlimited
    quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    available_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    # Bundle: menu items handed out with each unit of this ticket
    includes_menu_items: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    club: Mapped["Club"] = relationship("Club", back_populates="tickets")
    event: Mapped[Optional["Event"]] = relationship("Event", back_populates="tickets")
    included_menu_items: Mapped[list["TicketIncludedMenuItem"]] = relationship(
        "TicketIncludedMenuItem",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketIncludedMenuItem.id",
    )

    @property
    def is_free(self) -> bool:
        return self.category == TicketCategory.FREE

    @property
    def is_event_ticket(self) -> bool:
        return self.category == TicketCategory.EVENT or self.event_id is not None

    @property
    def dynamic_pricing_allowed(self) -> bool:
        """FREE tickets never receive dynamic pricing, whatever the flag says."""
        return self.dynamic_pricing_enabled and not self.is_free


class TicketIncludedMenuItem(Base, TimestampMixin):
    """A menu item (or one variant of it) included with a ticket.

    Items with variants are linked through a variant; the pair is unique
    per ticket.
    """

    __tablename__ = "ticket_included_menu_items"
    __table_args__ = (
        UniqueConstraint("ticket_id", "menu_item_id", "variant_id", name="uq_ticket_included_item"),
        CheckConstraint("quantity >= 1 AND quantity <= 15", name="ck_ticket_included_quantity"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id"), nullable=False)
    variant_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("menu_item_variants.id"), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="included_menu_items")
    menu_item: Mapped["MenuItem"] = relationship("MenuItem")
    variant: Mapped[Optional["MenuItemVariant"]] = relationship("MenuItemVariant")


# Forward references
from app.models.club import Club
from app.models.event import Event
from app.models.menu import MenuItem, MenuItemVariant
