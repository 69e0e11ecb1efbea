"""Cart line model."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, Date, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class CartItemKind(str, Enum):
    TICKET = "ticket"
    MENU = "menu"


class CartItem(Base, TimestampMixin):
    """One line of a buyer's cart.

    A line belongs either to an authenticated user or to an anonymous
    session, never both. ``created_at`` drives cart expiry; ``target_date`` is the venue-local night
    the line is bought for.
    """

    __tablename__ = "cart_items"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) != (session_id IS NULL)",
            name="ck_cart_items_single_owner",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    kind: Mapped[CartItemKind] = mapped_column(SQLEnum(CartItemKind), nullable=False)
    club_id: Mapped[int] = mapped_column(
        ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False
    )
    ticket_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"), nullable=True
    )
    menu_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=True
    )
    variant_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("menu_item_variants.id", ondelete="CASCADE"), nullable=True
    )
    target_date: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    ticket: Mapped[Optional["Ticket"]] = relationship("Ticket")
    menu_item: Mapped[Optional["MenuItem"]] = relationship("MenuItem")
    variant: Mapped[Optional["MenuItemVariant"]] = relationship("MenuItemVariant")


# Forward references
from app.models.ticket import Ticket
from app.models.menu import MenuItem, MenuItemVariant
