"""Menu item and variant models."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, SoftDeleteMixin, TimestampMixin


class MenuItem(Base, TimestampMixin, SoftDeleteMixin):
    """A menu item. Items with variants are sold only through a variant."""

    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    club_id: Mapped[int] = mapped_column(
        ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    has_variants: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dynamic_pricing_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_per_person: Mapped[int] = mapped_column(default=20, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    club: Mapped["Club"] = relationship("Club", back_populates="menu_items")
    variants: Mapped[list["MenuItemVariant"]] = relationship(
        "MenuItemVariant", back_populates="menu_item", cascade="all, delete-orphan"
    )


class MenuItemVariant(Base, TimestampMixin, SoftDeleteMixin):
    """A priced variant (size, flavour...) of a menu item."""

    __tablename__ = "menu_item_variants"

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_item_id: Mapped[int] = mapped_column(
        ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    dynamic_pricing_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    menu_item: Mapped["MenuItem"] = relationship("MenuItem", back_populates="variants")


# Forward references
from app.models.club import Club
