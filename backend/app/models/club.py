"""Club (venue) model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class Club(Base, TimestampMixin):
    """A nightlife venue selling tickets and menu items.

    ``open_days`` is a list of English weekday names ("Friday") and
    ``open_hours`` a list of ``{"day", "open", "close"}`` dicts in venue-local
    "HH:MM". A close time earlier than or equal to the open time means the
    venue closes after midnight.
    """

    __tablename__ = "clubs"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    open_days: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    open_hours: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    events: Mapped[list["Event"]] = relationship("Event", back_populates="club")
    tickets: Mapped[list["Ticket"]] = relationship("Ticket", back_populates="club")
    menu_items: Mapped[list["MenuItem"]] = relationship("MenuItem", back_populates="club")


# Forward references
from app.models.event import Event
from app.models.ticket import Ticket
from app.models.menu import MenuItem
