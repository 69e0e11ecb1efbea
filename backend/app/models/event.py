"""Event model."""

from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy import JSON, Boolean, Date, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, SoftDeleteMixin, TimestampMixin


class Event(Base, TimestampMixin, SoftDeleteMixin):
    """A dated event at a club.

    ``open_hours`` optionally overrides the club's weekly schedule for the
    event night, as ``{"open": "HH:MM", "close": "HH:MM"}``.
    """

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(primary_key=True)
    club_id: Mapped[int] = mapped_column(
        ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    available_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    open_hours: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    club: Mapped["Club"] = relationship("Club", back_populates="events")
    tickets: Mapped[list["Ticket"]] = relationship("Ticket", back_populates="event")


# Forward references
from app.models.club import Club
from app.models.ticket import Ticket
