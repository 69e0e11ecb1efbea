"""Payment transaction model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class PaymentStatus(str, Enum):
    """Persisted status of a checkout attempt.

    APPROVED and DECLINED are terminal; VOIDED is an administrative override.
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentTransaction(Base, TimestampMixin):
    """One checkout attempt.

    The row is written PENDING before the gateway is called and then updated
    in place; it is never replaced, so ``payment_provider_transaction_id``
    stays unique.
    """

    __tablename__ = "payment_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    reference: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    club_id: Mapped[int] = mapped_column(ForeignKey("clubs.id"), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="COP", nullable=False)

    total_paid: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    club_receives: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    platform_receives: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    gateway_fee: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    gateway_iva: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    amount_in_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    payment_method: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    payment_provider: Mapped[str] = mapped_column(String(40), default="wompi", nullable=False)
    payment_provider_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(200), unique=True, nullable=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True
    )
    is_free_checkout: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    line_items_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ticket_purchases: Mapped[list["TicketPurchase"]] = relationship(
        "TicketPurchase", back_populates="transaction"
    )
    menu_purchases: Mapped[list["MenuPurchase"]] = relationship(
        "MenuPurchase", back_populates="transaction"
    )


# Forward references
from app.models.purchase import MenuPurchase, TicketPurchase
