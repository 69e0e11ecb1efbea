"""Notification service for purchase and invoice emails.

Sending is fire-and-forget from checkout's point of view: failures are
logged and reported in the result, never raised.
"""

import asyncio
import html
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from app.core.email import EmailService, get_email_service

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    """Result of a notification attempt."""
    success: bool
    channel: str
    recipient: str
    message: str
    error: Optional[str] = None
    sent_at: Optional[datetime] = None


@dataclass
class IncludedItem:
    """A menu item bundled with a ticket, as listed in its email."""
    name: str
    quantity: int
    variant: Optional[str] = None

    @property
    def label(self) -> str:
        name = f"{self.name} ({self.variant})" if self.variant else self.name
        return f"{self.quantity} x {name}"


@dataclass
class PurchaseNotice:
    """What a single purchase email shows."""
    purchase_type: str  # "ticket" or "menu"
    purchase_id: int
    item_name: str
    club_name: str
    date: str
    price_paid: Decimal
    qr_token: Optional[str] = None
    qr_png: Optional[bytes] = None
    included_items: List[IncludedItem] = field(default_factory=list)
    included_qr_token: Optional[str] = None
    included_qr_png: Optional[bytes] = None


@dataclass
class InvoiceLine:
    description: str
    quantity: int
    unit_price: Decimal
    total: Decimal


def _money(value) -> str:
    return f"${Decimal(value):,.2f}"


class NotificationService:
    """Builds and sends checkout emails through ``EmailService``."""

    def __init__(self, email_service: Optional[EmailService] = None):
        self.email = email_service or get_email_service()

    def _deliver(self, to: str, subject: str, body: str, html_body: str,
                 attachments: Optional[List[dict]] = None) -> NotificationResult:
        try:
            sent = self.email.send(to=to, subject=subject, body=body,
                                   html_body=html_body, attachments=attachments)
        except Exception as e:
            logger.error(f"Email to {to} failed: {e}")
            return NotificationResult(False, "email", to, subject, error=str(e))
        if not sent:
            return NotificationResult(False, "email", to, subject, error="not sent")
        return NotificationResult(True, "email", to, subject, sent_at=datetime.now(timezone.utc))

    async def send_purchase_email(self, to: str, notice: PurchaseNotice) -> NotificationResult:
        """One email per unit sold, with its QR code inline."""
        subject = f"Your {notice.purchase_type} for {notice.club_name} - {notice.date}"
        body = (
            f"{notice.item_name}\n"
            f"Club: {notice.club_name}\n"
            f"Date: {notice.date}\n"
            f"Paid: {_money(notice.price_paid)}\n"
            f"Purchase #{notice.purchase_id}\n\n"
            "Show the attached QR code at the door."
        )
        attachments = []
        qr_html = ""
        if notice.qr_png:
            cid = f"qr-{notice.purchase_type}-{notice.purchase_id}"
            attachments.append({"filename": f"{cid}.png", "content": notice.qr_png, "content_id": cid})
            qr_html = f'<p><img src="cid:{cid}" alt="QR code" width="240" height="240"></p>'

        included_html = ""
        if notice.included_items:
            body += "\n\nIncluded with this ticket:\n" + "\n".join(
                f"- {item.label}" for item in notice.included_items
            ) + "\nShow the second QR code at the bar."
            items_html = "".join(f"<li>{html.escape(item.label)}</li>" for item in notice.included_items)
            included_html = f"<h3>Included with this ticket</h3><ul>{items_html}</ul>"
            if notice.included_qr_png:
                cid = f"qr-menu-from-ticket-{notice.purchase_id}"
                attachments.append(
                    {"filename": f"{cid}.png", "content": notice.included_qr_png, "content_id": cid}
                )
                included_html += f'<p><img src="cid:{cid}" alt="Menu QR code" width="240" height="240"></p>'

        html_body = (
            f"<h2>{html.escape(notice.item_name)}</h2>"
            f"<p>{html.escape(notice.club_name)} &middot; {html.escape(notice.date)}</p>"
            f"<p>Paid: {_money(notice.price_paid)}</p>"
            f"{qr_html}"
            f"{included_html}"
            f"<p style=\"color:#666;font-size:11px\">Purchase #{notice.purchase_id}</p>"
        )
        return await asyncio.to_thread(
            self._deliver, to, subject, body, html_body, attachments or None
        )

    async def send_invoice_email(
        self,
        to: str,
        reference: str,
        club_name: str,
        lines: List[InvoiceLine],
        totals: dict,
    ) -> NotificationResult:
        """One consolidated invoice per transaction."""
        subject = f"Receipt {reference} - {club_name}"
        text_lines = [f"{l.quantity} x {l.description} @ {_money(l.unit_price)} = {_money(l.total)}" for l in lines]
        summary = [
            ("Subtotal", totals.get("subtotal", 0)),
            ("Service fee", totals.get("platformReceives", 0)),
            ("Payment processing", totals.get("gatewayFee", 0)),
            ("IVA on processing", totals.get("gatewayIVA", 0)),
            ("Total paid", totals.get("totalPaid", 0)),
        ]
        body = "\n".join(
            [f"Receipt {reference}", club_name, ""] + text_lines + [""]
            + [f"{label}: {_money(value)}" for label, value in summary]
        )
        rows = "".join(
            f"<tr><td>{l.quantity}</td><td>{html.escape(l.description)}</td>"
            f"<td align=\"right\">{_money(l.unit_price)}</td><td align=\"right\">{_money(l.total)}</td></tr>"
            for l in lines
        )
        summary_rows = "".join(
            f"<tr><td colspan=\"3\" align=\"right\">{label}</td><td align=\"right\">{_money(value)}</td></tr>"
            for label, value in summary
        )
        html_body = (
            f"<h2>Receipt {html.escape(reference)}</h2><p>{html.escape(club_name)}</p>"
            f"<table cellpadding=\"4\">{rows}{summary_rows}</table>"
        )
        return await asyncio.to_thread(self._deliver, to, subject, body, html_body)


_notification_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Get or create the notification service singleton."""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
