"""Checkout Service - one checkout attempt from cart to purchases.

    INITIATED -> CART_LOCKED -> CART_VALIDATED -> PRICED -> GATEWAY_SUBMITTED
              -> POLLING -> APPROVED | DECLINED | ERROR | TIMEOUT

Each attempt runs as a background task wrapped in a single cart-lock
guard, so the lock is released exactly once whatever the outcome.
``initiate_checkout`` returns as soon as the gateway accepted the
transaction (or the attempt failed earlier); polling carries on in the
task and the outcome is only visible through the persisted transaction.

Fulfillment (``confirm_transaction``) is shared by the poller and the
webhook and is idempotent: the PENDING -> APPROVED transition is a
conditional UPDATE, and only the caller that wins it creates purchases.
"""

import asyncio
import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from app.core.cache import CheckoutSessionStore, checkout_sessions
from app.core.config import settings
from app.core.exceptions import TransactionNotFoundError
from app.db.session import SessionLocal
from app.models.cart import CartItemKind
from app.models.payment import PaymentStatus, PaymentTransaction
from app.models.purchase import MenuItemFromTicket, MenuPurchase, TicketPurchase
from app.models.ticket import Ticket, TicketIncludedMenuItem
from app.services.cart_lock_service import (
    CartIdentity,
    CartLockManager,
    HeldCartLock,
    get_cart_lock_manager,
)
from app.services.cart_service import CartService, PricedLine, ValidatedCart
from app.services.fee_service import ensure_minimum
from app.services.notification_service import (
    IncludedItem,
    InvoiceLine,
    NotificationService,
    PurchaseNotice,
    get_notification_service,
)
from app.services.payment_gateway_service import (
    GatewayStatus,
    GatewayTransaction,
    PaymentGateway,
    PaymentMethod,
    build_payment_method,
    get_payment_gateway,
)
from app.services.pricing.clock import ensure_utc, now_utc
from app.services.qr_service import encrypt_payload, render_qr_png

logger = logging.getLogger(__name__)

FREE_PROVIDER = "free"


@dataclass
class CheckoutRequest:
    email: str
    payment_method: Optional[str] = None
    payment_data: Dict[str, Any] = field(default_factory=dict)
    installments: int = 1
    redirect_url: Optional[str] = None


@dataclass
class CheckoutResult:
    transaction_id: str
    reference: str
    status: PaymentStatus
    total_paid: Decimal
    totals: Dict[str, float]
    redirect_url: Optional[str] = None
    is_free_checkout: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "reference": self.reference,
            "status": self.status.value,
            "totalPaid": float(self.total_paid),
            "redirectUrl": self.redirect_url,
            "isFreeCheckout": self.is_free_checkout,
            "totals": self.totals,
        }


def new_reference() -> str:
    return f"unified_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def placeholder_transaction_id() -> str:
    return f"temp-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class CheckoutService:
    """Runs checkout attempts and reconciles gateway outcomes.

    Every collaborator is injected so tests can supply fakes; the defaults
    are the process-wide singletons.
    """

    def __init__(
        self,
        db_factory: Callable[[], Session] = SessionLocal,
        gateway: Optional[PaymentGateway] = None,
        lock_manager: Optional[CartLockManager] = None,
        session_store: Optional[CheckoutSessionStore] = None,
        notifier: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = now_utc,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db_factory = db_factory
        self.gateway = gateway or get_payment_gateway()
        self.locks = lock_manager or get_cart_lock_manager()
        self.sessions = session_store or checkout_sessions
        self.notifier = notifier or get_notification_service()
        self._clock = clock
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate_checkout(self, identity: CartIdentity, request: CheckoutRequest) -> CheckoutResult:
        """Start a checkout attempt.

        Raises the attempt's error (CheckoutError subclasses) if it fails
        before the gateway accepted the transaction.
        """
        ready: asyncio.Future = asyncio.get_running_loop().create_future()
        task = asyncio.create_task(self._run_attempt(identity, request, ready))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return await ready

    async def wait_for_background(self) -> None:
        """Wait for in-flight attempts (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_for_background()

    async def _run_attempt(self, identity: CartIdentity, request: CheckoutRequest, ready: asyncio.Future) -> None:
        try:
            async with self.locks.guard(identity, placeholder_transaction_id()) as held:
                await self._attempt(identity, request, ready, held)
        except asyncio.CancelledError:
            if not ready.done():
                ready.cancel()
            raise
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.error(f"Checkout for {identity} failed after submission: {e}")

    async def _attempt(
        self, identity: CartIdentity, request: CheckoutRequest, ready: asyncio.Future, held: HeldCartLock
    ) -> None:
        db = self.db_factory()
        try:
            now = ensure_utc(self._clock())
            cart = CartService(db, self.locks, self._clock).validate_for_checkout(identity, now)
            ensure_minimum(cart.totals.total_paid)

            if cart.totals.is_free:
                result, notices = self._checkout_free(db, cart, request.email)
                ready.set_result(result)
                await self._send_notifications(request.email, result.reference, cart.club_name, notices, result.totals)
                return

            method = await self._payment_method_payload(request)
            tx = self._create_pending(db, cart, request)

            try:
                gateway_tx = await self._submit(tx, request, method)
            except Exception as e:
                self._mark_failed(db, tx, str(e))
                raise

            tx.payment_provider_transaction_id = gateway_tx.id
            db.commit()
            held.rename(gateway_tx.id)
            self.sessions.save(gateway_tx.id, self._session_data(cart, tx, request.email))
            reference = tx.reference
        finally:
            db.close()

        result = CheckoutResult(
            transaction_id=gateway_tx.id,
            reference=reference,
            status=PaymentStatus.PENDING,
            total_paid=cart.totals.total_paid,
            totals=cart.totals.as_dict(),
            redirect_url=gateway_tx.redirect_url,
        )
        if gateway_tx.status.is_final:
            await self._resolve(gateway_tx)
            result.status = gateway_tx.status.to_payment_status()
            ready.set_result(result)
            return

        ready.set_result(result)
        final = await self.gateway.poll_transaction_status(
            gateway_tx.id,
            interval=settings.checkout_poll_interval_seconds,
            max_attempts=settings.checkout_poll_max_attempts,
            sleep=self._sleep,
        )
        await self._resolve(final)

    async def _payment_method_payload(self, request: CheckoutRequest) -> Dict[str, Any]:
        """Validate the method and its fields; cards are tokenized first."""
        data = dict(request.payment_data or {})
        method = str(request.payment_method or "").upper()
        card_token = None
        if method == PaymentMethod.CARD.value and not data.get("token"):
            card_token = await self.gateway.tokenize_card(data)
        return build_payment_method(method, data, request.installments, card_token=card_token)

    def _create_pending(self, db: Session, cart: ValidatedCart, request: CheckoutRequest) -> PaymentTransaction:
        totals = cart.totals
        tx = PaymentTransaction(
            reference=new_reference(),
            user_id=cart.identity.user_id,
            session_id=cart.identity.session_id,
            club_id=cart.club_id,
            email=request.email,
            currency=settings.gateway_currency,
            total_paid=totals.total_paid,
            club_receives=totals.club_receives,
            platform_receives=totals.platform_receives,
            gateway_fee=totals.gateway_fee,
            gateway_iva=totals.gateway_iva,
            amount_in_cents=totals.amount_in_cents,
            payment_method=str(request.payment_method).upper(),
            payment_provider=self.gateway.name,
            payment_status=PaymentStatus.PENDING,
            line_items_count=cart.units,
            metadata_json=json.dumps(cart.snapshot()),
        )
        db.add(tx)
        db.commit()
        db.refresh(tx)
        logger.info(f"Checkout {tx.reference} PENDING for {cart.identity}: {totals.total_paid} {tx.currency}")
        return tx

    async def _submit(self, tx: PaymentTransaction, request: CheckoutRequest, method: Dict[str, Any]) -> GatewayTransaction:
        payload: Dict[str, Any] = {
            "amount_in_cents": tx.amount_in_cents,
            "currency": tx.currency,
            "customer_email": tx.email,
            "reference": tx.reference,
            "signature": self.gateway.sign(tx.reference, tx.amount_in_cents, tx.currency),
            "payment_method": method,
        }
        acceptance_token = await self.gateway.get_acceptance_token()
        if acceptance_token:
            payload["acceptance_token"] = acceptance_token
        if request.redirect_url:
            payload["redirect_url"] = request.redirect_url
        customer_data = (request.payment_data or {}).get("customer_data")
        if customer_data:
            payload["customer_data"] = customer_data
        return await self.gateway.create_transaction(payload)

    def _mark_failed(self, db: Session, tx: PaymentTransaction, reason: str) -> None:
        tx.payment_status = PaymentStatus.DECLINED
        tx.failure_reason = reason[:500]
        tx.finalized_at = ensure_utc(self._clock())
        db.commit()
        logger.warning(f"Checkout {tx.reference} DECLINED at submission: {reason}")

    def _session_data(self, cart: ValidatedCart, tx: PaymentTransaction, email: str) -> Dict[str, Any]:
        data = cart.snapshot()
        data.update({"email": email, "reference": tx.reference, "transaction_row_id": tx.id})
        return data

    # ------------------------------------------------------------------
    # Free checkout
    # ------------------------------------------------------------------

    def _checkout_free(self, db: Session, cart: ValidatedCart, email: str):
        now = ensure_utc(self._clock())
        tx = PaymentTransaction(
            reference=new_reference(),
            user_id=cart.identity.user_id,
            session_id=cart.identity.session_id,
            club_id=cart.club_id,
            email=email,
            currency=settings.gateway_currency,
            total_paid=Decimal("0"),
            club_receives=Decimal("0"),
            platform_receives=Decimal("0"),
            gateway_fee=Decimal("0"),
            gateway_iva=Decimal("0"),
            amount_in_cents=0,
            payment_provider=FREE_PROVIDER,
            payment_status=PaymentStatus.APPROVED,
            is_free_checkout=True,
            line_items_count=cart.units,
            metadata_json=json.dumps(cart.snapshot()),
            finalized_at=now,
        )
        db.add(tx)
        db.flush()
        notices = self._fulfill(db, tx, cart.snapshot())
        CartService(db, self.locks, self._clock).clear_cart(cart.identity, respect_lock=False)
        logger.info(f"Free checkout {tx.reference} APPROVED for {cart.identity} ({len(notices)} units)")
        result = CheckoutResult(
            transaction_id=tx.reference,
            reference=tx.reference,
            status=PaymentStatus.APPROVED,
            total_paid=Decimal("0"),
            totals=cart.totals.as_dict(),
            is_free_checkout=True,
        )
        return result, notices

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve(self, gateway_tx: GatewayTransaction) -> Dict[str, Any]:
        if gateway_tx.status == GatewayStatus.APPROVED:
            return await self.confirm_transaction(gateway_tx.id, gateway_tx)
        return self._decline(gateway_tx)

    def _decline(self, gateway_tx: GatewayTransaction, db: Optional[Session] = None) -> Dict[str, Any]:
        """Record a non-approved final status. The cart is left untouched."""
        status = gateway_tx.status.to_payment_status()
        reason = gateway_tx.status_message or gateway_tx.status.value
        own_session = db is None
        db = db or self.db_factory()
        try:
            updated = db.query(PaymentTransaction).filter(
                PaymentTransaction.payment_provider_transaction_id == gateway_tx.id,
                PaymentTransaction.payment_status == PaymentStatus.PENDING,
            ).update(
                {
                    PaymentTransaction.payment_status: status,
                    PaymentTransaction.failure_reason: reason[:500],
                    PaymentTransaction.finalized_at: ensure_utc(self._clock()),
                },
                synchronize_session=False,
            )
            db.commit()
        finally:
            if own_session:
                db.close()
        self.sessions.discard(gateway_tx.id)
        if updated:
            logger.warning(f"Transaction {gateway_tx.id} {status.value} ({gateway_tx.status.value}): {reason}")
        return {"transactionId": gateway_tx.id, "status": status.value, "alreadyProcessed": not updated}

    async def confirm_transaction(
        self, provider_transaction_id: str, gateway_tx: Optional[GatewayTransaction] = None
    ) -> Dict[str, Any]:
        """Fulfill an approved transaction. Safe to call any number of times."""
        db = self.db_factory()
        try:
            tx = self._find(db, provider_transaction_id)
            if tx is None:
                raise TransactionNotFoundError(f"Transaction {provider_transaction_id} not found")

            if tx.payment_status == PaymentStatus.APPROVED:
                return self._confirmation(tx, already=True)

            if gateway_tx is None:
                gateway_tx = await self.gateway.get_transaction_status(provider_transaction_id)

            if tx.payment_status.is_terminal:
                if gateway_tx.status == GatewayStatus.APPROVED:
                    logger.warning(
                        f"late_approval: gateway approved {provider_transaction_id} after it was "
                        f"recorded {tx.payment_status.value}; not fulfilling"
                    )
                return self._confirmation(tx, already=True)

            if gateway_tx.status != GatewayStatus.APPROVED:
                if gateway_tx.status.is_final:
                    return self._decline(gateway_tx, db)
                return self._confirmation(tx, already=False)

            if gateway_tx.amount_in_cents is not None and gateway_tx.amount_in_cents != tx.amount_in_cents:
                logger.error(
                    f"Amount mismatch on {provider_transaction_id}: gateway charged "
                    f"{gateway_tx.amount_in_cents}, expected {tx.amount_in_cents}"
                )

            claimed = db.query(PaymentTransaction).filter(
                PaymentTransaction.id == tx.id,
                PaymentTransaction.payment_status == PaymentStatus.PENDING,
            ).update(
                {
                    PaymentTransaction.payment_status: PaymentStatus.APPROVED,
                    PaymentTransaction.finalized_at: ensure_utc(self._clock()),
                },
                synchronize_session=False,
            )
            db.commit()
            db.refresh(tx)
            if not claimed:
                return self._confirmation(tx, already=True)

            snapshot = self.sessions.load(provider_transaction_id) or json.loads(tx.metadata_json or "{}")
            notices = self._fulfill(db, tx, snapshot)
            identity = CartIdentity(user_id=tx.user_id, session_id=tx.session_id)
            CartService(db, self.locks, self._clock).clear_cart(identity, respect_lock=False)
            self.sessions.discard(provider_transaction_id)
            logger.info(f"Transaction {provider_transaction_id} APPROVED: {len(notices)} purchases created")

            result = self._confirmation(tx, already=False)
            email, reference = tx.email, tx.reference
        finally:
            db.close()

        await self._send_notifications(
            email, reference, snapshot.get("club_name", ""), notices, snapshot.get("totals", {})
        )
        return result

    def _find(self, db: Session, transaction_id: str) -> Optional[PaymentTransaction]:
        tx = db.query(PaymentTransaction).filter(
            PaymentTransaction.payment_provider_transaction_id == transaction_id
        ).first()
        if tx is None:
            tx = db.query(PaymentTransaction).filter(PaymentTransaction.reference == transaction_id).first()
        return tx

    def _confirmation(self, tx: PaymentTransaction, already: bool) -> Dict[str, Any]:
        return {
            "transactionId": tx.payment_provider_transaction_id or tx.reference,
            "reference": tx.reference,
            "status": tx.payment_status.value,
            "alreadyProcessed": already,
            "ticketPurchaseIds": [p.id for p in tx.ticket_purchases],
            "menuPurchaseIds": [p.id for p in tx.menu_purchases],
        }

    # ------------------------------------------------------------------
    # Fulfillment
    # ------------------------------------------------------------------

    def _fulfill(self, db: Session, tx: PaymentTransaction, snapshot: Dict[str, Any]) -> List[PurchaseNotice]:
        """One purchase row per unit, with its QR payload. Commits."""
        notices: List[PurchaseNotice] = []
        bundles: Dict[int, List[TicketIncludedMenuItem]] = {}
        for raw in snapshot.get("lines", []):
            line = PricedLine.from_dict(raw)
            for _ in range(line.quantity):
                if line.kind == CartItemKind.TICKET:
                    if not self._take_stock(db, line.item_id):
                        logger.error(
                            f"Insufficient stock for ticket {line.item_id} on {tx.reference}; unit skipped"
                        )
                        continue
                    purchase = TicketPurchase(ticket_id=line.item_id, event_id=line.event_id)
                    purchase_type = "ticket"
                else:
                    purchase = MenuPurchase(menu_item_id=line.item_id, variant_id=line.variant_id)
                    purchase_type = "menu"

                self._fill_purchase(purchase, tx, line)
                db.add(purchase)
                db.flush()
                notice = self._issue_qr(purchase, purchase_type, line, snapshot)
                if line.kind == CartItemKind.TICKET:
                    if line.item_id not in bundles:
                        bundles[line.item_id] = self._included_menu_items(db, line.item_id)
                    self._attach_included_items(purchase, bundles[line.item_id], notice)
                notices.append(notice)
        db.commit()
        return notices

    def _fill_purchase(self, purchase, tx: PaymentTransaction, line: PricedLine) -> None:
        purchase.transaction_id = tx.id
        purchase.club_id = tx.club_id
        purchase.user_id = tx.user_id
        purchase.session_id = tx.session_id
        purchase.email = tx.email
        purchase.target_date = line.target_date
        purchase.original_base_price = line.base_price
        purchase.price_at_checkout = line.unit_price
        purchase.dynamic_pricing_was_applied = line.dynamic_applied
        purchase.dynamic_pricing_reason = line.reason
        purchase.platform_fee = line.fees.platform_fee
        purchase.club_receives = line.fees.club_receives

    def _issue_qr(self, purchase, purchase_type: str, line: PricedLine, snapshot: Dict[str, Any]) -> PurchaseNotice:
        notice = PurchaseNotice(
            purchase_type=purchase_type,
            purchase_id=purchase.id,
            item_name=line.name,
            club_name=snapshot.get("club_name", ""),
            date=line.target_date.isoformat(),
            price_paid=line.unit_price,
        )
        try:
            purchase.qr_payload = encrypt_payload(purchase_type, purchase.id, purchase.club_id)
            notice.qr_token = purchase.qr_payload
        except Exception as e:
            logger.error(f"QR generation failed for {purchase_type} purchase {purchase.id}: {e}")
        return notice

    def _included_menu_items(self, db: Session, ticket_id: int) -> List[TicketIncludedMenuItem]:
        ticket = db.get(Ticket, ticket_id)
        if ticket is None or not ticket.includes_menu_items:
            return []
        return list(ticket.included_menu_items)

    def _attach_included_items(
        self, purchase: TicketPurchase, included: List[TicketIncludedMenuItem], notice: PurchaseNotice
    ) -> None:
        """Copy the ticket's bundled menu items onto the purchase and issue their QR."""
        if not included:
            return
        purchase.has_included_items = True
        for item in included:
            purchase.included_items.append(MenuItemFromTicket(
                menu_item_id=item.menu_item_id,
                variant_id=item.variant_id,
                quantity=item.quantity,
            ))
        notice.included_items = [
            IncludedItem(item.menu_item.name, item.quantity, item.variant.name if item.variant else None)
            for item in included
        ]
        try:
            purchase.included_qr_payload = encrypt_payload("menu_from_ticket", purchase.id, purchase.club_id)
            notice.included_qr_token = purchase.included_qr_payload
        except Exception as e:
            logger.error(f"Included-items QR generation failed for ticket purchase {purchase.id}: {e}")

    def _take_stock(self, db: Session, ticket_id: int) -> bool:
        ticket = db.get(Ticket, ticket_id)
        if ticket is None:
            return False
        if ticket.quantity is None:
            return True
        taken = db.query(Ticket).filter(Ticket.id == ticket_id, Ticket.quantity >= 1).update(
            {Ticket.quantity: Ticket.quantity - 1}, synchronize_session=False
        )
        db.expire(ticket)
        return bool(taken)

    async def _send_notifications(
        self,
        email: str,
        reference: str,
        club_name: str,
        notices: List[PurchaseNotice],
        totals: Dict[str, Any],
    ) -> None:
        """Per-unit purchase emails plus one invoice. Failures are only logged."""
        lines: Dict[str, InvoiceLine] = {}
        for notice in notices:
            if notice.qr_token:
                try:
                    notice.qr_png = render_qr_png(notice.qr_token)
                except Exception as e:
                    logger.error(f"QR image failed for purchase {notice.purchase_id}: {e}")
            if notice.included_qr_token:
                try:
                    notice.included_qr_png = render_qr_png(notice.included_qr_token)
                except Exception as e:
                    logger.error(f"Included-items QR image failed for purchase {notice.purchase_id}: {e}")
            await self.notifier.send_purchase_email(email, notice)

            key = f"{notice.item_name}|{notice.price_paid}"
            if key in lines:
                lines[key].quantity += 1
                lines[key].total += notice.price_paid
            else:
                lines[key] = InvoiceLine(notice.item_name, 1, notice.price_paid, notice.price_paid)

        if notices:
            await self.notifier.send_invoice_email(email, reference, club_name, list(lines.values()), totals)

    # ------------------------------------------------------------------
    # Webhook & status
    # ------------------------------------------------------------------

    async def handle_webhook(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Reconcile a ``transaction.updated`` event. Checksum is checked by the caller."""
        if event.get("event") != "transaction.updated":
            return {"handled": False, "reason": "ignored_event"}
        data = (event.get("data") or {}).get("transaction") or {}
        gateway_tx = GatewayTransaction.from_api(data)
        if not gateway_tx.id:
            return {"handled": False, "reason": "missing_transaction_id"}

        db = self.db_factory()
        try:
            tx = self._find(db, gateway_tx.id)
            if tx is None and gateway_tx.reference:
                tx = db.query(PaymentTransaction).filter(
                    PaymentTransaction.reference == gateway_tx.reference
                ).first()
                if tx is not None and tx.payment_provider_transaction_id is None:
                    tx.payment_provider_transaction_id = gateway_tx.id
                    db.commit()
            if tx is None:
                logger.warning(f"Webhook for unknown transaction {gateway_tx.id}")
                return {"handled": False, "reason": "unknown_transaction"}
            current = tx.payment_status
        finally:
            db.close()

        if current.is_terminal:
            if current != PaymentStatus.APPROVED and gateway_tx.status == GatewayStatus.APPROVED:
                logger.warning(
                    f"late_approval: webhook approved {gateway_tx.id} after it was recorded "
                    f"{current.value}; not fulfilling"
                )
                return {"handled": False, "reason": "late_approval"}
            return {"handled": False, "reason": "already_final", "status": current.value}

        if not gateway_tx.status.is_final:
            return {"handled": False, "reason": "pending"}

        outcome = await self._resolve(gateway_tx)
        logger.info(f"Webhook resolved {gateway_tx.id} -> {outcome['status']}")
        return {"handled": True, "status": outcome["status"]}

    def get_status(self, transaction_id: str) -> Dict[str, Any]:
        db = self.db_factory()
        try:
            tx = self._find(db, transaction_id)
            if tx is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            return {
                "transactionId": tx.payment_provider_transaction_id or tx.reference,
                "status": tx.payment_status.value,
                "amount": float(tx.total_paid),
                "currency": tx.currency,
                "customerEmail": tx.email,
                "createdAt": _iso(tx.created_at),
                "finalizedAt": _iso(tx.finalized_at),
                "isFreeCheckout": tx.is_free_checkout,
                "lineItemsCount": tx.line_items_count,
            }
        finally:
            db.close()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


_checkout_service: Optional[CheckoutService] = None


def get_checkout_service() -> CheckoutService:
    """Get or create the checkout service singleton."""
    global _checkout_service
    if _checkout_service is None:
        _checkout_service = CheckoutService()
    return _checkout_service
