"""Tests for the checkout orchestrator.

The gateway is an in-process fake; polling sleeps are no-ops and the
clock is fixed at Friday 12:00 venue time, so two general tickets cost
35,000 each (30% pre-opening discount) and the charge is 76,650.82 COP.
"""

import asyncio
import json
import pytest
from decimal import Decimal

from app.core.config import settings
from app.core.exceptions import (
    BelowMinimumError,
    CartValidationError,
    CheckoutInProgressError,
    GatewayError,
    PaymentDataError,
    TransactionNotFoundError,
)
from app.models.cart import CartItem
from app.models.menu import MenuItem
from app.models.payment import PaymentStatus, PaymentTransaction
from app.models.purchase import MenuItemFromTicket, MenuPurchase, TicketPurchase
from app.models.ticket import Ticket, TicketIncludedMenuItem
from app.services.checkout_service import CheckoutRequest
from app.services.payment_gateway_service import GatewayStatus, sign_integrity
from app.services.qr_service import decrypt_payload
from conftest import FRIDAY

EMAIL = "ana@example.com"
AMOUNT_IN_CENTS = 7665082


def nequi_request(**kwargs) -> CheckoutRequest:
    defaults = dict(email=EMAIL, payment_method="NEQUI", payment_data={"phone_number": "3001234567"})
    defaults.update(kwargs)
    return CheckoutRequest(**defaults)


def webhook_event(transaction_id, status, amount_in_cents=AMOUNT_IN_CENTS, reference=None) -> dict:
    return {
        "event": "transaction.updated",
        "data": {
            "transaction": {
                "id": transaction_id,
                "status": status,
                "amount_in_cents": amount_in_cents,
                "reference": reference,
            }
        },
        "timestamp": 1772816400,
    }


@pytest.fixture
def two_covers(cart_service, buyer, general_ticket):
    """Cart with two general tickets for Friday."""
    cart_service.add_ticket(buyer, general_ticket.id, 2, FRIDAY)
    return general_ticket


class TestPaidCheckout:
    """Gateway-backed checkouts."""

    @pytest.mark.asyncio
    async def test_approved_after_polling(self, checkout_service, gateway, buyer, two_covers, db_session, lock_manager, notifier, club):
        gateway.statuses = [GatewayStatus.PENDING, GatewayStatus.APPROVED]

        result = await checkout_service.initiate_checkout(buyer, nequi_request())
        assert result.status == PaymentStatus.PENDING
        assert result.transaction_id == "tx-1"
        assert result.total_paid == Decimal("76650.82")
        assert result.reference.startswith("unified_")

        await checkout_service.wait_for_background()
        db_session.expire_all()

        tx = db_session.query(PaymentTransaction).one()
        assert tx.payment_status == PaymentStatus.APPROVED
        assert tx.payment_provider_transaction_id == "tx-1"
        assert tx.amount_in_cents == AMOUNT_IN_CENTS
        assert tx.line_items_count == 2
        assert tx.finalized_at is not None
        assert gateway.status_calls == 2

        purchases = db_session.query(TicketPurchase).all()
        assert len(purchases) == 2
        for purchase in purchases:
            assert purchase.original_base_price == Decimal("50000")
            assert purchase.price_at_checkout == Decimal("35000")
            assert purchase.dynamic_pricing_was_applied is True
            assert purchase.dynamic_pricing_reason == "covers_preopen_3h_plus_30_off"
            assert purchase.platform_fee == Decimal("1750")
            assert purchase.club_receives == Decimal("35000")
            assert purchase.target_date == FRIDAY
            assert decrypt_payload(purchase.qr_payload) == {
                "type": "ticket", "id": purchase.id, "club_id": club.id,
            }

        assert db_session.query(CartItem).count() == 0
        assert not lock_manager.is_locked(buyer)
        assert notifier.send_purchase_email.await_count == 2
        notifier.send_invoice_email.assert_awaited_once()
        invoice_lines = notifier.send_invoice_email.await_args.args[3]
        assert [(l.description, l.quantity) for l in invoice_lines] == [("General cover", 2)]

    @pytest.mark.asyncio
    async def test_gateway_payload(self, checkout_service, gateway, buyer, two_covers):
        result = await checkout_service.initiate_checkout(buyer, nequi_request(redirect_url="https://app.test/done"))
        await checkout_service.wait_for_background()

        payload = gateway.created[0]
        assert payload["amount_in_cents"] == AMOUNT_IN_CENTS
        assert payload["currency"] == "COP"
        assert payload["customer_email"] == EMAIL
        assert payload["reference"] == result.reference
        assert payload["signature"] == sign_integrity(
            result.reference, AMOUNT_IN_CENTS, "COP", "test_integrity_secret"
        )
        assert payload["acceptance_token"] == "acceptance-token-test"
        assert payload["redirect_url"] == "https://app.test/done"
        assert payload["payment_method"] == {"type": "NEQUI", "phone_number": "3001234567"}

    @pytest.mark.asyncio
    async def test_card_is_tokenized(self, checkout_service, gateway, buyer, two_covers):
        card = {
            "number": "4242424242424242", "cvc": "123", "exp_month": "08",
            "exp_year": "28", "card_holder": "Ana Gomez",
        }
        await checkout_service.initiate_checkout(
            buyer, nequi_request(payment_method="card", payment_data=card, installments=3)
        )
        await checkout_service.wait_for_background()
        assert gateway.created[0]["payment_method"] == {
            "type": "CARD", "token": "tok_test_4242", "installments": 3,
        }

    @pytest.mark.asyncio
    async def test_pse_returns_redirect_url(self, checkout_service, gateway, buyer, two_covers):
        pse = {"user_legal_id": "1020304050", "financial_institution_code": "1007"}
        result = await checkout_service.initiate_checkout(
            buyer, nequi_request(payment_method="PSE", payment_data=pse)
        )
        await checkout_service.wait_for_background()
        assert result.redirect_url == "https://bank.test/redirect"
        method = gateway.created[0]["payment_method"]
        assert method["user_legal_id_type"] == "CC"
        assert method["financial_institution_code"] == "1007"

    @pytest.mark.asyncio
    async def test_immediate_approval_skips_polling(self, checkout_service, gateway, buyer, two_covers, db_session):
        gateway.create_status = GatewayStatus.APPROVED
        result = await checkout_service.initiate_checkout(buyer, nequi_request())
        assert result.status == PaymentStatus.APPROVED
        assert gateway.status_calls == 0
        assert db_session.query(TicketPurchase).count() == 2

    @pytest.mark.asyncio
    async def test_menu_checkout_creates_menu_purchases(self, checkout_service, gateway, cart_service, buyer, bottle_item, db_session):
        bottle = next(v for v in bottle_item.variants if v.name == "Bottle")
        cart_service.add_menu_item(buyer, bottle_item.id, 2, FRIDAY, variant_id=bottle.id)
        gateway.create_status = GatewayStatus.APPROVED

        await checkout_service.initiate_checkout(buyer, nequi_request())
        purchases = db_session.query(MenuPurchase).all()
        assert len(purchases) == 2
        assert {p.variant_id for p in purchases} == {bottle.id}
        assert purchases[0].price_at_checkout == Decimal("210000")
        assert purchases[0].platform_fee == Decimal("5250")


    @pytest.mark.asyncio
    async def test_ticket_with_included_menu_items(self, checkout_service, gateway, buyer, two_covers, menu_item, bottle_item, db_session, notifier, club):
        half = next(v for v in bottle_item.variants if v.name == "Half bottle")
        two_covers.includes_menu_items = True
        two_covers.included_menu_items = [
            TicketIncludedMenuItem(menu_item_id=menu_item.id, quantity=2),
            TicketIncludedMenuItem(menu_item_id=bottle_item.id, variant_id=half.id, quantity=1),
        ]
        db_session.commit()
        gateway.create_status = GatewayStatus.APPROVED

        await checkout_service.initiate_checkout(buyer, nequi_request())
        db_session.expire_all()

        purchases = db_session.query(TicketPurchase).all()
        assert len(purchases) == 2
        for purchase in purchases:
            assert purchase.has_included_items is True
            assert decrypt_payload(purchase.included_qr_payload) == {
                "type": "menu_from_ticket", "id": purchase.id, "club_id": club.id,
            }
            assert {(i.menu_item_id, i.variant_id, i.quantity) for i in purchase.included_items} == {
                (menu_item.id, None, 2), (bottle_item.id, half.id, 1),
            }
        assert db_session.query(MenuItemFromTicket).count() == 4
        # Included items are entitlements, not menu sales
        assert db_session.query(MenuPurchase).count() == 0

        notice = notifier.send_purchase_email.await_args.args[1]
        assert [item.label for item in notice.included_items] == [
            "2 x Aguardiente shot", "1 x Old Parr (Half bottle)",
        ]
        assert notice.included_qr_png.startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_bundle_flag_off_issues_no_menu_qr(self, checkout_service, gateway, buyer, two_covers, menu_item, db_session):
        two_covers.included_menu_items = [TicketIncludedMenuItem(menu_item_id=menu_item.id, quantity=1)]
        db_session.commit()
        gateway.create_status = GatewayStatus.APPROVED

        await checkout_service.initiate_checkout(buyer, nequi_request())
        db_session.expire_all()
        purchase = db_session.query(TicketPurchase).first()
        assert purchase.has_included_items is False
        assert purchase.included_qr_payload is None
        assert db_session.query(MenuItemFromTicket).count() == 0


class TestFailedCheckout:
    """Declines, timeouts and errors release the lock and keep the cart."""

    @pytest.mark.asyncio
    async def test_declined(self, checkout_service, gateway, buyer, two_covers, db_session, lock_manager, notifier):
        gateway.statuses = [GatewayStatus.DECLINED]
        await checkout_service.initiate_checkout(buyer, nequi_request())
        await checkout_service.wait_for_background()
        db_session.expire_all()

        tx = db_session.query(PaymentTransaction).one()
        assert tx.payment_status == PaymentStatus.DECLINED
        assert db_session.query(TicketPurchase).count() == 0
        assert db_session.query(CartItem).count() == 1
        assert not lock_manager.is_locked(buyer)
        notifier.send_purchase_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_polling_timeout_is_declined(self, checkout_service, gateway, buyer, two_covers, db_session, lock_manager, monkeypatch):
        monkeypatch.setattr(settings, "checkout_poll_max_attempts", 3)
        gateway.statuses = [GatewayStatus.PENDING]

        await checkout_service.initiate_checkout(buyer, nequi_request())
        await checkout_service.wait_for_background()
        db_session.expire_all()

        tx = db_session.query(PaymentTransaction).one()
        assert tx.payment_status == PaymentStatus.DECLINED
        assert tx.failure_reason == "TIMEOUT"
        assert gateway.status_calls == 3
        assert not lock_manager.is_locked(buyer)

    @pytest.mark.asyncio
    async def test_gateway_rejection(self, checkout_service, gateway, buyer, two_covers, db_session, lock_manager):
        gateway.fail_create = GatewayError("Payment rejected by gateway: card declined")
        with pytest.raises(GatewayError):
            await checkout_service.initiate_checkout(buyer, nequi_request())

        db_session.expire_all()
        tx = db_session.query(PaymentTransaction).one()
        assert tx.payment_status == PaymentStatus.DECLINED
        assert "card declined" in tx.failure_reason
        assert not lock_manager.is_locked(buyer)
        assert db_session.query(CartItem).count() == 1

    @pytest.mark.asyncio
    async def test_missing_payment_fields(self, checkout_service, buyer, two_covers, db_session, lock_manager):
        with pytest.raises(PaymentDataError):
            await checkout_service.initiate_checkout(buyer, nequi_request(payment_method="PSE", payment_data={}))
        assert db_session.query(PaymentTransaction).count() == 0
        assert not lock_manager.is_locked(buyer)

    @pytest.mark.asyncio
    async def test_empty_cart(self, checkout_service, buyer, lock_manager):
        with pytest.raises(CartValidationError) as exc_info:
            await checkout_service.initiate_checkout(buyer, nequi_request())
        assert exc_info.value.code == "cart_empty"
        assert not lock_manager.is_locked(buyer)

    @pytest.mark.asyncio
    async def test_below_minimum(self, checkout_service, cart_service, buyer, club, db_session, lock_manager):
        # 500 + fees comes to 1361.66
        candy = MenuItem(
            club_id=club.id, name="Chicle", price=Decimal("500"), has_variants=False,
            dynamic_pricing_enabled=False, max_per_person=20, is_active=True,
        )
        db_session.add(candy)
        db_session.commit()
        cart_service.add_menu_item(buyer, candy.id, 1, FRIDAY)

        with pytest.raises(BelowMinimumError):
            await checkout_service.initiate_checkout(buyer, nequi_request())
        assert db_session.query(PaymentTransaction).count() == 0
        assert not lock_manager.is_locked(buyer)

    @pytest.mark.asyncio
    async def test_minimum_applies_to_total_paid(self, checkout_service, gateway, cart_service, buyer, club, db_session):
        # Subtotal 1000 is under the floor but 1890.32 is charged
        water = MenuItem(
            club_id=club.id, name="Agua", price=Decimal("1000"), has_variants=False,
            dynamic_pricing_enabled=False, max_per_person=20, is_active=True,
        )
        db_session.add(water)
        db_session.commit()
        cart_service.add_menu_item(buyer, water.id, 1, FRIDAY)
        gateway.create_status = GatewayStatus.APPROVED

        result = await checkout_service.initiate_checkout(buyer, nequi_request())
        assert result.status == PaymentStatus.APPROVED
        assert result.total_paid == Decimal("1890.32")
        assert gateway.created[0]["amount_in_cents"] == 189032


class TestFreeCheckout:

    @pytest.mark.asyncio
    async def test_free_tickets_skip_the_gateway(self, checkout_service, gateway, cart_service, buyer, free_ticket, db_session, notifier):
        cart_service.add_ticket(buyer, free_ticket.id, 2)

        result = await checkout_service.initiate_checkout(buyer, CheckoutRequest(email=EMAIL))
        await checkout_service.wait_for_background()
        assert result.is_free_checkout is True
        assert result.status == PaymentStatus.APPROVED
        assert result.total_paid == Decimal("0")
        assert result.transaction_id == result.reference
        assert gateway.created == []

        tx = db_session.query(PaymentTransaction).one()
        assert tx.payment_provider == "free"
        assert tx.is_free_checkout is True
        assert tx.total_paid == Decimal("0")
        assert tx.gateway_fee == Decimal("0")
        assert tx.payment_provider_transaction_id is None

        purchases = db_session.query(TicketPurchase).all()
        assert len(purchases) == 2
        assert all(p.price_at_checkout == Decimal("0") for p in purchases)
        assert all(p.dynamic_pricing_reason == "free_ticket_no_dp" for p in purchases)
        assert db_session.query(CartItem).count() == 0
        assert notifier.send_purchase_email.await_count == 2


class TestConcurrency:
    """One in-flight checkout per buyer; fulfillment happens once."""

    @pytest.mark.asyncio
    async def test_second_checkout_rejected_while_polling(self, checkout_service, gateway, buyer, two_covers, lock_manager):
        gateway.gate = asyncio.Event()

        first = await checkout_service.initiate_checkout(buyer, nequi_request())
        assert first.status == PaymentStatus.PENDING
        assert lock_manager.get_lock(buyer).transaction_id == "tx-1"

        with pytest.raises(CheckoutInProgressError):
            await checkout_service.initiate_checkout(buyer, nequi_request())
        assert len(gateway.created) == 1

        gateway.gate.set()
        await checkout_service.wait_for_background()
        assert not lock_manager.is_locked(buyer)

    @pytest.mark.asyncio
    async def test_slow_attempt_leaves_reclaimed_lock(self, checkout_service, gateway, buyer, two_covers, lock_manager, clock):
        gateway.gate = asyncio.Event()
        await checkout_service.initiate_checkout(buyer, nequi_request())

        # The poll outlives the lock TTL and a new attempt takes the lock
        clock.advance(minutes=11)
        assert lock_manager.lock(buyer, "temp-next") is True

        gateway.gate.set()
        await checkout_service.wait_for_background()
        lock = lock_manager.get_lock(buyer)
        assert lock is not None
        assert lock.transaction_id == "temp-next"

    @pytest.mark.asyncio
    async def test_webhook_and_poller_fulfill_once(self, checkout_service, gateway, buyer, two_covers, db_session, notifier):
        gateway.gate = asyncio.Event()
        result = await checkout_service.initiate_checkout(buyer, nequi_request())

        outcome = await checkout_service.handle_webhook(
            webhook_event("tx-1", "APPROVED", reference=result.reference)
        )
        assert outcome == {"handled": True, "status": "APPROVED"}

        gateway.gate.set()
        await checkout_service.wait_for_background()
        db_session.expire_all()
        assert db_session.query(TicketPurchase).count() == 2
        assert notifier.send_purchase_email.await_count == 2

    @pytest.mark.asyncio
    async def test_confirm_is_idempotent(self, checkout_service, gateway, buyer, two_covers, db_session):
        gateway.create_status = GatewayStatus.APPROVED
        await checkout_service.initiate_checkout(buyer, nequi_request())

        first = await checkout_service.confirm_transaction("tx-1")
        second = await checkout_service.confirm_transaction("tx-1")
        assert first["alreadyProcessed"] is True
        assert second["ticketPurchaseIds"] == first["ticketPurchaseIds"]
        assert len(first["ticketPurchaseIds"]) == 2
        assert db_session.query(TicketPurchase).count() == 2

    @pytest.mark.asyncio
    async def test_stock_runs_out_before_approval(self, checkout_service, gateway, cart_service, buyer, limited_ticket, db_session):
        cart_service.add_ticket(buyer, limited_ticket.id, 2, FRIDAY)
        gateway.gate = asyncio.Event()
        await checkout_service.initiate_checkout(buyer, nequi_request())

        db_session.query(Ticket).filter(Ticket.id == limited_ticket.id).update({Ticket.quantity: 1})
        db_session.commit()
        gateway.gate.set()
        await checkout_service.wait_for_background()

        db_session.expire_all()
        assert db_session.query(TicketPurchase).count() == 1
        assert db_session.get(Ticket, limited_ticket.id).quantity == 0

    @pytest.mark.asyncio
    async def test_fulfills_without_session_store(self, checkout_service, gateway, buyer, two_covers, db_session, session_store):
        gateway.gate = asyncio.Event()
        await checkout_service.initiate_checkout(buyer, nequi_request())
        assert session_store.load("tx-1") is not None

        session_store.discard("tx-1")
        gateway.gate.set()
        await checkout_service.wait_for_background()

        db_session.expire_all()
        tx = db_session.query(PaymentTransaction).one()
        assert tx.payment_status == PaymentStatus.APPROVED
        assert json.loads(tx.metadata_json)["lines"][0]["quantity"] == 2
        assert db_session.query(TicketPurchase).count() == 2


class TestWebhook:
    """Gateway-pushed status updates."""

    @pytest.mark.asyncio
    async def test_late_approval_not_fulfilled(self, checkout_service, gateway, buyer, two_covers, db_session):
        gateway.statuses = [GatewayStatus.DECLINED]
        await checkout_service.initiate_checkout(buyer, nequi_request())
        await checkout_service.wait_for_background()

        outcome = await checkout_service.handle_webhook(webhook_event("tx-1", "APPROVED"))
        assert outcome == {"handled": False, "reason": "late_approval"}

        db_session.expire_all()
        assert db_session.query(PaymentTransaction).one().payment_status == PaymentStatus.DECLINED
        assert db_session.query(TicketPurchase).count() == 0

    @pytest.mark.asyncio
    async def test_webhook_decline(self, checkout_service, gateway, buyer, two_covers, db_session):
        gateway.gate = asyncio.Event()
        await checkout_service.initiate_checkout(buyer, nequi_request())

        outcome = await checkout_service.handle_webhook(webhook_event("tx-1", "VOIDED"))
        assert outcome == {"handled": True, "status": "VOIDED"}

        gateway.gate.set()
        await checkout_service.wait_for_background()
        db_session.expire_all()
        assert db_session.query(PaymentTransaction).one().payment_status == PaymentStatus.VOIDED

    @pytest.mark.asyncio
    async def test_pending_update_ignored(self, checkout_service, gateway, buyer, two_covers):
        gateway.gate = asyncio.Event()
        await checkout_service.initiate_checkout(buyer, nequi_request())
        outcome = await checkout_service.handle_webhook(webhook_event("tx-1", "PENDING"))
        assert outcome == {"handled": False, "reason": "pending"}
        gateway.gate.set()
        await checkout_service.wait_for_background()

    @pytest.mark.asyncio
    async def test_already_final(self, checkout_service, gateway, buyer, two_covers):
        gateway.create_status = GatewayStatus.APPROVED
        await checkout_service.initiate_checkout(buyer, nequi_request())
        outcome = await checkout_service.handle_webhook(webhook_event("tx-1", "APPROVED"))
        assert outcome == {"handled": False, "reason": "already_final", "status": "APPROVED"}

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, checkout_service):
        outcome = await checkout_service.handle_webhook(webhook_event("nope", "APPROVED"))
        assert outcome == {"handled": False, "reason": "unknown_transaction"}

    @pytest.mark.asyncio
    async def test_other_events_ignored(self, checkout_service):
        outcome = await checkout_service.handle_webhook({"event": "nequi_token.updated", "data": {}})
        assert outcome["reason"] == "ignored_event"


class TestStatus:

    @pytest.mark.asyncio
    async def test_status_by_gateway_id_or_reference(self, checkout_service, gateway, buyer, two_covers):
        gateway.create_status = GatewayStatus.APPROVED
        result = await checkout_service.initiate_checkout(buyer, nequi_request())

        status = checkout_service.get_status("tx-1")
        assert status["status"] == "APPROVED"
        assert status["amount"] == 76650.82
        assert status["currency"] == "COP"
        assert status["customerEmail"] == EMAIL
        assert status["lineItemsCount"] == 2
        assert status["finalizedAt"] is not None
        assert checkout_service.get_status(result.reference)["transactionId"] == "tx-1"

    def test_unknown_status(self, checkout_service):
        with pytest.raises(TransactionNotFoundError):
            checkout_service.get_status("missing")

    @pytest.mark.asyncio
    async def test_confirm_unknown(self, checkout_service):
        with pytest.raises(TransactionNotFoundError):
            await checkout_service.confirm_transaction("missing")
