"""Tests for the payment gateway client and helpers."""

import hashlib
import json

import httpx
import pytest

from app.core.exceptions import GatewayError, PaymentDataError, UnsupportedPaymentMethodError
from app.models.payment import PaymentStatus
from app.services.payment_gateway_service import (
    GatewayStatus,
    GatewayTransaction,
    PaymentGateway,
    WompiGateway,
    build_payment_method,
    sign_integrity,
    verify_event_checksum,
)

BASE_URL = "https://sandbox.test/v1"


def make_gateway(handler) -> WompiGateway:
    return WompiGateway(
        base_url=BASE_URL,
        public_key="pub_test_123",
        private_key="prv_test_456",
        integrity_secret="integrity",
        transport=httpx.MockTransport(handler),
    )


class TestSignatures:

    def test_integrity_signature(self):
        expected = hashlib.sha256(b"unified_1_abc7665082COPintegrity").hexdigest()
        assert sign_integrity("unified_1_abc", 7665082, "COP", "integrity") == expected

    def test_event_checksum(self):
        event = {
            "event": "transaction.updated",
            "data": {"transaction": {"id": "tx-1", "status": "APPROVED", "amount_in_cents": 500}},
            "signature": {"properties": ["transaction.id", "transaction.status", "transaction.amount_in_cents"]},
            "timestamp": 1700000000,
        }
        raw = "tx-1APPROVED5001700000000events"
        event["signature"]["checksum"] = hashlib.sha256(raw.encode()).hexdigest().upper()
        assert verify_event_checksum(event, "events") is True
        assert verify_event_checksum(event, "other-secret") is False

    def test_event_without_signature(self):
        assert verify_event_checksum({"event": "transaction.updated", "timestamp": 1}, "events") is False


class TestPaymentMethods:

    def test_nequi(self):
        assert build_payment_method("nequi", {"phone_number": "3001234567"}) == {
            "type": "NEQUI", "phone_number": "3001234567",
        }

    def test_card_with_token(self):
        method = build_payment_method("CARD", {"token": "tok_1"}, installments=6)
        assert method == {"type": "CARD", "token": "tok_1", "installments": 6}

    def test_pse_defaults(self):
        method = build_payment_method("PSE", {"user_legal_id": "123", "financial_institution_code": "1"})
        assert method["user_type"] == 0
        assert method["user_legal_id_type"] == "CC"

    def test_bancolombia_transfer(self):
        method = build_payment_method("BANCOLOMBIA_TRANSFER", {"payment_description": "Covers"})
        assert method == {"type": "BANCOLOMBIA_TRANSFER", "user_type": "PERSON", "payment_description": "Covers"}

    def test_missing_fields(self):
        with pytest.raises(PaymentDataError) as exc_info:
            build_payment_method("PSE", {"user_legal_id": "123"})
        assert "financial_institution_code" in exc_info.value.message

    def test_unknown_method(self):
        with pytest.raises(UnsupportedPaymentMethodError):
            build_payment_method("CASH", {})


class TestStatusMapping:

    def test_unknown_status_is_error(self):
        assert GatewayStatus.parse("WEIRD") == GatewayStatus.ERROR
        assert GatewayStatus.parse(None) == GatewayStatus.ERROR

    def test_persisted_status(self):
        assert GatewayStatus.APPROVED.to_payment_status() == PaymentStatus.APPROVED
        assert GatewayStatus.VOIDED.to_payment_status() == PaymentStatus.VOIDED
        assert GatewayStatus.ERROR.to_payment_status() == PaymentStatus.DECLINED
        assert GatewayStatus.TIMEOUT.to_payment_status() == PaymentStatus.DECLINED

    def test_from_api_reads_async_url(self):
        tx = GatewayTransaction.from_api({
            "id": "tx-9",
            "status": "PENDING",
            "reference": "unified_1",
            "payment_method": {"type": "PSE", "extra": {"async_payment_url": "https://bank.test/pse"}},
        })
        assert tx.redirect_url == "https://bank.test/pse"
        assert tx.status is GatewayStatus.PENDING


class TestWompiGateway:
    """HTTP client against a mocked transport."""

    @pytest.mark.asyncio
    async def test_create_transaction(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"data": {"id": "12-abc", "status": "PENDING", "reference": "r1"}})

        gateway = make_gateway(handler)
        tx = await gateway.create_transaction({"reference": "r1", "amount_in_cents": 500})
        assert tx.id == "12-abc"
        assert tx.status == GatewayStatus.PENDING
        assert seen["url"] == f"{BASE_URL}/transactions"
        assert seen["auth"] == "Bearer prv_test_456"
        assert seen["body"]["reference"] == "r1"
        await gateway.close()

    @pytest.mark.asyncio
    async def test_create_rejected(self):
        def handler(request):
            return httpx.Response(422, json={"error": {"type": "INPUT_VALIDATION_ERROR", "messages": {"amount": ["bad"]}}})

        with pytest.raises(GatewayError) as exc_info:
            await make_gateway(handler).create_transaction({"reference": "r1"})
        assert "INPUT_VALIDATION_ERROR" in exc_info.value.message
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_create_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(GatewayError) as exc_info:
            await make_gateway(handler).create_transaction({"reference": "r1"})
        assert "unreachable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transaction_status(self):
        def handler(request):
            assert request.url.path == "/v1/transactions/12-abc"
            return httpx.Response(200, json={"data": {"id": "12-abc", "status": "APPROVED", "amount_in_cents": 500}})

        tx = await make_gateway(handler).get_transaction_status("12-abc")
        assert tx.status == GatewayStatus.APPROVED
        assert tx.amount_in_cents == 500

    @pytest.mark.asyncio
    async def test_status_lookup_failure(self):
        def handler(request):
            return httpx.Response(404, json={"error": {"type": "NOT_FOUND_ERROR", "reason": "not found"}})

        with pytest.raises(GatewayError):
            await make_gateway(handler).get_transaction_status("missing")

    @pytest.mark.asyncio
    async def test_acceptance_token(self):
        def handler(request):
            assert request.url.path == "/v1/merchants/pub_test_123"
            return httpx.Response(200, json={"data": {"presigned_acceptance": {"acceptance_token": "eyJ-accept"}}})

        assert await make_gateway(handler).get_acceptance_token() == "eyJ-accept"

    @pytest.mark.asyncio
    async def test_tokenize_card(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer pub_test_123"
            return httpx.Response(201, json={"data": {"id": "tok_prod_1"}})

        card = {"number": "4242424242424242", "cvc": "123", "exp_month": "08", "exp_year": "28", "card_holder": "Ana"}
        assert await make_gateway(handler).tokenize_card(card) == "tok_prod_1"

    @pytest.mark.asyncio
    async def test_tokenize_requires_card_fields(self):
        def handler(request):
            raise AssertionError("should not be called")

        with pytest.raises(PaymentDataError):
            await make_gateway(handler).tokenize_card({"number": "4242"})


class ScriptedGateway(PaymentGateway):
    """Returns or raises the scripted outcomes in order."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def create_transaction(self, payload):
        raise NotImplementedError

    async def get_transaction_status(self, transaction_id):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return GatewayTransaction(id=transaction_id, status=outcome, amount_in_cents=500)

    async def get_acceptance_token(self):
        return None

    def sign(self, reference, amount_in_cents, currency):
        return ""


class TestPolling:

    @pytest.fixture
    def sleeps(self):
        return []

    @pytest.fixture
    def record_sleep(self, sleeps):
        async def _sleep(seconds):
            sleeps.append(seconds)
        return _sleep

    @pytest.mark.asyncio
    async def test_returns_first_final_status(self, sleeps, record_sleep):
        gateway = ScriptedGateway([GatewayStatus.PENDING, GatewayStatus.PENDING, GatewayStatus.DECLINED])
        tx = await gateway.poll_transaction_status("tx-1", interval=3, max_attempts=10, sleep=record_sleep)
        assert tx.status == GatewayStatus.DECLINED
        assert gateway.calls == 3
        assert sleeps == [3, 3]

    @pytest.mark.asyncio
    async def test_error_backoff(self, sleeps, record_sleep):
        gateway = ScriptedGateway([
            httpx.ReadTimeout("slow"),
            GatewayError("500 from gateway"),
            GatewayStatus.APPROVED,
        ])
        tx = await gateway.poll_transaction_status("tx-1", interval=3, max_attempts=10, sleep=record_sleep)
        assert tx.status == GatewayStatus.APPROVED
        assert sleeps == [3, 6]

    @pytest.mark.asyncio
    async def test_timeout_after_max_attempts(self, sleeps, record_sleep):
        gateway = ScriptedGateway([GatewayStatus.PENDING])
        tx = await gateway.poll_transaction_status("tx-1", interval=3, max_attempts=4, sleep=record_sleep)
        assert tx.status == GatewayStatus.TIMEOUT
        assert tx.amount_in_cents == 500
        assert gateway.calls == 4
        # No sleep after the last attempt
        assert len(sleeps) == 3
