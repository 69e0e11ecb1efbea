"""Payment Gateway Service - Wompi REST integration.

Provides the abstract operations checkout needs from a gateway:

- create a transaction (card, Nequi, PSE, Bancolombia transfer)
- read a transaction's status
- poll until the transaction leaves PENDING
- sign a transaction (integrity signature) and verify webhook checksums

``PaymentGateway`` is the interface the checkout orchestrator depends on;
``WompiGateway`` implements it over ``httpx.AsyncClient``.
"""

import asyncio
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import GatewayError, PaymentDataError, UnsupportedPaymentMethodError
from app.models.payment import PaymentStatus

logger = logging.getLogger(__name__)


class GatewayStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"

    @classmethod
    def parse(cls, value: Optional[str]) -> "GatewayStatus":
        try:
            return cls(str(value or "").upper())
        except ValueError:
            logger.warning(f"Unrecognized gateway status {value!r}, treating as ERROR")
            return cls.ERROR

    @property
    def is_final(self) -> bool:
        return self is not GatewayStatus.PENDING

    def to_payment_status(self) -> PaymentStatus:
        """Persisted status. ERROR and TIMEOUT are stored as DECLINED."""
        if self in (GatewayStatus.ERROR, GatewayStatus.TIMEOUT):
            return PaymentStatus.DECLINED
        return PaymentStatus(self.value)


class PaymentMethod(str, Enum):
    CARD = "CARD"
    NEQUI = "NEQUI"
    PSE = "PSE"
    BANCOLOMBIA_TRANSFER = "BANCOLOMBIA_TRANSFER"

    @property
    def requires_redirect(self) -> bool:
        return self in (PaymentMethod.PSE, PaymentMethod.BANCOLOMBIA_TRANSFER)


@dataclass
class GatewayTransaction:
    """A gateway transaction as last seen."""
    id: Optional[str]
    status: GatewayStatus
    amount_in_cents: Optional[int] = None
    reference: Optional[str] = None
    redirect_url: Optional[str] = None
    status_message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "GatewayTransaction":
        method = data.get("payment_method") or {}
        extra = method.get("extra") or {}
        return cls(
            id=data.get("id"),
            status=GatewayStatus.parse(data.get("status")),
            amount_in_cents=data.get("amount_in_cents"),
            reference=data.get("reference"),
            redirect_url=extra.get("async_payment_url"),
            status_message=data.get("status_message"),
            raw=data,
        )


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


def sign_integrity(reference: str, amount_in_cents: int, currency: str, secret: str) -> str:
    """SHA-256 hex of reference + amount + currency + integrity secret."""
    raw = f"{reference}{amount_in_cents}{currency}{secret}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _value_by_path(source: Any, path: str) -> Any:
    current = source
    for segment in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


def verify_event_checksum(event: Dict[str, Any], secret: str) -> bool:
    """Check a webhook event's ``signature.checksum``.

    The checksum is SHA-256 over the values named in
    ``signature.properties`` (looked up in ``data``), then the event
    timestamp, then the events secret.
    """
    signature = event.get("signature") or {}
    properties = signature.get("properties")
    checksum = signature.get("checksum")
    timestamp = event.get("timestamp")
    if not isinstance(properties, list) or not checksum or timestamp is None:
        return False

    values = []
    for prop in properties:
        value = _value_by_path(event.get("data") or {}, prop)
        values.append("" if value is None else str(value))
    raw = "".join(values) + str(timestamp) + secret
    computed = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return hmac.compare_digest(computed, str(checksum).lower())


# ---------------------------------------------------------------------------
# Payment method payloads
# ---------------------------------------------------------------------------


def _require(data: Dict[str, Any], *keys: str, method: PaymentMethod) -> None:
    missing = [k for k in keys if not data.get(k)]
    if missing:
        raise PaymentDataError(f"{method.value} payment requires: {', '.join(missing)}")


def build_payment_method(
    method: str,
    payment_data: Optional[Dict[str, Any]],
    installments: int = 1,
    card_token: Optional[str] = None,
) -> Dict[str, Any]:
    """``payment_method`` object for a create-transaction request."""
    try:
        kind = PaymentMethod(str(method).upper())
    except ValueError:
        raise UnsupportedPaymentMethodError(f"Unsupported payment method: {method}")
    data = payment_data or {}

    if kind is PaymentMethod.CARD:
        if not card_token:
            _require(data, "token", method=kind)
        return {"type": kind.value, "token": card_token or data["token"], "installments": installments}
    if kind is PaymentMethod.NEQUI:
        _require(data, "phone_number", method=kind)
        return {"type": kind.value, "phone_number": data["phone_number"]}
    if kind is PaymentMethod.PSE:
        _require(data, "user_legal_id", "financial_institution_code", method=kind)
        return {
            "type": kind.value,
            "user_type": data.get("user_type", 0),
            "user_legal_id_type": data.get("user_legal_id_type", "CC"),
            "user_legal_id": data["user_legal_id"],
            "financial_institution_code": data["financial_institution_code"],
            "payment_description": data.get("payment_description", "Nightlife purchase"),
        }
    _require(data, "payment_description", method=kind)
    return {
        "type": kind.value,
        "user_type": data.get("user_type", "PERSON"),
        "payment_description": data["payment_description"],
    }


# ---------------------------------------------------------------------------
# Gateway interface
# ---------------------------------------------------------------------------

# Connection reset / timeout: retry at the normal interval
TRANSIENT_ERRORS = (httpx.TransportError,)

SleepFn = Callable[[float], Awaitable[None]]


class PaymentGateway(ABC):
    """What checkout needs from a payment gateway."""

    name: str = "gateway"

    @abstractmethod
    async def create_transaction(self, payload: Dict[str, Any]) -> GatewayTransaction:
        """Submit a transaction. Raises GatewayError on rejection."""

    @abstractmethod
    async def get_transaction_status(self, transaction_id: str) -> GatewayTransaction:
        """Current state of a transaction."""

    @abstractmethod
    async def get_acceptance_token(self) -> Optional[str]:
        """Merchant acceptance token required on create, if any."""

    @abstractmethod
    def sign(self, reference: str, amount_in_cents: int, currency: str) -> str:
        """Integrity signature for a create-transaction payload."""

    async def tokenize_card(self, card: Dict[str, Any]) -> str:
        raise UnsupportedPaymentMethodError(f"{self.name} does not tokenize cards")

    async def poll_transaction_status(
        self,
        transaction_id: str,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> GatewayTransaction:
        """Poll until the transaction is final or attempts run out.

        Transport errors wait the normal interval before the next attempt,
        any other error waits twice as long. Exhausting the attempts returns
        a TIMEOUT result.
        """
        interval = settings.checkout_poll_interval_seconds if interval is None else interval
        max_attempts = max_attempts or settings.checkout_poll_max_attempts
        last: Optional[GatewayTransaction] = None

        for attempt in range(1, max_attempts + 1):
            delay = interval
            try:
                last = await self.get_transaction_status(transaction_id)
                if last.status.is_final:
                    logger.info(
                        f"Transaction {transaction_id} resolved {last.status.value} "
                        f"after {attempt} poll(s)"
                    )
                    return last
            except TRANSIENT_ERRORS as e:
                logger.warning(f"Poll {attempt}/{max_attempts} for {transaction_id} network error: {e}")
            except Exception as e:
                delay = interval * 2
                logger.error(f"Poll {attempt}/{max_attempts} for {transaction_id} failed: {e}")
            if attempt < max_attempts:
                await sleep(delay)

        logger.warning(f"Polling timed out for {transaction_id} after {max_attempts} attempts")
        return GatewayTransaction(
            id=transaction_id,
            status=GatewayStatus.TIMEOUT,
            amount_in_cents=last.amount_in_cents if last else None,
            reference=last.reference if last else None,
        )


class WompiGateway(PaymentGateway):
    """Wompi REST API client."""

    name = "wompi"

    def __init__(
        self,
        base_url: Optional[str] = None,
        public_key: Optional[str] = None,
        private_key: Optional[str] = None,
        integrity_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.gateway_base_url).rstrip("/")
        self.public_key = public_key if public_key is not None else settings.gateway_public_key
        self.private_key = private_key if private_key is not None else settings.gateway_private_key
        self.integrity_secret = (
            integrity_secret if integrity_secret is not None else settings.gateway_integrity_secret
        )
        self.timeout = timeout or settings.gateway_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.private_key:
            logger.warning("gateway_private_key is empty -- paid checkouts will fail")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _auth(self, key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {key}"}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            error = response.json().get("error") or {}
        except ValueError:
            return f"HTTP {response.status_code}"
        messages = error.get("messages")
        if messages:
            return f"{error.get('type', 'error')}: {messages}"
        return error.get("reason") or error.get("type") or f"HTTP {response.status_code}"

    def sign(self, reference: str, amount_in_cents: int, currency: str) -> str:
        return sign_integrity(reference, amount_in_cents, currency, self.integrity_secret)

    async def get_acceptance_token(self) -> Optional[str]:
        client = await self._get_client()
        response = await client.get(f"/merchants/{self.public_key}")
        if response.status_code != 200:
            raise GatewayError(f"Could not load merchant acceptance token: {self._error_message(response)}")
        data = response.json().get("data") or {}
        return (data.get("presigned_acceptance") or {}).get("acceptance_token")

    async def tokenize_card(self, card: Dict[str, Any]) -> str:
        required = ("number", "cvc", "exp_month", "exp_year", "card_holder")
        missing = [k for k in required if not card.get(k)]
        if missing:
            raise PaymentDataError(f"CARD payment requires: {', '.join(missing)}")
        client = await self._get_client()
        response = await client.post(
            "/tokens/cards",
            json={k: card[k] for k in required},
            headers=self._auth(self.public_key),
        )
        if response.status_code not in (200, 201):
            raise GatewayError(f"Card tokenization failed: {self._error_message(response)}")
        return response.json()["data"]["id"]

    async def create_transaction(self, payload: Dict[str, Any]) -> GatewayTransaction:
        client = await self._get_client()
        try:
            response = await client.post(
                "/transactions", json=payload, headers=self._auth(self.private_key)
            )
        except httpx.HTTPError as e:
            logger.error(f"Wompi create_transaction transport error: {e}")
            raise GatewayError(f"Payment gateway unreachable: {e}") from e

        if response.status_code not in (200, 201):
            message = self._error_message(response)
            logger.error(f"Wompi create_transaction rejected ({response.status_code}): {message}")
            raise GatewayError(f"Payment rejected by gateway: {message}")

        transaction = GatewayTransaction.from_api(response.json().get("data") or {})
        logger.info(
            f"Wompi transaction {transaction.id} created for {payload.get('reference')} "
            f"({transaction.status.value})"
        )
        return transaction

    async def get_transaction_status(self, transaction_id: str) -> GatewayTransaction:
        client = await self._get_client()
        response = await client.get(
            f"/transactions/{transaction_id}", headers=self._auth(self.private_key)
        )
        if response.status_code != 200:
            raise GatewayError(
                f"Status lookup for {transaction_id} failed: {self._error_message(response)}"
            )
        return GatewayTransaction.from_api(response.json().get("data") or {})


_payment_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Get or create the payment gateway singleton."""
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = WompiGateway()
    return _payment_gateway
