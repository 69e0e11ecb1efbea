"""Checkout domain errors.

Every error carries the HTTP status the API layer should answer with, so
routes can translate them without a lookup table.
"""

from typing import Optional


class CheckoutError(Exception):
    """Base class for errors surfaced to the buyer during cart/checkout."""

    status_code: int = 400
    code: str = "checkout_error"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class CartValidationError(CheckoutError):
    """The cart (or a line being added to it) breaks a business rule."""

    code = "cart_invalid"


class CheckoutInProgressError(CheckoutError):
    """Another checkout already holds the lock for this buyer."""

    status_code = 409
    code = "checkout_in_progress"

    def __init__(self, message: str = "Checkout already in progress for this cart"):
        super().__init__(message)


class BelowMinimumError(CheckoutError):
    """Order total is above zero but below the configured minimum."""

    code = "below_minimum"

    def __init__(self, total, minimum):
        self.total = total
        self.minimum = minimum
        super().__init__(f"Order total {total} is below the minimum of {minimum}")


class UnsupportedPaymentMethodError(CheckoutError):
    code = "unsupported_payment_method"


class TransactionNotFoundError(CheckoutError):
    status_code = 404
    code = "transaction_not_found"


class GatewayError(CheckoutError):
    """The payment gateway could not be reached or rejected the request."""

    status_code = 502
    code = "gateway_error"


class PaymentDataError(CheckoutError):
    """Payment method is known but its method-specific fields are missing."""

    code = "payment_data_invalid"


class CartItemNotFoundError(CartValidationError):
    status_code = 404
    code = "cart_item_not_found"
