# Services module

from app.services.cart_lock_service import (
    CartIdentity,
    CartLockManager,
    get_cart_lock_manager,
)
from app.services.cart_service import (
    CartCleanupService,
    CartService,
    ValidatedCart,
)
from app.services.fee_service import (
    CheckoutTotals,
    allocate_totals,
    ensure_minimum,
)
from app.services.payment_gateway_service import (
    GatewayStatus,
    PaymentGateway,
    WompiGateway,
    get_payment_gateway,
)
from app.services.checkout_service import (
    CheckoutRequest,
    CheckoutResult,
    CheckoutService,
    get_checkout_service,
)
from app.services.notification_service import (
    NotificationService,
    get_notification_service,
)

__all__ = [
    "CartIdentity",
    "CartLockManager",
    "get_cart_lock_manager",
    "CartCleanupService",
    "CartService",
    "ValidatedCart",
    "CheckoutTotals",
    "allocate_totals",
    "ensure_minimum",
    "GatewayStatus",
    "PaymentGateway",
    "WompiGateway",
    "get_payment_gateway",
    "CheckoutRequest",
    "CheckoutResult",
    "CheckoutService",
    "get_checkout_service",
    "NotificationService",
    "get_notification_service",
]
