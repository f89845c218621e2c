"""External payment gateway adapters."""

from .payment_gateway import PaymentGateway, PaymentIntent, PaymentIntentState, RefundOutcome
from .stripe_gateway import StripeGateway

__all__ = [
    "PaymentGateway",
    "PaymentIntent",
    "PaymentIntentState",
    "RefundOutcome",
    "StripeGateway",
]
