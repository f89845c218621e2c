"""Payment gateway interface consumed by drop-in payments and cancellations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class PaymentIntentState(str, Enum):
    """Standardized payment intent status."""
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELLED = "canceled"

    @classmethod
    def parse(cls, value: str) -> "PaymentIntentState":
        try:
            return cls(value)
        except ValueError:
            return cls.REQUIRES_PAYMENT_METHOD


@dataclass
class PaymentIntent:
    """A gateway-side payment intent."""
    intent_id: str
    client_secret: Optional[str]
    status: PaymentIntentState
    amount_cents: int
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)
    amount_received_cents: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentIntentState.SUCCEEDED


@dataclass
class RefundOutcome:
    """Result of a refund request."""
    refund_id: str
    status: str
    amount_cents: int
    currency: str


class PaymentGateway(ABC):
    """
    Externally hosted payment processing.

    Implementations must bound every call with a timeout and raise
    ``UnavailableError`` when the provider cannot be reached and
    ``PaymentError`` when it rejects the request.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name used in logs."""

    @abstractmethod
    async def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> PaymentIntent:
        """Create a payment intent the client completes in the hosted payment UI."""

    @abstractmethod
    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        """Fetch the current state of a payment intent."""

    @abstractmethod
    async def refund(
        self,
        intent_id: str,
        amount_cents: Optional[int],
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> RefundOutcome:
        """Refund a captured payment, fully when ``amount_cents`` is None."""
