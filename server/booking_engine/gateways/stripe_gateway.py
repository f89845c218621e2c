"""Stripe implementation of the payment gateway."""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import stripe

from ..core.exceptions import PaymentError, UnavailableError
from .payment_gateway import PaymentGateway, PaymentIntent, PaymentIntentState, RefundOutcome

logger = logging.getLogger(__name__)


class StripeGateway(PaymentGateway):
    """
    Stripe payment gateway.

    The Stripe SDK is synchronous; every call runs in a worker thread and is
    bounded by ``timeout_seconds``. Network retries are left to the SDK and
    idempotency keys make them safe.
    """

    def __init__(
        self,
        secret_key: str,
        api_version: Optional[str] = None,
        timeout_seconds: float = 10.0,
        max_network_retries: int = 2,
    ):
        self._secret_key = secret_key
        self._api_version = api_version
        self._timeout_seconds = timeout_seconds
        stripe.max_network_retries = max_network_retries

    @property
    def name(self) -> str:
        return "stripe"

    def _request_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"api_key": self._secret_key}
        if self._api_version:
            options["stripe_version"] = self._api_version
        return options

    async def _call(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, **kwargs, **self._request_options()),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error("Payment gateway timed out", extra={"operation": operation})
            raise UnavailableError(service="payment gateway", operation=operation, timed_out=True) from e
        except stripe.CardError as e:
            logger.warning(
                "Card declined",
                extra={"operation": operation, "provider_code": e.code},
            )
            raise PaymentError(e.user_message or "Your card was declined", provider_code=e.code) from e
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            logger.error(
                "Payment gateway unreachable",
                extra={"operation": operation, "error": str(e)},
            )
            raise UnavailableError(service="payment gateway", operation=operation) from e
        except stripe.InvalidRequestError as e:
            logger.error(
                "Payment gateway rejected request",
                extra={"operation": operation, "provider_code": e.code, "error": str(e)},
            )
            raise PaymentError("Payment could not be processed", provider_code=e.code) from e
        except stripe.StripeError as e:
            logger.error(
                "Payment gateway error",
                extra={"operation": operation, "error": str(e)},
                exc_info=True,
            )
            raise PaymentError("Payment service error", provider_code=getattr(e, "code", None)) from e

    @staticmethod
    def _to_intent(intent: Any) -> PaymentIntent:
        metadata = intent.metadata.to_dict() if hasattr(intent.metadata, "to_dict") else dict(intent.metadata or {})
        return PaymentIntent(
            intent_id=intent.id,
            client_secret=intent.client_secret,
            status=PaymentIntentState.parse(intent.status),
            amount_cents=intent.amount,
            currency=intent.currency,
            metadata={str(k): str(v) for k, v in metadata.items()},
            amount_received_cents=intent.amount_received or 0,
        )

    async def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> PaymentIntent:
        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
            "idempotency_key": idempotency_key,
        }
        if description:
            params["description"] = description

        intent = await self._call("create_payment_intent", stripe.PaymentIntent.create, **params)

        logger.info(
            "Payment intent created",
            extra={"payment_intent_id": intent.id, "amount_cents": amount_cents, "currency": currency},
        )
        return self._to_intent(intent)

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        intent = await self._call("retrieve_payment_intent", stripe.PaymentIntent.retrieve, id=intent_id)
        return self._to_intent(intent)

    async def refund(
        self,
        intent_id: str,
        amount_cents: Optional[int],
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> RefundOutcome:
        params: Dict[str, Any] = {
            "payment_intent": intent_id,
            "reason": "requested_by_customer",
            "idempotency_key": idempotency_key,
        }
        if amount_cents is not None:
            params["amount"] = amount_cents
        if reason:
            params["metadata"] = {"cancel_reason": reason[:500]}

        refund = await self._call("refund", stripe.Refund.create, **params)

        logger.info(
            "Refund created",
            extra={"payment_intent_id": intent_id, "refund_id": refund.id, "amount_cents": refund.amount},
        )
        return RefundOutcome(
            refund_id=refund.id,
            status=refund.status,
            amount_cents=refund.amount,
            currency=refund.currency,
        )
