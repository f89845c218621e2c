"""Drop-in payments: gateway intents and post-payment booking."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import datastore_guard
from ..core.exceptions import PaymentError, PaymentSourceInvalidError, ProblemDetailsException, UnavailableError
from ..core.observability import metrics_collector
from ..gateways import PaymentGateway, PaymentIntent
from ..models import Booking, BookingStatus, DropInRefund
from ..schemas.booking import BookingResult, PaymentType
from ..schemas.payment import DropInIntentResponse
from .catalog_service import CatalogService
from .eligibility_service import EligibilityEvaluator
from .reservation_service import ReservationCommitter
from .waiver_service import WaiverService

logger = logging.getLogger(__name__)


def intent_idempotency_key(athlete_id: UUID, event_id: UUID, amount_cents: int, attempt: int = 0) -> str:
    """Gateway key for a drop-in intent; ``attempt`` counts payments already spent on this class."""
    return f"drop-in:{athlete_id}:{event_id}:{amount_cents}:{attempt}"


def auto_refund_idempotency_key(intent_id: str) -> str:
    return f"auto-refund:{intent_id}"


def _booking_result(booking: Booking) -> BookingResult:
    return BookingResult(
        booking_id=booking.id,
        athlete_id=booking.athlete_id,
        event_id=booking.event_id,
        status=booking.status,
        source_type=PaymentType.DROP_IN,
        amount_paid_cents=booking.amount_paid_cents,
        created_at=booking.created_at,
    )


class DropInPaymentService:
    """Charges for drop-ins through the gateway and books once payment lands."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        committer: ReservationCommitter | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.catalog = CatalogService(db)
        self.evaluator = EligibilityEvaluator(db, self.catalog)
        self.waivers = WaiverService(db)
        self.committer = committer or ReservationCommitter(db, self.catalog)

    async def create_drop_in_intent(self, athlete_id: UUID, event_id: UUID) -> DropInIntentResponse:
        """
        Open a gateway payment intent for a priced drop-in.

        Only offered when eligibility resolves to a drop-in with a non-zero
        price and the athlete has no pending booking waivers. Retrying for
        the same athlete, event and price returns the same intent until that
        payment is spent on a booking that is later cancelled or refunded.

        Raises:
            NotFoundError: If the event or athlete does not exist
            PaymentSourceInvalidError: If the athlete would not book as a paid drop-in
            WaiverRequiredError: If the athlete must sign waivers first
            PaymentError: If the gateway rejects the request
            UnavailableError: If the gateway cannot be reached
        """
        eligibility = await self.evaluator.evaluate(athlete_id, event_id)
        price = eligibility.drop_in_price_cents

        if not eligibility.can_book or eligibility.source_type != PaymentType.DROP_IN.value or not price:
            logger.warning(
                "Drop-in intent refused",
                extra={
                    "athlete_id": str(athlete_id),
                    "event_id": str(event_id),
                    "source_type": eligibility.source_type,
                    "price_cents": price,
                },
            )
            raise PaymentSourceInvalidError(
                "A paid drop-in is not available for this class",
                payment_type=PaymentType.DROP_IN.value,
            )

        await self.waivers.ensure_signed(athlete_id)
        attempt = await self._spent_payment_count(athlete_id, event_id)

        intent = await self.gateway.create_payment_intent(
            amount_cents=price,
            currency=settings.drop_in_currency,
            metadata={"athlete_id": str(athlete_id), "event_id": str(event_id)},
            idempotency_key=intent_idempotency_key(athlete_id, event_id, price, attempt),
            description="Drop-in class",
        )

        logger.info(
            "Drop-in payment intent created",
            extra={
                "payment_intent_id": intent.intent_id,
                "athlete_id": str(athlete_id),
                "event_id": str(event_id),
                "amount_cents": price,
                "attempt": attempt,
                "provider": self.gateway.name,
            },
        )

        return DropInIntentResponse(
            client_secret=intent.client_secret or "",
            payment_intent_id=intent.intent_id,
            amount_cents=intent.amount_cents,
            currency=intent.currency,
        )

    async def confirm_drop_in(self, payment_intent_id: str, athlete_id: UUID, event_id: UUID) -> BookingResult:
        """
        Book the athlete after the hosted payment completed.

        If the booking cannot be committed the refund is recorded, the
        payment is refunded at once and the booking error is raised with
        ``refunded: true``. A refunded payment never books, even if a spot
        opens up later.

        Raises:
            PaymentError: If the intent has not succeeded, does not match or was refunded
            BookingRejectedError: If the commit is refused after payment
            UnavailableError: If the gateway or datastore cannot be reached
        """
        intent = await self.gateway.retrieve_payment_intent(payment_intent_id)
        self._check_intent(intent, athlete_id, event_id)

        refund = await self._refund_for_intent(intent.intent_id)
        if refund is not None:
            if refund.refund_id is None:
                await self._issue_refund(intent, refund)
            logger.warning(
                "Drop-in payment was refunded",
                extra={"payment_intent_id": intent.intent_id, "refund_id": refund.refund_id},
            )
            raise PaymentError("This payment was refunded", refunded=True)

        existing = await self._booking_for_intent(intent.intent_id)
        if existing is not None and existing.status != BookingStatus.CONFIRMED:
            logger.warning(
                "Drop-in payment belongs to a cancelled booking",
                extra={"payment_intent_id": intent.intent_id, "booking_id": str(existing.id)},
            )
            raise PaymentError("This payment was already used for a cancelled booking")

        if existing is not None:
            logger.info(
                "Drop-in payment already booked",
                extra={"payment_intent_id": intent.intent_id, "booking_id": str(existing.id)},
            )
            return _booking_result(existing)

        try:
            event = await self.catalog.get_event_details(event_id)
            self._check_amount(intent, event.drop_in_price_cents)
            return await self.committer.commit(
                athlete_id,
                event_id,
                PaymentType.DROP_IN,
                payment_intent_id=intent.intent_id,
                amount_paid_cents=intent.amount_received_cents or intent.amount_cents,
            )
        except ProblemDetailsException as e:
            # A concurrent confirm of the same payment may have booked first
            try:
                booked = await self._booking_for_intent(intent.intent_id)
            except UnavailableError as lookup_error:
                raise lookup_error from e
            if booked is not None and booked.status == BookingStatus.CONFIRMED:
                logger.info(
                    "Drop-in payment booked by a concurrent confirm",
                    extra={"payment_intent_id": intent.intent_id, "booking_id": str(booked.id)},
                )
                return _booking_result(booked)

            await self._refund_failed_booking(intent, athlete_id, event_id, e)
            e.problem_details["refunded"] = True
            raise

    async def _booking_for_intent(self, intent_id: str) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.payment_intent_id == intent_id)
            .order_by(Booking.created_at.desc())
        )
        async with datastore_guard("load drop-in booking"):
            return (await self.db.execute(stmt)).scalars().first()

    async def _refund_for_intent(self, intent_id: str) -> DropInRefund | None:
        stmt = select(DropInRefund).where(DropInRefund.payment_intent_id == intent_id)
        async with datastore_guard("load drop-in refund"):
            return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _spent_payment_count(self, athlete_id: UUID, event_id: UUID) -> int:
        """Payments for this class that were cancelled or refunded and can no longer book."""
        cancelled = select(func.count(Booking.id)).where(
            Booking.athlete_id == athlete_id,
            Booking.event_id == event_id,
            Booking.payment_intent_id.is_not(None),
            Booking.status == BookingStatus.CANCELLED,
        )
        refunded = select(func.count(DropInRefund.id)).where(
            DropInRefund.athlete_id == athlete_id,
            DropInRefund.event_id == event_id,
        )
        async with datastore_guard("count spent drop-in payments"):
            return (await self.db.execute(cancelled)).scalar_one() + (await self.db.execute(refunded)).scalar_one()

    def _check_intent(
        self,
        intent: PaymentIntent,
        athlete_id: UUID,
        event_id: UUID,
    ) -> None:
        context = {
            "payment_intent_id": intent.intent_id,
            "athlete_id": str(athlete_id),
            "event_id": str(event_id),
        }

        if not intent.succeeded:
            logger.warning("Drop-in payment not completed", extra={**context, "status": intent.status.value})
            raise PaymentError("Payment has not completed")

        if intent.metadata.get("athlete_id") != str(athlete_id) or intent.metadata.get("event_id") != str(event_id):
            logger.warning("Drop-in payment belongs to another booking", extra=context)
            raise PaymentError("Payment does not match this booking")

    @staticmethod
    def _check_amount(intent: PaymentIntent, price_cents: int | None) -> None:
        if price_cents is None or intent.amount_received_cents < price_cents:
            logger.warning(
                "Drop-in payment does not cover the price",
                extra={
                    "payment_intent_id": intent.intent_id,
                    "received_cents": intent.amount_received_cents,
                    "price_cents": price_cents,
                },
            )
            raise PaymentError("Payment does not cover the drop-in price")

    async def _refund_failed_booking(
        self,
        intent: PaymentIntent,
        athlete_id: UUID,
        event_id: UUID,
        error: ProblemDetailsException,
    ) -> None:
        logger.warning(
            "Booking failed after payment, refunding",
            extra={"payment_intent_id": intent.intent_id, "error_code": error.code},
        )
        try:
            refund = await self._record_refund(intent, athlete_id, event_id, error)
            await self._issue_refund(intent, refund)
        except ProblemDetailsException as refund_error:
            logger.error(
                "Automatic refund failed",
                extra={
                    "payment_intent_id": intent.intent_id,
                    "error_code": refund_error.code,
                },
            )
            raise refund_error from error

    async def _record_refund(
        self,
        intent: PaymentIntent,
        athlete_id: UUID,
        event_id: UUID,
        error: ProblemDetailsException,
    ) -> DropInRefund:
        refund = DropInRefund(
            payment_intent_id=intent.intent_id,
            athlete_id=athlete_id,
            event_id=event_id,
            amount_cents=intent.amount_received_cents or intent.amount_cents,
            failure_code=error.code or str(error.status_code),
        )
        try:
            async with datastore_guard("record drop-in refund"):
                self.db.add(refund)
                await self.db.commit()
        except IntegrityError:
            # Already recorded by a concurrent confirm
            await self.db.rollback()
            recorded = await self._refund_for_intent(intent.intent_id)
            if recorded is None:
                raise
            return recorded
        return refund

    async def _issue_refund(self, intent: PaymentIntent, refund: DropInRefund) -> None:
        outcome = await self.gateway.refund(
            intent.intent_id,
            None,
            idempotency_key=auto_refund_idempotency_key(intent.intent_id),
            reason="requested_by_customer",
        )

        async with datastore_guard("mark drop-in refunded"):
            refund.refund_id = outcome.refund_id
            refund.refunded_at = datetime.now(timezone.utc)
            await self.db.commit()

        metrics_collector.record_refund("failed_booking")
        logger.info(
            "Payment refunded after failed booking",
            extra={"payment_intent_id": intent.intent_id, "refund_id": outcome.refund_id},
        )
