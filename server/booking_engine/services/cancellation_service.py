"""Cancellation handler: voids bookings and gives back what they consumed."""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.config import settings
from ..core.database import datastore_guard
from ..core.exceptions import NotFoundError
from ..core.locks import KeyedLocks, event_locks
from ..core.observability import metrics_collector
from ..gateways import PaymentGateway
from ..models import Booking, BookingStatus, SourceType
from ..schemas.booking import CancellationResult
from ..schemas.catalog import EventDetails
from .catalog_service import CatalogService
from .package_service import PackageLedger

logger = logging.getLogger(__name__)


def refund_window_hours(event: EventDetails) -> int:
    if event.refund_window_hours is not None:
        return event.refund_window_hours
    return settings.default_refund_window_hours


def within_refund_window(event: EventDetails, now: datetime) -> bool:
    """True while cancelling still earns a refund: at least the window ahead of the start."""
    return now <= event.start_time - timedelta(hours=refund_window_hours(event))


def refund_idempotency_key(booking_id: UUID) -> str:
    return f"cancel-refund:{booking_id}"


class CancellationHandler:
    """
    Cancels confirmed bookings.

    Runs under the same event lock as the reservation committer so a
    cancellation and a booking for the same event never interleave.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        catalog: CatalogService | None = None,
        ledger: PackageLedger | None = None,
        locks: KeyedLocks = event_locks,
    ):
        self.db = db
        self.gateway = gateway
        self.catalog = catalog or CatalogService(db)
        self.ledger = ledger or PackageLedger(db)
        self.locks = locks

    async def cancel(
        self,
        athlete_id: UUID,
        event_id: UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> CancellationResult:
        """
        Cancel the athlete's confirmed booking on an event.

        Package-funded bookings get their use back. Paid drop-ins are refunded
        through the gateway when cancelled inside the refund window; if the
        refund fails nothing is changed.

        Raises:
            NotFoundError: If there is no confirmed booking to cancel
            PaymentError: If the gateway refuses the refund
            UnavailableError: If the datastore or gateway cannot be reached
        """
        now = now or utcnow()

        async with self.locks.hold(event_id):
            try:
                result, source_type = await self._cancel_locked(athlete_id, event_id, reason, now)
                async with datastore_guard("commit cancellation"):
                    await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        metrics_collector.record_booking_cancelled(source_type, result.refunded)
        if result.refunded:
            metrics_collector.record_refund("cancellation")

        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": str(result.booking_id),
                "athlete_id": str(athlete_id),
                "event_id": str(event_id),
                "source_type": source_type,
                "refunded": result.refunded,
                "package_use_restored": result.package_use_restored,
            },
        )
        return result

    async def _cancel_locked(
        self,
        athlete_id: UUID,
        event_id: UUID,
        reason: str | None,
        now: datetime,
    ) -> tuple[CancellationResult, str]:
        stmt = (
            select(Booking)
            .where(
                Booking.athlete_id == athlete_id,
                Booking.event_id == event_id,
                Booking.status == BookingStatus.CONFIRMED,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        async with datastore_guard("load booking"):
            booking = (await self.db.execute(stmt)).scalar_one_or_none()

        if booking is None:
            logger.warning(
                "No confirmed booking to cancel",
                extra={"athlete_id": str(athlete_id), "event_id": str(event_id)},
            )
            raise NotFoundError(
                resource_type="booking",
                detail="No confirmed booking found for this athlete and class",
            )

        package_use_restored = False
        if booking.source_type == SourceType.PACKAGE and booking.package_id is not None:
            package_use_restored = await self.ledger.restore_use(booking.package_id)

        booking.status = BookingStatus.CANCELLED.value
        booking.cancelled_at = now
        booking.cancel_reason = reason

        # A failed refund below rolls this back
        async with datastore_guard("void booking"):
            await self.db.flush()

        refunded = False
        refund_amount: int | None = None
        if self._is_paid_drop_in(booking):
            event = await self.catalog.get_event_details(event_id)
            if within_refund_window(event, now):
                outcome = await self.gateway.refund(
                    booking.payment_intent_id,
                    booking.amount_paid_cents,
                    idempotency_key=refund_idempotency_key(booking.id),
                    reason="requested_by_customer",
                )
                booking.refund_id = outcome.refund_id
                booking.refunded_amount_cents = outcome.amount_cents
                refunded = True
                refund_amount = outcome.amount_cents
                logger.info(
                    "Drop-in refunded on cancellation",
                    extra={
                        "booking_id": str(booking.id),
                        "refund_id": outcome.refund_id,
                        "amount_cents": outcome.amount_cents,
                    },
                )
            else:
                logger.info(
                    "Drop-in cancelled outside refund window",
                    extra={"booking_id": str(booking.id), "window_hours": refund_window_hours(event)},
                )

        result = CancellationResult(
            booking_id=booking.id,
            refunded=refunded,
            refund_amount_cents=refund_amount,
            package_use_restored=package_use_restored,
        )
        return result, booking.source_type

    @staticmethod
    def _is_paid_drop_in(booking: Booking) -> bool:
        return (
            booking.source_type == SourceType.DROP_IN
            and booking.payment_intent_id is not None
            and (booking.amount_paid_cents or 0) > 0
        )
