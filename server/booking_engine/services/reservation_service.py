"""Reservation committer: creates bookings under the event lock."""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.database import datastore_guard
from ..core.exceptions import (
    BookingRejectedError,
    BookingWindowClosedError,
    CapacityExceededError,
    DataIntegrityError,
    DuplicateBookingError,
    PackageDepletedError,
    PaymentError,
    PaymentSourceInvalidError,
    ProblemDetailsException,
    RestrictionBlockedError,
)
from ..core.locks import KeyedLocks, event_locks
from ..core.observability import metrics_collector
from ..models import Booking, BookingStatus, EventStatus, Package, PackageStatus, SourceType
from ..schemas.booking import BookingResult, PaymentSource, PaymentType
from ..schemas.catalog import EventDetails
from .catalog_service import CatalogService
from .eligibility_service import EligibilityEvaluator
from .entitlement_service import EntitlementResolver
from .package_service import PackageLedger
from .waiver_service import WaiverService

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION_MARKERS = (
    "uq_booking_confirmed_athlete_event",
    "bookings.athlete_id, bookings.event_id",
    "uq_booking_payment_intent",
    "bookings.payment_intent_id",
)


def booking_window_violation(event: EventDetails, now: datetime) -> str | None:
    """Why the event cannot be booked at ``now``, or None when the window is open."""
    if event.status == EventStatus.CANCELLED:
        return "This class has been cancelled"

    closes_at = event.start_time - timedelta(hours=event.hours_before_cutoff)
    if now >= closes_at:
        return "Booking is closed for this class"

    if event.max_days_ahead_open is not None:
        opens_at = event.start_time - timedelta(days=event.max_days_ahead_open)
        if now < opens_at:
            return "Booking is not open yet for this class"

    return None


def _is_duplicate_violation(error: IntegrityError) -> bool:
    message = str(error.orig)
    return any(marker in message for marker in UNIQUE_VIOLATION_MARKERS)


class ReservationCommitter:
    """
    Commits bookings.

    Every precondition is re-checked inside one transaction while holding the
    event's lock: an in-process ``asyncio.Lock`` plus ``SELECT ... FOR UPDATE``
    on the event row where the datastore supports it. The package debit and
    the booking insert commit together or not at all.
    """

    def __init__(
        self,
        db: AsyncSession,
        catalog: CatalogService | None = None,
        resolver: EntitlementResolver | None = None,
        ledger: PackageLedger | None = None,
        locks: KeyedLocks = event_locks,
    ):
        self.db = db
        self.catalog = catalog or CatalogService(db)
        self.resolver = resolver or EntitlementResolver(db, self.catalog)
        self.evaluator = EligibilityEvaluator(db, self.catalog, self.resolver)
        self.ledger = ledger or PackageLedger(db)
        self.waivers = WaiverService(db)
        self.locks = locks

    async def commit(
        self,
        athlete_id: UUID,
        event_id: UUID,
        payment_type: PaymentType | str,
        payment_id: UUID | None = None,
        *,
        payment_intent_id: str | None = None,
        amount_paid_cents: int | None = None,
        now: datetime | None = None,
    ) -> BookingResult:
        """
        Book an athlete into an event.

        Args:
            athlete_id: Athlete to book
            event_id: Scheduled event
            payment_type: membership, package or drop_in
            payment_id: Membership or package ID; ignored for drop-in
            payment_intent_id: Confirmed gateway payment for a priced drop-in
            amount_paid_cents: Amount captured for a priced drop-in
            now: Evaluation time, defaults to the current time

        Returns:
            Identity of the created booking

        Raises:
            NotFoundError: If the event or athlete does not exist
            BookingWindowClosedError: If the event is not open for booking
            RestrictionBlockedError: If the athlete lacks a required restriction
            WaiverRequiredError: If the athlete has unsigned booking waivers
            CapacityExceededError: If the event is full
            DuplicateBookingError: If the athlete already holds a booking
            PackageDepletedError: If the package has no uses left
            PaymentSourceInvalidError: If the payment source cannot fund this event
            PaymentError: If a priced drop-in has no confirmed payment
            UnavailableError: If the datastore cannot be reached
        """
        payment_type = PaymentType(payment_type)
        now = now or utcnow()

        async with self.locks.hold(event_id):
            try:
                booking = await self._commit_locked(
                    athlete_id,
                    event_id,
                    payment_type,
                    payment_id,
                    payment_intent_id=payment_intent_id,
                    amount_paid_cents=amount_paid_cents,
                    now=now,
                )
                async with datastore_guard("commit booking"):
                    await self.db.commit()
                    await self.db.refresh(booking)

            except IntegrityError as e:
                await self.db.rollback()
                if _is_duplicate_violation(e):
                    logger.warning(
                        "Duplicate booking caught by unique index",
                        extra={"athlete_id": str(athlete_id), "event_id": str(event_id)},
                    )
                    metrics_collector.record_booking_rejected(DuplicateBookingError.code_value)
                    raise DuplicateBookingError(str(athlete_id), str(event_id)) from e
                raise DataIntegrityError(
                    "Booking insert violated a constraint",
                    athlete_id=str(athlete_id),
                    event_id=str(event_id),
                    error=str(e.orig),
                ) from e

            except ProblemDetailsException as e:
                await self.db.rollback()
                if isinstance(e, BookingRejectedError):
                    metrics_collector.record_booking_rejected(e.code)
                raise

            except Exception:
                await self.db.rollback()
                raise

        metrics_collector.record_booking_committed(payment_type.value)
        logger.info(
            "Booking committed",
            extra={
                "booking_id": str(booking.id),
                "athlete_id": str(athlete_id),
                "event_id": str(event_id),
                "source_type": booking.source_type,
                "source_id": str(booking.source_id) if booking.source_id else None,
            },
        )

        return BookingResult(
            booking_id=booking.id,
            athlete_id=booking.athlete_id,
            event_id=booking.event_id,
            status=booking.status,
            source_type=PaymentType(booking.source_type),
            source_id=booking.source_id,
            package_id=booking.package_id,
            amount_paid_cents=booking.amount_paid_cents,
            created_at=booking.created_at,
        )

    async def _commit_locked(
        self,
        athlete_id: UUID,
        event_id: UUID,
        payment_type: PaymentType,
        payment_id: UUID | None,
        *,
        payment_intent_id: str | None,
        amount_paid_cents: int | None,
        now: datetime,
    ) -> Booking:
        event = await self.catalog.get_event_details(event_id, for_update=True)
        athlete = await self.catalog.get_athlete_profile(athlete_id)

        window_error = booking_window_violation(event, now)
        if window_error:
            logger.warning(
                "Booking rejected - window closed",
                extra={"event_id": str(event_id), "athlete_id": str(athlete_id), "reason": window_error},
            )
            raise BookingWindowClosedError(window_error, str(event_id))

        missing = await self.evaluator.missing_restrictions(event, athlete)
        if missing:
            logger.warning(
                "Booking rejected - missing restrictions",
                extra={"event_id": str(event_id), "athlete_id": str(athlete_id), "missing": len(missing)},
            )
            raise RestrictionBlockedError([item.model_dump() for item in missing])

        await self.waivers.ensure_signed(athlete_id)

        # Capacity, then duplicate: both read inside the lock
        if event.booked_count >= event.capacity:
            logger.warning(
                "Booking rejected - event full",
                extra={
                    "event_id": str(event_id),
                    "athlete_id": str(athlete_id),
                    "capacity": event.capacity,
                    "booked_count": event.booked_count,
                },
            )
            raise CapacityExceededError(str(event_id), event.capacity, event.booked_count)

        if await self._has_confirmed_booking(athlete_id, event_id):
            logger.warning(
                "Booking rejected - already booked",
                extra={"event_id": str(event_id), "athlete_id": str(athlete_id)},
            )
            raise DuplicateBookingError(str(athlete_id), str(event_id))

        source_id: UUID | None = None
        package_id: UUID | None = None

        if payment_type == PaymentType.DROP_IN:
            amount_paid_cents = self._check_drop_in(event, payment_intent_id, amount_paid_cents)
        else:
            source = await self._validate_source(athlete_id, event, payment_type, payment_id, now)
            source_id = source.id
            if payment_type == PaymentType.PACKAGE:
                package_id = source.id
                if not source.is_unlimited:
                    await self.ledger.debit_use(source.id)
            payment_intent_id = None
            amount_paid_cents = None

        booking = Booking(
            athlete_id=athlete_id,
            event_id=event_id,
            org_id=event.org_id,
            status=BookingStatus.CONFIRMED.value,
            source_type=SourceType(payment_type.value).value,
            source_id=source_id,
            package_id=package_id,
            payment_intent_id=payment_intent_id,
            amount_paid_cents=amount_paid_cents,
        )
        self.db.add(booking)

        async with datastore_guard("insert booking"):
            await self.db.flush()

        return booking

    async def _has_confirmed_booking(self, athlete_id: UUID, event_id: UUID) -> bool:
        stmt = select(Booking.id).where(
            Booking.athlete_id == athlete_id,
            Booking.event_id == event_id,
            Booking.status == BookingStatus.CONFIRMED,
        ).limit(1)
        async with datastore_guard("check duplicate booking"):
            return (await self.db.execute(stmt)).scalar_one_or_none() is not None

    def _check_drop_in(
        self,
        event: EventDetails,
        payment_intent_id: str | None,
        amount_paid_cents: int | None,
    ) -> int | None:
        if not event.offers_drop_in:
            raise PaymentSourceInvalidError(
                "Drop-in is not available for this class",
                payment_type=PaymentType.DROP_IN.value,
            )

        price = event.drop_in_price_cents
        if price == 0:
            return 0

        if not payment_intent_id:
            logger.warning(
                "Drop-in booking without confirmed payment",
                extra={"event_id": str(event.event_id), "price_cents": price},
            )
            raise PaymentError("Payment is required for this drop-in")

        return price if amount_paid_cents is None else amount_paid_cents

    async def _validate_source(
        self,
        athlete_id: UUID,
        event: EventDetails,
        payment_type: PaymentType,
        payment_id: UUID | None,
        now: datetime,
    ) -> PaymentSource:
        if payment_id is None:
            raise PaymentSourceInvalidError(
                "Select a membership or package to book with",
                payment_type=payment_type.value,
            )

        sources = await self.resolver.resolve_for_event(athlete_id, event, now)
        for source in sources:
            if source.id == payment_id and source.type == payment_type:
                return source

        if payment_type == PaymentType.PACKAGE and await self._is_depleted_package(athlete_id, payment_id):
            logger.warning(
                "Booking rejected - package depleted",
                extra={"athlete_id": str(athlete_id), "package_id": str(payment_id)},
            )
            raise PackageDepletedError(str(payment_id))

        logger.warning(
            "Booking rejected - payment source not usable",
            extra={
                "athlete_id": str(athlete_id),
                "event_id": str(event.event_id),
                "payment_type": payment_type.value,
                "payment_id": str(payment_id),
            },
        )
        raise PaymentSourceInvalidError(
            f"This {payment_type.value} can't be used for this class",
            payment_type=payment_type.value,
            payment_id=str(payment_id),
        )

    async def _is_depleted_package(self, athlete_id: UUID, package_id: UUID) -> bool:
        stmt = (
            select(Package)
            .where(Package.id == package_id, Package.athlete_id == athlete_id)
            .execution_options(populate_existing=True)
        )
        async with datastore_guard("load package"):
            package = (await self.db.execute(stmt)).scalar_one_or_none()

        if package is None:
            return False
        if package.status == PackageStatus.DEPLETED:
            return True
        return package.uses_remaining is not None and package.uses_remaining <= 0
