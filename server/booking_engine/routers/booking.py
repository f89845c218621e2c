"""Booking router: eligibility, payment methods, booking and cancellation."""

import logging
from uuid import UUID

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import (
    CURRENT_USER_DEPENDENCY,
    DB_DEPENDENCY,
    GATEWAY_DEPENDENCY,
    IDEMPOTENCY_KEY_DEPENDENCY,
)
from ..core.exceptions import InternalServerError, ProblemDetailsException
from ..gateways import PaymentGateway
from ..schemas.booking import (
    BookingResponse,
    CancelBookingResponse,
    CreateBookingRequest,
    EligibilityResult,
    PaymentSource,
)
from ..services.access_service import AccessService
from ..services.cancellation_service import CancellationHandler
from ..services.eligibility_service import EligibilityEvaluator
from ..services.entitlement_service import EntitlementResolver
from ..services.reservation_service import ReservationCommitter
from .idempotency import handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/booking", tags=["booking"])

ATHLETE_ID_QUERY = Query(..., description="Athlete ID")
EVENT_ID_QUERY = Query(..., description="Scheduled event ID")
REASON_QUERY = Query(None, max_length=500, description="Why the booking is cancelled")


@router.get("/eligibility", response_model=EligibilityResult)
async def get_eligibility(
    athlete_id: UUID = ATHLETE_ID_QUERY,
    event_id: UUID = EVENT_ID_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> EligibilityResult:
    """
    Decide whether the athlete can book the event and with which payment source.

    Recomputed on every call; nothing is cached.
    """
    await AccessService(db).ensure_can_act_for(user, athlete_id)
    return await EligibilityEvaluator(db).evaluate(athlete_id, event_id)


@router.get("/payment-methods", response_model=list[PaymentSource])
async def get_payment_methods(
    athlete_id: UUID = ATHLETE_ID_QUERY,
    event_id: UUID = EVENT_ID_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> list[PaymentSource]:
    """Memberships and packages usable for the event, default first."""
    await AccessService(db).ensure_can_act_for(user, athlete_id)
    return await EntitlementResolver(db).resolve(athlete_id, event_id)


@router.post("", response_model=BookingResponse)
async def create_booking(
    request: CreateBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
    idempotency_key: str | None = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Book an athlete into an event with a membership, package or free drop-in.

    Priced drop-ins go through the payment endpoints instead. Replays with
    the same Idempotency-Key return the original response.
    """
    await AccessService(db).ensure_can_act_for(user, request.athlete_id)

    async def operation():
        result = await ReservationCommitter(db).commit(
            request.athlete_id,
            request.event_id,
            request.payment_type,
            request.payment_id,
        )
        return BookingResponse(booking=result).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            operation="booking/create",
            idempotency_key=idempotency_key,
            user_id=user["user_id"],
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db,
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking creation",
            extra={
                "athlete_id": str(request.athlete_id),
                "event_id": str(request.event_id),
                "payment_type": request.payment_type.value,
                "error": str(e),
            },
            exc_info=True,
        )
        raise InternalServerError() from e


@router.delete("", response_model=CancelBookingResponse)
async def cancel_booking(
    athlete_id: UUID = ATHLETE_ID_QUERY,
    event_id: UUID = EVENT_ID_QUERY,
    reason: str | None = REASON_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = GATEWAY_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> CancelBookingResponse:
    """
    Cancel the athlete's booking on an event.

    Cancelling twice returns 404 the second time.
    """
    await AccessService(db).ensure_can_act_for(user, athlete_id)

    try:
        result = await CancellationHandler(db, gateway).cancel(athlete_id, event_id, reason)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking cancellation",
            extra={"athlete_id": str(athlete_id), "event_id": str(event_id), "error": str(e)},
            exc_info=True,
        )
        raise InternalServerError() from e

    return CancelBookingResponse(
        refunded=result.refunded,
        refund_amount_cents=result.refund_amount_cents,
    )
