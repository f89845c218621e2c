"""Drop-in payment router."""

import logging

from fastapi import APIRouter
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
from ..schemas.booking import BookingResponse
from ..schemas.payment import DropInConfirmRequest, DropInIntentRequest, DropInIntentResponse
from ..services.access_service import AccessService
from ..services.drop_in_service import DropInPaymentService
from .idempotency import handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payment", tags=["payment"])


@router.post("/drop-in/intent", response_model=DropInIntentResponse)
async def create_drop_in_intent(
    request: DropInIntentRequest,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = GATEWAY_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> DropInIntentResponse:
    """Open a payment intent for a priced drop-in and return its client secret."""
    await AccessService(db).ensure_can_act_for(user, request.athlete_id)
    return await DropInPaymentService(db, gateway).create_drop_in_intent(request.athlete_id, request.event_id)


@router.post("/drop-in/confirm", response_model=BookingResponse)
async def confirm_drop_in(
    request: DropInConfirmRequest,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = GATEWAY_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
    idempotency_key: str | None = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Book the athlete once the hosted payment succeeded.

    A booking refused after payment is refunded and reported with
    ``refunded: true``.
    """
    await AccessService(db).ensure_can_act_for(user, request.athlete_id)

    async def operation():
        result = await DropInPaymentService(db, gateway).confirm_drop_in(
            request.payment_intent_id,
            request.athlete_id,
            request.event_id,
        )
        return BookingResponse(booking=result).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            operation="payment/drop-in/confirm",
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
            "Unexpected error in drop-in confirmation",
            extra={
                "payment_intent_id": request.payment_intent_id,
                "athlete_id": str(request.athlete_id),
                "event_id": str(request.event_id),
                "error": str(e),
            },
            exc_info=True,
        )
        raise InternalServerError() from e
