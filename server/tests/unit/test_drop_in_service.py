"""Unit tests for drop-in payments."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from booking_engine.core.exceptions import CapacityExceededError, PaymentError, PaymentSourceInvalidError
from booking_engine.models import Booking, DropInRefund
from booking_engine.schemas.booking import PaymentType
from booking_engine.services.cancellation_service import CancellationHandler
from booking_engine.services.drop_in_service import (
    DropInPaymentService,
    auto_refund_idempotency_key,
    intent_idempotency_key,
)
from booking_engine.services.reservation_service import ReservationCommitter


async def _priced_drop_in(factory, price_cents=1500, capacity=10):
    org = await factory.org()
    template = await factory.template(org, drop_in_price_cents=price_cents)
    event = await factory.event(org, template, capacity=capacity)
    athlete = await factory.athlete(org)
    return athlete, event


@pytest.mark.asyncio
async def test_create_intent_for_priced_drop_in(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)

    response = await DropInPaymentService(test_session, payment_gateway).create_drop_in_intent(athlete.id, event.id)

    intent = payment_gateway.intents[response.payment_intent_id]
    assert response.amount_cents == 1500
    assert response.currency == "usd"
    assert response.client_secret == intent.client_secret
    assert intent.metadata == {"athlete_id": str(athlete.id), "event_id": str(event.id)}


@pytest.mark.asyncio
async def test_create_intent_is_idempotent(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)
    service = DropInPaymentService(test_session, payment_gateway)

    first = await service.create_drop_in_intent(athlete.id, event.id)
    second = await service.create_drop_in_intent(athlete.id, event.id)

    assert first.payment_intent_id == second.payment_intent_id
    assert len(payment_gateway.intents) == 1


@pytest.mark.asyncio
async def test_no_intent_when_covered_by_package(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)
    await factory.package(athlete)

    with pytest.raises(PaymentSourceInvalidError):
        await DropInPaymentService(test_session, payment_gateway).create_drop_in_intent(athlete.id, event.id)

    assert payment_gateway.intents == {}


@pytest.mark.asyncio
async def test_no_intent_for_free_session(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory, price_cents=0)

    with pytest.raises(PaymentSourceInvalidError):
        await DropInPaymentService(test_session, payment_gateway).create_drop_in_intent(athlete.id, event.id)


@pytest.mark.asyncio
async def test_confirm_books_after_payment(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)
    service = DropInPaymentService(test_session, payment_gateway)
    intent = await service.create_drop_in_intent(athlete.id, event.id)
    payment_gateway.complete(intent.payment_intent_id)

    result = await service.confirm_drop_in(intent.payment_intent_id, athlete.id, event.id)

    stored = await factory.reload(Booking, result.booking_id)
    assert result.source_type == PaymentType.DROP_IN
    assert result.amount_paid_cents == 1500
    assert stored.payment_intent_id == intent.payment_intent_id
    assert payment_gateway.refunds == []


@pytest.mark.asyncio
async def test_confirm_twice_returns_same_booking(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)
    service = DropInPaymentService(test_session, payment_gateway)
    intent = await service.create_drop_in_intent(athlete.id, event.id)
    payment_gateway.complete(intent.payment_intent_id)

    first = await service.confirm_drop_in(intent.payment_intent_id, athlete.id, event.id)
    second = await service.confirm_drop_in(intent.payment_intent_id, athlete.id, event.id)

    assert first.booking_id == second.booking_id
    assert payment_gateway.refunds == []


@pytest.mark.asyncio
async def test_confirm_requires_completed_payment(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)
    service = DropInPaymentService(test_session, payment_gateway)
    intent = await service.create_drop_in_intent(athlete.id, event.id)

    with pytest.raises(PaymentError) as exc_info:
        await service.confirm_drop_in(intent.payment_intent_id, athlete.id, event.id)

    assert exc_info.value.problem_details["error"] == "Payment has not completed"
    assert payment_gateway.refunds == []


@pytest.mark.asyncio
async def test_confirm_rejects_payment_for_other_athlete(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)
    sibling = await factory.athlete(await factory.org(), first_name="Ben")
    intent = payment_gateway.add_succeeded_intent(1500, {"athlete_id": str(sibling.id), "event_id": str(event.id)})

    with pytest.raises(PaymentError) as exc_info:
        await DropInPaymentService(test_session, payment_gateway).confirm_drop_in(
            intent.intent_id, athlete.id, event.id
        )

    assert exc_info.value.problem_details["error"] == "Payment does not match this booking"


@pytest.mark.asyncio
async def test_failed_booking_is_refunded(test_session, factory, payment_gateway):
    """A paid athlete who cannot be booked gets their money back at once."""
    athlete, event = await _priced_drop_in(factory, capacity=0)
    service = DropInPaymentService(test_session, payment_gateway)
    intent = await service.create_drop_in_intent(athlete.id, event.id)
    payment_gateway.complete(intent.payment_intent_id)

    with pytest.raises(CapacityExceededError) as exc_info:
        await service.confirm_drop_in(intent.payment_intent_id, athlete.id, event.id)

    assert exc_info.value.problem_details["refunded"] is True
    assert payment_gateway.refunds == [
        {
            "intent_id": intent.payment_intent_id,
            "amount_cents": 1500,
            "idempotency_key": auto_refund_idempotency_key(intent.payment_intent_id),
        }
    ]


@pytest.mark.asyncio
async def test_underpaid_intent_is_refunded(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)
    intent = payment_gateway.add_succeeded_intent(500, {"athlete_id": str(athlete.id), "event_id": str(event.id)})

    with pytest.raises(PaymentError) as exc_info:
        await DropInPaymentService(test_session, payment_gateway).confirm_drop_in(
            intent.intent_id, athlete.id, event.id
        )

    assert exc_info.value.problem_details["error"] == "Payment does not cover the drop-in price"
    assert exc_info.value.problem_details["refunded"] is True
    assert len(payment_gateway.refunds) == 1


@pytest.mark.asyncio
async def test_refund_failure_is_reported(test_session, factory, payment_gateway, unavailable_gateway_error):
    athlete, event = await _priced_drop_in(factory, capacity=0)
    intent = payment_gateway.add_succeeded_intent(1500, {"athlete_id": str(athlete.id), "event_id": str(event.id)})
    payment_gateway.fail_refunds_with = unavailable_gateway_error

    with pytest.raises(type(unavailable_gateway_error)):
        await DropInPaymentService(test_session, payment_gateway).confirm_drop_in(
            intent.intent_id, athlete.id, event.id
        )


@pytest.mark.asyncio
async def test_payment_of_cancelled_booking_cannot_rebook(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)
    service = DropInPaymentService(test_session, payment_gateway)
    intent = await service.create_drop_in_intent(athlete.id, event.id)
    payment_gateway.complete(intent.payment_intent_id)
    await service.confirm_drop_in(intent.payment_intent_id, athlete.id, event.id)
    await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id)
    refunds_after_cancel = len(payment_gateway.refunds)

    with pytest.raises(PaymentError) as exc_info:
        await service.confirm_drop_in(intent.payment_intent_id, athlete.id, event.id)

    assert exc_info.value.problem_details["error"] == "This payment was already used for a cancelled booking"
    assert len(payment_gateway.refunds) == refunds_after_cancel


@pytest.mark.asyncio
async def test_failed_booking_records_refund(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory, capacity=0)
    intent = payment_gateway.add_succeeded_intent(1500, {"athlete_id": str(athlete.id), "event_id": str(event.id)})

    with pytest.raises(CapacityExceededError):
        await DropInPaymentService(test_session, payment_gateway).confirm_drop_in(
            intent.intent_id, athlete.id, event.id
        )

    async with factory.database.session() as session:
        refund = (await session.execute(select(DropInRefund))).scalar_one()
    assert refund.payment_intent_id == intent.intent_id
    assert refund.amount_cents == 1500
    assert refund.failure_code == "FULL"
    assert refund.refund_id is not None
    assert refund.refunded_at is not None


@pytest.mark.asyncio
async def test_refunded_payment_cannot_book_when_spot_opens(test_session, factory, payment_gateway):
    """Once refunded, a payment stays spent even after the class frees up."""
    org = await factory.org()
    template = await factory.template(org, drop_in_price_cents=1500)
    event = await factory.event(org, template, capacity=1)
    athlete = await factory.athlete(org)
    other = await factory.athlete(org, first_name="Other")
    package = await factory.package(other)
    await ReservationCommitter(test_session).commit(other.id, event.id, PaymentType.PACKAGE, package.id)
    intent = payment_gateway.add_succeeded_intent(1500, {"athlete_id": str(athlete.id), "event_id": str(event.id)})
    service = DropInPaymentService(test_session, payment_gateway)

    with pytest.raises(CapacityExceededError):
        await service.confirm_drop_in(intent.intent_id, athlete.id, event.id)
    await CancellationHandler(test_session, payment_gateway).cancel(other.id, event.id)

    with pytest.raises(PaymentError) as exc_info:
        await service.confirm_drop_in(intent.intent_id, athlete.id, event.id)

    assert exc_info.value.problem_details["error"] == "This payment was refunded"
    assert exc_info.value.problem_details["refunded"] is True
    assert [refund["intent_id"] for refund in payment_gateway.refunds] == [intent.intent_id]
    async with factory.database.session() as session:
        stmt = select(Booking).where(Booking.athlete_id == athlete.id)
        assert (await session.execute(stmt)).scalars().all() == []


@pytest.mark.asyncio
async def test_retry_completes_refund_that_failed(test_session, factory, payment_gateway, unavailable_gateway_error):
    athlete, event = await _priced_drop_in(factory, capacity=0)
    intent = payment_gateway.add_succeeded_intent(1500, {"athlete_id": str(athlete.id), "event_id": str(event.id)})
    service = DropInPaymentService(test_session, payment_gateway)
    payment_gateway.fail_refunds_with = unavailable_gateway_error

    with pytest.raises(type(unavailable_gateway_error)):
        await service.confirm_drop_in(intent.intent_id, athlete.id, event.id)

    payment_gateway.fail_refunds_with = None
    with pytest.raises(PaymentError) as exc_info:
        await service.confirm_drop_in(intent.intent_id, athlete.id, event.id)

    assert exc_info.value.problem_details["refunded"] is True
    assert payment_gateway.refunds[0]["idempotency_key"] == auto_refund_idempotency_key(intent.intent_id)
    assert len(payment_gateway.refunds) == 1


@pytest.mark.asyncio
async def test_rebook_after_cancel_gets_new_intent(test_session, factory, payment_gateway):
    athlete, event = await _priced_drop_in(factory)
    service = DropInPaymentService(test_session, payment_gateway)
    first = await service.create_drop_in_intent(athlete.id, event.id)
    payment_gateway.complete(first.payment_intent_id)
    await service.confirm_drop_in(first.payment_intent_id, athlete.id, event.id)
    await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id)

    second = await service.create_drop_in_intent(athlete.id, event.id)
    payment_gateway.complete(second.payment_intent_id)
    result = await service.confirm_drop_in(second.payment_intent_id, athlete.id, event.id)

    assert second.payment_intent_id != first.payment_intent_id
    stored = await factory.reload(Booking, result.booking_id)
    assert stored.status == "confirmed"
    assert stored.payment_intent_id == second.payment_intent_id


def test_intent_key_changes_per_attempt():
    athlete_id, event_id = uuid4(), uuid4()

    assert intent_idempotency_key(athlete_id, event_id, 1500) == intent_idempotency_key(athlete_id, event_id, 1500, 0)
    assert intent_idempotency_key(athlete_id, event_id, 1500, 1) != intent_idempotency_key(athlete_id, event_id, 1500)
