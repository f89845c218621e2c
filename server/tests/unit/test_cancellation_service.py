"""Unit tests for the cancellation handler."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from booking_engine.core.exceptions import NotFoundError, PaymentError, UnavailableError
from booking_engine.models import Booking, Package
from booking_engine.schemas.booking import PaymentType
from booking_engine.services.cancellation_service import (
    CancellationHandler,
    refund_idempotency_key,
    within_refund_window,
)
from booking_engine.services.reservation_service import ReservationCommitter


async def _book_paid_drop_in(session, factory, payment_gateway, starts_in=timedelta(days=2), refund_window_hours=None):
    org = await factory.org(refund_window_hours=refund_window_hours)
    template = await factory.template(org, drop_in_price_cents=1500)
    event = await factory.event(org, template, starts_in=starts_in)
    athlete = await factory.athlete(org)
    intent = payment_gateway.add_succeeded_intent(1500, {"athlete_id": str(athlete.id), "event_id": str(event.id)})

    result = await ReservationCommitter(session).commit(
        athlete.id,
        event.id,
        PaymentType.DROP_IN,
        payment_intent_id=intent.intent_id,
        amount_paid_cents=1500,
    )
    return athlete, event, intent, result


@pytest.mark.asyncio
async def test_cancel_voids_booking(test_session, factory, payment_gateway):
    org = await factory.org()
    template = await factory.template(org, drop_in_price_cents=0)
    event = await factory.event(org, template)
    athlete = await factory.athlete(org)
    booked = await ReservationCommitter(test_session).commit(athlete.id, event.id, PaymentType.DROP_IN)

    result = await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id, reason="Sick")

    stored = await factory.reload(Booking, booked.booking_id)
    assert result.booking_id == booked.booking_id
    assert result.refunded is False
    assert result.package_use_restored is False
    assert stored.status == "cancelled"
    assert stored.cancelled_at is not None
    assert stored.cancel_reason == "Sick"
    assert payment_gateway.refunds == []


@pytest.mark.asyncio
async def test_cancel_restores_package_use(test_session, factory, payment_gateway):
    org = await factory.org()
    template = await factory.template(org)
    event = await factory.event(org, template)
    athlete = await factory.athlete(org)
    package = await factory.package(athlete, uses_remaining=1)
    await ReservationCommitter(test_session).commit(athlete.id, event.id, PaymentType.PACKAGE, package.id)
    assert (await factory.reload(Package, package.id)).status == "depleted"

    result = await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id)

    stored = await factory.reload(Package, package.id)
    assert result.package_use_restored is True
    assert stored.uses_remaining == 1
    assert stored.status == "active"


@pytest.mark.asyncio
async def test_cancel_unlimited_package_has_nothing_to_restore(test_session, factory, payment_gateway):
    org = await factory.org()
    template = await factory.template(org)
    event = await factory.event(org, template)
    athlete = await factory.athlete(org)
    package = await factory.package(athlete, uses_remaining=None)
    await ReservationCommitter(test_session).commit(athlete.id, event.id, PaymentType.PACKAGE, package.id)

    result = await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id)

    assert result.package_use_restored is False
    assert (await factory.reload(Package, package.id)).uses_remaining is None


@pytest.mark.asyncio
async def test_paid_drop_in_refunded_inside_window(test_session, factory, payment_gateway):
    athlete, event, intent, booked = await _book_paid_drop_in(test_session, factory, payment_gateway)

    result = await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id)

    stored = await factory.reload(Booking, booked.booking_id)
    assert result.refunded is True
    assert result.refund_amount_cents == 1500
    assert stored.refund_id is not None
    assert stored.refunded_amount_cents == 1500
    assert payment_gateway.refunds == [
        {
            "intent_id": intent.intent_id,
            "amount_cents": 1500,
            "idempotency_key": refund_idempotency_key(booked.booking_id),
        }
    ]


@pytest.mark.asyncio
async def test_paid_drop_in_not_refunded_outside_window(test_session, factory, payment_gateway):
    athlete, event, _, booked = await _book_paid_drop_in(
        test_session, factory, payment_gateway, starts_in=timedelta(hours=3), refund_window_hours=12
    )

    result = await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id)

    assert result.refunded is False
    assert result.refund_amount_cents is None
    assert payment_gateway.refunds == []
    assert (await factory.reload(Booking, booked.booking_id)).status == "cancelled"


@pytest.mark.asyncio
async def test_failed_refund_leaves_booking_confirmed(test_session, factory, payment_gateway, unavailable_gateway_error):
    athlete, event, _, booked = await _book_paid_drop_in(test_session, factory, payment_gateway)
    payment_gateway.fail_refunds_with = unavailable_gateway_error

    with pytest.raises(UnavailableError):
        await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id)

    stored = await factory.reload(Booking, booked.booking_id)
    assert stored.status == "confirmed"
    assert stored.refund_id is None


@pytest.mark.asyncio
async def test_declined_refund_keeps_booking(test_session, factory, payment_gateway):
    """Nothing changes when the gateway refuses the refund."""
    athlete, event, _, booked = await _book_paid_drop_in(test_session, factory, payment_gateway)
    payment_gateway.fail_refunds_with = PaymentError("Refund declined", provider_code="charge_disputed")

    with pytest.raises(PaymentError):
        await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id)

    assert (await factory.reload(Booking, booked.booking_id)).status == "confirmed"


@pytest.mark.asyncio
async def test_cancel_twice_is_not_found(test_session, factory, payment_gateway):
    org = await factory.org()
    template = await factory.template(org, drop_in_price_cents=0)
    event = await factory.event(org, template)
    athlete = await factory.athlete(org)
    await ReservationCommitter(test_session).commit(athlete.id, event.id, PaymentType.DROP_IN)
    handler = CancellationHandler(test_session, payment_gateway)

    await handler.cancel(athlete.id, event.id)

    with pytest.raises(NotFoundError) as exc_info:
        await handler.cancel(athlete.id, event.id)

    assert exc_info.value.resource_type == "booking"


@pytest.mark.asyncio
async def test_cancel_without_booking(test_session, payment_gateway):
    with pytest.raises(NotFoundError):
        await CancellationHandler(test_session, payment_gateway).cancel(uuid4(), uuid4())


@pytest.mark.asyncio
async def test_rebook_after_cancel(test_session, factory, payment_gateway):
    """Cancelled bookings stay on record without blocking a new one."""
    org = await factory.org()
    template = await factory.template(org, drop_in_price_cents=0)
    event = await factory.event(org, template, capacity=1)
    athlete = await factory.athlete(org)
    committer = ReservationCommitter(test_session)

    first = await committer.commit(athlete.id, event.id, PaymentType.DROP_IN)
    await CancellationHandler(test_session, payment_gateway).cancel(athlete.id, event.id)
    second = await committer.commit(athlete.id, event.id, PaymentType.DROP_IN)

    assert second.booking_id != first.booking_id
    assert (await factory.reload(Booking, first.booking_id)).status == "cancelled"


def test_refund_window_uses_org_override(make_event_details):
    event = make_event_details(refund_window_hours=6)
    start = event.start_time

    assert within_refund_window(event, start - timedelta(hours=6)) is True
    assert within_refund_window(event, start - timedelta(hours=5, minutes=59)) is False


def test_refund_window_defaults_to_settings(make_event_details):
    event = make_event_details()

    assert within_refund_window(event, event.start_time - timedelta(hours=24)) is True
    assert within_refund_window(event, event.start_time - timedelta(hours=23)) is False
    assert within_refund_window(event, datetime(2026, 1, 1, tzinfo=timezone.utc)) is True
