"""Unit tests for the catalog reader."""

from datetime import datetime, time, timedelta, timezone
from uuid import uuid4

import pytest

from booking_engine.core.exceptions import DataIntegrityError, NotFoundError
from booking_engine.models import Booking, ScheduledEvent
from booking_engine.services.catalog_service import UNKNOWN_RESTRICTION_NAME, CatalogService


def _day_at(hour: int, days_ahead: int = 3) -> datetime:
    day = (datetime.now(timezone.utc) + timedelta(days=days_ahead)).date()
    return datetime.combine(day, time(hour=hour), tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_get_event_details_resolves_template_and_org(test_session, factory):
    """Event details carry template rules and the organization refund window."""
    org = await factory.org(refund_window_hours=12)
    hitting = await factory.category(org)
    tag = await factory.tag(org)
    template = await factory.template(
        org,
        category=hitting,
        required_tags=(tag,),
        drop_in_price_cents=2500,
        hours_before_cutoff=2,
        max_days_ahead_open=14,
    )
    event = await factory.event(org, template, capacity=8)

    details = await CatalogService(test_session).get_event_details(event.id)

    assert details.event_id == event.id
    assert details.template_id == template.id
    assert details.category_id == hitting.id
    assert details.required_restriction_tag_ids == (str(tag.id),)
    assert details.drop_in_price_cents == 2500
    assert details.hours_before_cutoff == 2
    assert details.max_days_ahead_open == 14
    assert details.refund_window_hours == 12
    assert details.capacity == 8
    assert details.booked_count == 0
    assert details.start_time.tzinfo is not None


@pytest.mark.asyncio
async def test_event_category_overrides_template(test_session, factory):
    org = await factory.org()
    hitting = await factory.category(org, "Hitting")
    pitching = await factory.category(org, "Pitching")
    template = await factory.template(org, category=hitting)
    event = await factory.event(org, template, category=pitching)

    details = await CatalogService(test_session).get_event_details(event.id)

    assert details.category_id == pitching.id


@pytest.mark.asyncio
async def test_booked_count_ignores_cancelled_bookings(test_session, factory):
    org = await factory.org()
    template = await factory.template(org, drop_in_price_cents=0)
    event = await factory.event(org, template, capacity=3)
    first = await factory.athlete(org, first_name="Ava")
    second = await factory.athlete(org, first_name="Ben")

    await factory._save(
        Booking(athlete_id=first.id, event_id=event.id, org_id=org.id, status="confirmed", source_type="drop_in"),
        Booking(athlete_id=second.id, event_id=event.id, org_id=org.id, status="cancelled", source_type="drop_in"),
    )

    details = await CatalogService(test_session).get_event_details(event.id)

    assert details.booked_count == 1
    assert details.spots_available == 2
    assert not details.is_full


@pytest.mark.asyncio
async def test_get_event_details_not_found(test_session):
    with pytest.raises(NotFoundError) as exc_info:
        await CatalogService(test_session).get_event_details(uuid4())

    assert exc_info.value.resource_type == "event"


@pytest.mark.asyncio
async def test_event_with_missing_template_is_integrity_error(test_session, factory):
    """A dangling template reference is reported without leaking details."""
    org = await factory.org()
    start = datetime.now(timezone.utc) + timedelta(days=1)
    event = await factory._save(
        ScheduledEvent(
            org_id=org.id,
            template_id=uuid4(),
            start_time=start,
            end_time=start + timedelta(hours=1),
            capacity=5,
        )
    )

    with pytest.raises(DataIntegrityError) as exc_info:
        await CatalogService(test_session).get_event_details(event.id)

    assert exc_info.value.status_code == 500
    assert exc_info.value.problem_details["detail"] == "An unexpected error occurred"
    assert "template" in exc_info.value.internal_detail


@pytest.mark.asyncio
async def test_get_athlete_profile(test_session, factory):
    org = await factory.org()
    tag = await factory.tag(org)
    athlete = await factory.athlete(org, user_id="user-1", tags=(tag,))

    profile = await CatalogService(test_session).get_athlete_profile(athlete.id)

    assert profile.org_id == org.id
    assert profile.user_id == "user-1"
    assert profile.restriction_tag_ids == frozenset({str(tag.id)})


@pytest.mark.asyncio
async def test_get_athlete_profile_not_found(test_session):
    with pytest.raises(NotFoundError):
        await CatalogService(test_session).get_athlete_profile(uuid4())


@pytest.mark.asyncio
async def test_describe_restriction_tags_keeps_order_and_unknowns(test_session, factory):
    """Unknown tag ids still surface, under a placeholder name."""
    org = await factory.org()
    medical = await factory.tag(org, "Medical clearance", "Upload a physician's note")
    waiver = await factory.tag(org, "Signed waiver")
    unknown = str(uuid4())

    described = await CatalogService(test_session).describe_restriction_tags(
        [str(waiver.id), unknown, str(medical.id), "not-a-uuid"]
    )

    assert [item.name for item in described] == [
        "Signed waiver",
        UNKNOWN_RESTRICTION_NAME,
        "Medical clearance",
        UNKNOWN_RESTRICTION_NAME,
    ]
    assert described[2].description == "Upload a physician's note"
    assert described[1].id == unknown


@pytest.mark.asyncio
async def test_list_bookable_events_for_day(test_session, factory):
    """Only scheduled events of the athlete's org on that day, in start order."""
    org = await factory.org()
    other_org = await factory.org()
    hitting = await factory.category(org, "Hitting")
    template = await factory.template(org, category=hitting, drop_in_price_cents=1500)
    other_template = await factory.template(other_org)
    athlete = await factory.athlete(org)

    late = await factory.event(org, template, capacity=4, start_time=_day_at(18))
    early = await factory.event(org, template, capacity=2, start_time=_day_at(9))
    await factory.event(org, template, start_time=_day_at(12), status="cancelled")
    await factory.event(org, template, start_time=_day_at(9, days_ahead=4))
    await factory.event(other_org, other_template, start_time=_day_at(10))

    await factory._save(
        Booking(athlete_id=athlete.id, event_id=early.id, org_id=org.id, status="confirmed", source_type="drop_in")
    )

    events = await CatalogService(test_session).list_bookable_events(athlete.id, _day_at(0).date())

    assert [event.id for event in events] == [early.id, late.id]
    assert events[0].is_booked is True
    assert events[0].booked_count == 1
    assert events[0].spots_available == 1
    assert events[0].category_name == "Hitting"
    assert events[1].is_booked is False
    assert events[1].spots_available == 4
    assert events[1].drop_in_price_cents == 1500


@pytest.mark.asyncio
async def test_list_categories_public_only(test_session, factory):
    org = await factory.org()
    await factory.category(org, "Pitching")
    await factory.category(org, "Hitting")
    hidden = await factory.category(org, "Staff only")
    async with factory.database.session() as session:
        row = await session.get(type(hidden), hidden.id)
        row.is_public = False
        await session.commit()

    categories = await CatalogService(test_session).list_categories(org.id)

    assert [category.name for category in categories] == ["Hitting", "Pitching"]
