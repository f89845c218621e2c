"""Catalog reader: events, templates, athletes and restriction tags."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import ensure_utc
from ..core.database import datastore_guard
from ..core.exceptions import DataIntegrityError, NotFoundError
from ..models import (
    Athlete,
    Booking,
    BookingStatus,
    EventStatus,
    EventTemplate,
    Organization,
    RestrictionTag,
    ScheduledEvent,
    SchedulingCategory,
)
from ..schemas.catalog import (
    AthleteProfile,
    BookableEvent,
    CategorySummary,
    EventDetails,
    MissingRestriction,
)

logger = logging.getLogger(__name__)

UNKNOWN_RESTRICTION_NAME = "Unknown restriction"


def _tag_ids(raw: list | None) -> tuple[str, ...]:
    return tuple(str(tag_id) for tag_id in (raw or []))


class CatalogService:
    """Read access to the schedule catalog and athlete profiles."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_confirmed_bookings(self, event_id: UUID) -> int:
        """Number of confirmed bookings holding a spot on the event."""
        stmt = select(func.count(Booking.id)).where(
            Booking.event_id == event_id,
            Booking.status == BookingStatus.CONFIRMED,
        )
        async with datastore_guard("count bookings"):
            result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def get_event_details(self, event_id: UUID, *, for_update: bool = False) -> EventDetails:
        """
        Resolve a scheduled event with its template and organization.

        Args:
            event_id: Scheduled event ID
            for_update: Lock the event row until the transaction ends

        Returns:
            EventDetails with the current confirmed booking count

        Raises:
            NotFoundError: If the event does not exist
            DataIntegrityError: If the event's template or organization is missing
        """
        stmt = select(ScheduledEvent).where(ScheduledEvent.id == event_id)
        if for_update:
            stmt = stmt.with_for_update()

        async with datastore_guard("load event"):
            event = (await self.db.execute(stmt)).scalar_one_or_none()

            if event is None:
                logger.warning("Event not found", extra={"event_id": str(event_id)})
                raise NotFoundError(resource_type="event", resource_id=str(event_id))

            template = await self.db.get(EventTemplate, event.template_id)
            organization = await self.db.get(Organization, event.org_id)

        if template is None:
            raise DataIntegrityError(
                "Scheduled event references a missing template",
                event_id=str(event_id),
                template_id=str(event.template_id),
            )
        if organization is None:
            raise DataIntegrityError(
                "Scheduled event references a missing organization",
                event_id=str(event_id),
                org_id=str(event.org_id),
            )

        booked_count = await self.count_confirmed_bookings(event_id)

        return EventDetails(
            event_id=event.id,
            org_id=event.org_id,
            template_id=template.id,
            template_name=template.name,
            title=event.title,
            category_id=event.category_id or template.category_id,
            required_restriction_tag_ids=_tag_ids(template.required_restriction_tag_ids),
            drop_in_price_cents=template.drop_in_price_cents,
            hours_before_cutoff=template.hours_before_cutoff or 0,
            max_days_ahead_open=template.max_days_ahead_open,
            start_time=ensure_utc(event.start_time),
            end_time=ensure_utc(event.end_time),
            capacity=event.capacity,
            booked_count=booked_count,
            status=event.status,
            refund_window_hours=organization.refund_window_hours,
        )

    async def get_athlete_profile(self, athlete_id: UUID) -> AthleteProfile:
        """
        Resolve an athlete's organization and restriction tags.

        Raises:
            NotFoundError: If the athlete does not exist
        """
        async with datastore_guard("load athlete"):
            athlete = await self.db.get(Athlete, athlete_id)

        if athlete is None:
            logger.warning("Athlete not found", extra={"athlete_id": str(athlete_id)})
            raise NotFoundError(resource_type="athlete", resource_id=str(athlete_id))

        return AthleteProfile(
            athlete_id=athlete.id,
            org_id=athlete.org_id,
            user_id=athlete.user_id,
            first_name=athlete.first_name,
            last_name=athlete.last_name,
            restriction_tag_ids=frozenset(_tag_ids(athlete.restriction_tag_ids)),
        )

    async def describe_restriction_tags(self, tag_ids: list[str] | tuple[str, ...]) -> list[MissingRestriction]:
        """
        Human readable names for restriction tags, in the order given.

        Tags with no stored row still produce an entry so a block is never
        silently dropped.
        """
        if not tag_ids:
            return []

        uuids: list[UUID] = []
        for tag_id in tag_ids:
            try:
                uuids.append(UUID(str(tag_id)))
            except ValueError:
                continue

        rows: dict[str, RestrictionTag] = {}
        if uuids:
            stmt = select(RestrictionTag).where(RestrictionTag.id.in_(uuids))
            async with datastore_guard("load restriction tags"):
                result = await self.db.execute(stmt)
            rows = {str(tag.id): tag for tag in result.scalars()}

        described = []
        for tag_id in tag_ids:
            tag = rows.get(str(tag_id))
            if tag is None:
                logger.warning("Restriction tag not found", extra={"tag_id": str(tag_id)})
                described.append(MissingRestriction(id=str(tag_id), name=UNKNOWN_RESTRICTION_NAME))
            else:
                described.append(MissingRestriction(id=str(tag_id), name=tag.name, description=tag.description))
        return described

    async def list_bookable_events(self, athlete_id: UUID, day: date) -> list[BookableEvent]:
        """
        Scheduled events in the athlete's organization starting on ``day`` (UTC).

        Each entry carries the confirmed count and whether this athlete is
        already booked.
        """
        athlete = await self.get_athlete_profile(athlete_id)

        day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        day_end = day_start + timedelta(days=1)

        booked_counts = (
            select(Booking.event_id, func.count(Booking.id).label("booked_count"))
            .where(Booking.status == BookingStatus.CONFIRMED)
            .group_by(Booking.event_id)
            .subquery()
        )
        own_bookings = (
            select(Booking.event_id)
            .where(Booking.athlete_id == athlete_id, Booking.status == BookingStatus.CONFIRMED)
            .subquery()
        )

        stmt = (
            select(
                ScheduledEvent,
                EventTemplate,
                SchedulingCategory.name,
                func.coalesce(booked_counts.c.booked_count, 0),
                own_bookings.c.event_id,
            )
            .join(EventTemplate, EventTemplate.id == ScheduledEvent.template_id)
            .outerjoin(
                SchedulingCategory,
                SchedulingCategory.id == func.coalesce(ScheduledEvent.category_id, EventTemplate.category_id),
            )
            .outerjoin(booked_counts, booked_counts.c.event_id == ScheduledEvent.id)
            .outerjoin(own_bookings, own_bookings.c.event_id == ScheduledEvent.id)
            .where(
                and_(
                    ScheduledEvent.org_id == athlete.org_id,
                    ScheduledEvent.status == EventStatus.SCHEDULED,
                    ScheduledEvent.start_time >= day_start,
                    ScheduledEvent.start_time < day_end,
                )
            )
            .order_by(ScheduledEvent.start_time)
        )

        async with datastore_guard("list events"):
            result = await self.db.execute(stmt)

        events = []
        for event, template, category_name, booked_count, own_event_id in result.all():
            events.append(
                BookableEvent(
                    id=event.id,
                    title=event.title or template.name,
                    template_id=template.id,
                    category_id=event.category_id or template.category_id,
                    category_name=category_name,
                    start_time=ensure_utc(event.start_time),
                    end_time=ensure_utc(event.end_time),
                    capacity=event.capacity,
                    booked_count=booked_count,
                    spots_available=max(event.capacity - booked_count, 0),
                    is_booked=own_event_id is not None,
                    drop_in_price_cents=template.drop_in_price_cents,
                )
            )

        logger.debug(
            "Listed bookable events",
            extra={"athlete_id": str(athlete_id), "day": day.isoformat(), "count": len(events)},
        )
        return events

    async def list_categories(self, org_id: UUID) -> list[CategorySummary]:
        """Public scheduling categories of an organization, ordered by name."""
        stmt = (
            select(SchedulingCategory)
            .where(SchedulingCategory.org_id == org_id, SchedulingCategory.is_public.is_(True))
            .order_by(SchedulingCategory.name)
        )
        async with datastore_guard("list categories"):
            result = await self.db.execute(stmt)
        return [CategorySummary.model_validate(category) for category in result.scalars()]
