"""Catalog schemas: typed join results and listing responses."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class EventDetails(BaseModel):
    """
    A scheduled event joined with its template and organization.

    Built once at the data-access boundary; callers never look at the raw
    rows again.
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID
    org_id: UUID
    template_id: UUID
    template_name: str
    title: str | None = None
    category_id: UUID | None = Field(None, description="Event category, falling back to the template's")
    required_restriction_tag_ids: tuple[str, ...] = ()
    drop_in_price_cents: int | None = Field(None, description="None when drop-in is not offered")
    hours_before_cutoff: int = 0
    max_days_ahead_open: int | None = None
    start_time: datetime
    end_time: datetime
    capacity: int
    booked_count: int
    status: str
    refund_window_hours: int | None = Field(None, description="Organization override of the refund window")

    @property
    def spots_available(self) -> int:
        return max(self.capacity - self.booked_count, 0)

    @property
    def is_full(self) -> bool:
        return self.booked_count >= self.capacity

    @property
    def offers_drop_in(self) -> bool:
        return self.drop_in_price_cents is not None


class AthleteProfile(BaseModel):
    """An athlete's organization and cleared restriction tags."""

    model_config = ConfigDict(frozen=True)

    athlete_id: UUID
    org_id: UUID
    user_id: str | None = None
    first_name: str
    last_name: str
    restriction_tag_ids: frozenset[str] = frozenset()


class MissingRestriction(BaseModel):
    """A required restriction the athlete has not been cleared for."""

    id: str = Field(..., description="Restriction tag ID")
    name: str = Field(..., description="Human readable tag name")
    description: str | None = Field(None, description="What the athlete needs to do")


class BookableEvent(BaseModel):
    """A schedule entry as shown in the class list."""

    id: UUID
    title: str
    template_id: UUID
    category_id: UUID | None = None
    category_name: str | None = None
    start_time: datetime
    end_time: datetime
    capacity: int
    booked_count: int
    spots_available: int
    is_booked: bool = Field(..., description="Whether the requesting athlete already holds a booking")
    drop_in_price_cents: int | None = None


class CategorySummary(BaseModel):
    """Public scheduling category."""

    id: UUID
    name: str
    color: str | None = None

    model_config = ConfigDict(from_attributes=True)
