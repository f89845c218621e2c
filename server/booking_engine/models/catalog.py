"""Schedule catalog model definitions: categories, templates and events."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class EventStatus(str, Enum):
    """Scheduled event status enumeration."""
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class SchedulingCategory(Base):
    """Grouping of classes (e.g. hitting, pitching) used by entitlement rules."""

    __tablename__ = "scheduling_categories"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<SchedulingCategory(id={self.id}, name='{self.name}')>"


class EventTemplate(Base):
    """Blueprint for recurring classes, carrying booking rules."""

    __tablename__ = "event_templates"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("scheduling_categories.id", ondelete="SET NULL"),
        nullable=True
    )

    # Restriction tags an athlete must hold to book (list of tag id strings)
    required_restriction_tag_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # NULL means drop-in is not offered; 0 means a free session
    drop_in_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Booking window
    hours_before_cutoff: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_days_ahead_open: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "drop_in_price_cents IS NULL OR drop_in_price_cents >= 0",
            name="ck_template_drop_in_price_non_negative",
        ),
        CheckConstraint("hours_before_cutoff >= 0", name="ck_template_cutoff_non_negative"),
        CheckConstraint(
            "max_days_ahead_open IS NULL OR max_days_ahead_open > 0",
            name="ck_template_max_days_ahead_positive",
        ),
    )

    def __repr__(self) -> str:
        return f"<EventTemplate(id={self.id}, name='{self.name}')>"


class ScheduledEvent(Base):
    """A concrete bookable class occurrence."""

    __tablename__ = "scheduled_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Soft reference to event_templates; no foreign key
    template_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Overrides the template's category when set
    category_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("scheduling_categories.id", ondelete="SET NULL"),
        nullable=True
    )

    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[EventStatus] = mapped_column(
        String(20),
        nullable=False,
        default=EventStatus.SCHEDULED,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_event_capacity_non_negative"),
        CheckConstraint("end_time >= start_time", name="ck_event_end_after_start"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduledEvent(id={self.id}, template_id={self.template_id}, "
            f"start_time={self.start_time}, capacity={self.capacity})>"
        )
