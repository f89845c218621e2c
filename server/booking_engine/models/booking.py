"""Booking model definition."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class SourceType(str, Enum):
    """What funded a booking."""
    MEMBERSHIP = "membership"
    PACKAGE = "package"
    DROP_IN = "drop_in"


class Booking(Base):
    """
    Booking entity linking one athlete to one scheduled event.

    Cancelled bookings are voided rather than deleted so that package
    restorations and refunds remain traceable.
    """

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    athlete_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("athletes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("scheduled_events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    org_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    status: Mapped[BookingStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.CONFIRMED,
        index=True
    )

    # Funding
    source_type: Mapped[SourceType] = mapped_column(String(20), nullable=False)
    source_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    package_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("packages.id", ondelete="SET NULL"),
        nullable=True
    )
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount_paid_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refunded_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "source_type IN ('membership', 'package', 'drop_in')",
            name="ck_booking_source_type_valid",
        ),
        CheckConstraint(
            "source_type <> 'drop_in' OR source_id IS NULL",
            name="ck_booking_drop_in_has_no_source",
        ),
        CheckConstraint(
            "amount_paid_cents IS NULL OR amount_paid_cents >= 0",
            name="ck_booking_amount_paid_non_negative",
        ),
        # At most one live booking per athlete and event
        Index(
            "uq_booking_confirmed_athlete_event",
            "athlete_id",
            "event_id",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
            postgresql_where=text("status = 'confirmed'"),
        ),
        # A drop-in payment funds one booking
        Index("uq_booking_payment_intent", "payment_intent_id", unique=True),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, athlete_id={self.athlete_id}, event_id={self.event_id}, "
            f"status={self.status}, source_type={self.source_type})>"
        )


class DropInRefund(Base):
    """
    Refund issued for a drop-in payment whose booking could not be made.

    Written before the gateway is asked to refund, so a refunded payment
    can never fund a booking later. ``refund_id`` stays empty until the
    gateway confirms.
    """

    __tablename__ = "drop_in_refunds"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    # No foreign keys; kept after the athlete or event is deleted
    athlete_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    event_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    failure_code: Mapped[str] = mapped_column(String(50), nullable=False)
    refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_drop_in_refunds_athlete_event", "athlete_id", "event_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DropInRefund(payment_intent_id={self.payment_intent_id}, "
            f"amount_cents={self.amount_cents}, refund_id={self.refund_id})>"
        )
