"""Booking-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from .catalog import MissingRestriction


class PaymentType(str, Enum):
    """How the athlete pays for a booking."""
    MEMBERSHIP = "membership"
    PACKAGE = "package"
    DROP_IN = "drop_in"


BLOCKED = "blocked"


class PaymentSource(BaseModel):
    """A membership or package usable for a particular event."""

    id: UUID = Field(..., description="Membership or package ID")
    type: PaymentType = Field(..., description="membership or package")
    name: str = Field(..., description="Product name")
    subtitle: str = Field(..., description="Expiry or remaining-sessions summary")
    expiry_date: datetime | None = Field(None, description="Membership period end or package expiry")
    remaining_sessions: int | None = Field(None, description="Uses left on a limited package")
    is_unlimited: bool = Field(False, description="True for unlimited packages")


class EligibilityResult(BaseModel):
    """Outcome of the eligibility cascade; recomputed on every request."""

    can_book: bool = Field(..., description="Whether the athlete may book")
    source_type: str | None = Field(
        None,
        description="membership, package, drop_in, blocked, or null when nothing applies"
    )
    source_id: UUID | None = Field(None, description="Default membership or package")
    reason: str | None = Field(None, description="Human readable explanation")
    remaining_visits: int | None = Field(None, description="Uses left on the default package")
    missing_restrictions: list[MissingRestriction] = Field(default_factory=list)
    drop_in_price_cents: int | None = Field(None, description="Drop-in price when falling back to drop-in")


class CreateBookingRequest(BaseModel):
    """Request schema for committing a booking."""

    athlete_id: UUID = Field(..., description="Athlete to book")
    event_id: UUID = Field(..., description="Scheduled event to book")
    payment_type: PaymentType = Field(..., description="Funding source type")
    payment_id: UUID | None = Field(None, description="Membership or package ID; omitted for drop-in")

    @model_validator(mode="after")
    def check_payment_id(self) -> "CreateBookingRequest":
        if self.payment_type != PaymentType.DROP_IN and self.payment_id is None:
            raise ValueError("payment_id is required for membership and package bookings")
        return self


class BookingResult(BaseModel):
    """Identity of a committed booking."""

    booking_id: UUID = Field(..., description="Unique booking ID")
    athlete_id: UUID
    event_id: UUID
    status: str = Field(..., description="Booking status")
    source_type: PaymentType
    source_id: UUID | None = Field(None, description="Null for drop-in")
    package_id: UUID | None = None
    amount_paid_cents: int | None = None
    created_at: datetime | None = None


class BookingResponse(BaseModel):
    """Response schema for a successful booking."""

    success: bool = True
    booking: BookingResult


class CancellationResult(BaseModel):
    """Outcome of cancelling a booking."""

    booking_id: UUID
    refunded: bool = Field(False, description="Whether a gateway refund was issued")
    refund_amount_cents: int | None = Field(None, description="Refunded amount in cents")
    package_use_restored: bool = Field(False, description="Whether a package use was given back")


class CancelBookingResponse(BaseModel):
    """Response schema for a successful cancellation."""

    success: bool = True
    refunded: bool = False
    refund_amount_cents: int | None = None
