"""Drop-in payment schemas."""

from uuid import UUID

from pydantic import BaseModel, Field


class DropInIntentRequest(BaseModel):
    """Request a payment intent for a priced drop-in."""

    athlete_id: UUID = Field(..., description="Athlete being booked")
    event_id: UUID = Field(..., description="Scheduled event")


class DropInIntentResponse(BaseModel):
    """Client secret for the externally hosted payment sheet."""

    client_secret: str = Field(..., description="Secret handed to the payment UI")
    payment_intent_id: str = Field(..., description="Gateway payment intent ID")
    amount_cents: int = Field(..., ge=0, description="Charge amount in cents")
    currency: str = Field(..., description="ISO 4217 currency code")


class DropInConfirmRequest(BaseModel):
    """Confirm a completed drop-in payment and book the athlete."""

    payment_intent_id: str = Field(..., min_length=1, max_length=255, description="Gateway payment intent ID")
    athlete_id: UUID = Field(..., description="Athlete being booked")
    event_id: UUID = Field(..., description="Scheduled event")
