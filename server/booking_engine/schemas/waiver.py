"""Waiver schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ..models import SignatureType


class PendingWaiver(BaseModel):
    """A waiver the athlete still has to sign, at its current version."""

    id: UUID = Field(..., description="Waiver ID")
    name: str
    description: str | None = None
    content: str = Field(..., description="Waiver text shown to the signer")
    version: int = Field(..., ge=1, description="Current waiver version")
    signature_type: SignatureType = Field(..., description="checkbox, typed_name, drawn or any")
    requires_guardian_signature: bool = False
    minor_age_threshold: int | None = None


class WaiverCheckResponse(BaseModel):
    """Whether the athlete has waivers to sign before booking or signup."""

    has_pending_waivers: bool
    pending_waivers: list[PendingWaiver] = Field(default_factory=list)


class SignedWaiver(BaseModel):
    """A recorded signature, flagged when the waiver has moved to a newer version."""

    id: UUID = Field(..., description="Signature ID")
    waiver_id: UUID
    waiver_name: str
    waiver_version: int = Field(..., description="Version that was signed")
    current_version: int
    signature_type: SignatureType
    signed_at: datetime
    signed_by_relationship: str | None = None
    needs_resigning: bool = Field(False, description="True when the signed version is out of date")


class AthleteWaiversResponse(BaseModel):
    signed_waivers: list[SignedWaiver] = Field(default_factory=list)
    pending_waivers: list[PendingWaiver] = Field(default_factory=list)


class SignWaiverRequest(BaseModel):
    """
    Sign the current version of a waiver for an athlete.

    ``signature_data`` carries ``{"agreed": true}`` for a checkbox,
    ``{"typed_name": ...}`` for a typed name and ``{"image_data": ...}``
    (base64 PNG) for a drawn signature.
    """

    waiver_id: UUID = Field(..., description="Waiver being signed")
    athlete_id: UUID = Field(..., description="Athlete the signature covers")
    signature_type: SignatureType = Field(..., description="checkbox, typed_name or drawn")
    signature_data: dict[str, Any] = Field(..., description="Signature payload for the chosen type")

    @model_validator(mode="after")
    def check_signature_data(self) -> "SignWaiverRequest":
        if self.signature_type == SignatureType.ANY:
            raise ValueError("signature_type must be checkbox, typed_name or drawn")

        if self.signature_type == SignatureType.CHECKBOX:
            if self.signature_data.get("agreed") is not True:
                raise ValueError("A checkbox signature requires agreed: true")
        elif self.signature_type == SignatureType.TYPED_NAME:
            typed = self.signature_data.get("typed_name")
            if not isinstance(typed, str) or not typed.strip():
                raise ValueError("A typed signature requires typed_name")
        else:
            image = self.signature_data.get("image_data")
            if not isinstance(image, str) or not image:
                raise ValueError("A drawn signature requires image_data")
        return self


class SignWaiverResponse(BaseModel):
    success: bool = True
    signature_id: UUID
    waiver_version: int

