"""Athlete schemas."""

from uuid import UUID

from pydantic import BaseModel, Field


class LinkedAthlete(BaseModel):
    """An athlete a guardian account may book for."""

    id: UUID = Field(..., description="Athlete ID")
    org_id: UUID = Field(..., description="Organization ID")
    first_name: str
    last_name: str
    relationship: str | None = Field(None, description="Guardian's relationship to the athlete")
