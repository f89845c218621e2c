"""Waiver and waiver signature model definitions."""

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
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class WaiverCheckType(str, Enum):
    """When a waiver must be signed."""
    BOOKING = "booking"
    SIGNUP = "signup"


class SignatureType(str, Enum):
    """How a waiver is signed; ``any`` lets the signer choose."""
    CHECKBOX = "checkbox"
    TYPED_NAME = "typed_name"
    DRAWN = "drawn"
    ANY = "any"


class Waiver(Base):
    """
    A liability waiver an organization requires athletes to sign.

    Bumping ``version`` invalidates earlier signatures, so athletes are
    asked to sign again before their next booking.
    """

    __tablename__ = "waivers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    signature_type: Mapped[SignatureType] = mapped_column(String(20), nullable=False, default=SignatureType.CHECKBOX)

    required_for_booking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    required_for_signup: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    requires_guardian_signature: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    minor_age_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("version >= 1", name="ck_waiver_version_positive"),
        CheckConstraint(
            "signature_type IN ('checkbox', 'typed_name', 'drawn', 'any')",
            name="ck_waiver_signature_type_valid",
        ),
    )

    def __repr__(self) -> str:
        return f"<Waiver(id={self.id}, name='{self.name}', version={self.version})>"


class WaiverSignature(Base):
    """One athlete's signature on one version of a waiver."""

    __tablename__ = "waiver_signatures"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    waiver_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("waivers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    athlete_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("athletes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    waiver_version: Mapped[int] = mapped_column(Integer, nullable=False)
    signature_type: Mapped[SignatureType] = mapped_column(String(20), nullable=False)
    signature_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Who signed: the athlete ("self"), a guardian's relationship label, or "staff"
    signed_by_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    signed_by_relationship: Mapped[str | None] = mapped_column(String(64), nullable=True)

    signed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("waiver_id", "athlete_id", "waiver_version", name="uq_waiver_signature_version"),
    )

    def __repr__(self) -> str:
        return (
            f"<WaiverSignature(waiver_id={self.waiver_id}, athlete_id={self.athlete_id}, "
            f"version={self.waiver_version})>"
        )
