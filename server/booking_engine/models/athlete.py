"""Athlete and guardian link model definitions."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class Athlete(Base):
    """Athlete identity record."""

    __tablename__ = "athletes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Auth subject of the athlete's own login, if they have one
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True, index=True)

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Restriction tags the athlete has been cleared for (list of tag id strings)
    restriction_tag_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Athlete(id={self.id}, name='{self.full_name}')>"


class AthleteGuardian(Base):
    """Links a parent or guardian account to an athlete they may book for."""

    __tablename__ = "athlete_guardians"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    guardian_user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    athlete_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("athletes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    relationship_label: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("guardian_user_id", "athlete_id", name="uq_athlete_guardian"),
    )

    def __repr__(self) -> str:
        return f"<AthleteGuardian(guardian={self.guardian_user_id}, athlete_id={self.athlete_id})>"
