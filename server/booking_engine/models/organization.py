"""Organization and restriction tag model definitions."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class Organization(Base):
    """A gym or club that owns athletes, schedules and products."""

    __tablename__ = "organizations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Hours before start after which a paid drop-in is no longer refunded.
    # NULL falls back to the configured default.
    refund_window_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("length(slug) > 0", name="ck_organization_slug_not_empty"),
        CheckConstraint(
            "refund_window_hours IS NULL OR refund_window_hours >= 0",
            name="ck_organization_refund_window_non_negative",
        ),
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug='{self.slug}')>"


class RestrictionTag(Base):
    """Administrative or medical hold that classes can require to be cleared."""

    __tablename__ = "restriction_tags"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<RestrictionTag(id={self.id}, name='{self.name}')>"
