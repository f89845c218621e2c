"""Membership, package and entitlement rule model definitions."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class MembershipStatus(str, Enum):
    """Membership status enumeration."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


USABLE_MEMBERSHIP_STATUSES = (MembershipStatus.ACTIVE.value, MembershipStatus.TRIALING.value)


class PackageStatus(str, Enum):
    """Package status enumeration."""
    ACTIVE = "active"
    DEPLETED = "depleted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class RuleScope(str, Enum):
    """What an entitlement rule matches against."""
    ANY = "any"
    CATEGORY = "category"
    TEMPLATE = "template"


class MembershipType(Base):
    """Recurring product; its coverage rules decide which classes it books."""

    __tablename__ = "membership_types"

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
        return f"<MembershipType(id={self.id}, name='{self.name}')>"


class PackageType(Base):
    """Punch-card product with a fixed (or unlimited) number of uses."""

    __tablename__ = "package_types"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # NULL means unlimited uses
    uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    validity_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint("uses IS NULL OR uses > 0", name="ck_package_type_uses_positive"),
    )

    @property
    def is_unlimited(self) -> bool:
        return self.uses is None

    def __repr__(self) -> str:
        return f"<PackageType(id={self.id}, name='{self.name}', uses={self.uses})>"


class EntitlementRule(Base):
    """
    One coverage entry of a membership type or package type.

    Exactly one owner column is set. ``scope=any`` carries no target id,
    ``category`` and ``template`` carry the matching id.
    """

    __tablename__ = "entitlement_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    membership_type_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("membership_types.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    package_type_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("package_types.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    scope: Mapped[RuleScope] = mapped_column(String(20), nullable=False)
    category_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    template_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(membership_type_id IS NULL) <> (package_type_id IS NULL)",
            name="ck_rule_single_owner",
        ),
        CheckConstraint("scope IN ('any', 'category', 'template')", name="ck_rule_scope_valid"),
    )

    def __repr__(self) -> str:
        target = self.category_id or self.template_id
        return f"<EntitlementRule(id={self.id}, scope={self.scope}, target={target})>"


class Membership(Base):
    """An athlete's membership; usable repeatedly while active or trialing."""

    __tablename__ = "memberships"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    athlete_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("athletes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    membership_type_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("membership_types.id", ondelete="RESTRICT"),
        nullable=False
    )
    status: Mapped[MembershipStatus] = mapped_column(
        String(20),
        nullable=False,
        default=MembershipStatus.ACTIVE,
        index=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Membership(id={self.id}, athlete_id={self.athlete_id}, status={self.status})>"


class Package(Base):
    """An athlete's purchased package of class uses."""

    __tablename__ = "packages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    athlete_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("athletes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    package_type_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("package_types.id", ondelete="RESTRICT"),
        nullable=False
    )
    status: Mapped[PackageStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PackageStatus.ACTIVE,
        index=True
    )

    # NULL means unlimited
    uses_remaining: Mapped[int | None] = mapped_column(Integer, nullable=True)
    uses_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

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
            "uses_remaining IS NULL OR uses_remaining >= 0",
            name="ck_package_uses_remaining_non_negative",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Package(id={self.id}, athlete_id={self.athlete_id}, "
            f"status={self.status}, uses_remaining={self.uses_remaining})>"
        )
