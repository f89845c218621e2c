"""Entitlement resolver: which memberships and packages can pay for an event."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import ensure_utc, utcnow
from ..core.database import datastore_guard
from ..core.exceptions import DataIntegrityError, NotFoundError
from ..models import (
    USABLE_MEMBERSHIP_STATUSES,
    EntitlementRule,
    Membership,
    MembershipType,
    Package,
    PackageStatus,
    PackageType,
    RuleScope,
)
from ..schemas.booking import PaymentSource, PaymentType
from ..schemas.catalog import EventDetails
from .catalog_service import CatalogService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoverageRule:
    """One entitlement rule detached from the ORM."""
    scope: str
    category_id: UUID | None = None
    template_id: UUID | None = None


def rule_matches(
    rule: CoverageRule,
    category_id: UUID | None,
    template_id: UUID | None,
    *,
    allow_any: bool,
) -> bool:
    """Whether a single rule grants access to an event with this category and template."""
    if rule.scope == RuleScope.ANY:
        return allow_any
    if rule.scope == RuleScope.CATEGORY:
        return category_id is not None and rule.category_id == category_id
    if rule.scope == RuleScope.TEMPLATE:
        return template_id is not None and rule.template_id == template_id
    return False


def membership_covers(
    rules: Sequence[CoverageRule],
    category_id: UUID | None,
    template_id: UUID | None,
) -> bool:
    """
    Membership coverage check.

    An empty coverage list grants nothing, and memberships only honour
    category and template entries.
    """
    return bool(rules) and any(
        rule_matches(rule, category_id, template_id, allow_any=False) for rule in rules
    )


def package_covers(
    rules: Sequence[CoverageRule],
    category_id: UUID | None,
    template_id: UUID | None,
) -> bool:
    """Package rule check; ``any`` rules match every event."""
    return bool(rules) and any(
        rule_matches(rule, category_id, template_id, allow_any=True) for rule in rules
    )


def package_has_uses(uses_remaining: int | None, is_unlimited: bool) -> bool:
    return is_unlimited or uses_remaining is None or uses_remaining > 0


def package_is_current(expiry_date: datetime | None, now: datetime) -> bool:
    return expiry_date is None or ensure_utc(expiry_date) > now


def format_short_date(value: datetime) -> str:
    return f"{value:%b} {value.day}"


def membership_subtitle(current_period_end: datetime | None) -> str:
    if current_period_end is None:
        return "Active"
    return f"Expires {format_short_date(ensure_utc(current_period_end))}"


def package_subtitle(uses_remaining: int | None, is_unlimited: bool) -> str:
    if is_unlimited or uses_remaining is None:
        return "Unlimited sessions"
    noun = "session" if uses_remaining == 1 else "sessions"
    return f"{uses_remaining} {noun} remaining"


PAYMENT_SOURCE_PRIORITY = {
    PaymentType.MEMBERSHIP: 0,
    PaymentType.PACKAGE: 1,
}


def payment_source_rank(source: PaymentSource) -> int:
    """Sort key for payment sources: memberships before packages."""
    return PAYMENT_SOURCE_PRIORITY.get(source.type, len(PAYMENT_SOURCE_PRIORITY))


def rank_payment_sources(sources: Iterable[PaymentSource]) -> list[PaymentSource]:
    """Order sources so index 0 is the default; ties keep their input order."""
    return sorted(sources, key=payment_source_rank)


class EntitlementResolver:
    """Enumerates the usable payment sources for an athlete and event."""

    def __init__(self, db: AsyncSession, catalog: CatalogService | None = None):
        self.db = db
        self.catalog = catalog or CatalogService(db)

    async def resolve(self, athlete_id: UUID, event_id: UUID) -> list[PaymentSource]:
        """
        Usable payment sources, ranked.

        Missing or inconsistent catalog data is treated as "no entitlement"
        and logged. ``UnavailableError`` propagates so callers can tell an
        outage apart from an athlete who is simply not covered.
        """
        try:
            event = await self.catalog.get_event_details(event_id)
        except (NotFoundError, DataIntegrityError) as e:
            logger.warning(
                "Entitlement lookup failed, treating as no entitlement",
                extra={"athlete_id": str(athlete_id), "event_id": str(event_id), "error": e.title},
            )
            return []

        return await self.resolve_for_event(athlete_id, event)

    async def resolve_for_event(
        self,
        athlete_id: UUID,
        event: EventDetails,
        now: datetime | None = None,
    ) -> list[PaymentSource]:
        """Usable payment sources for an already-resolved event."""
        now = now or utcnow()
        memberships = await self._membership_sources(athlete_id, event)
        packages = await self._package_sources(athlete_id, event, now)

        sources = rank_payment_sources([*memberships, *packages])

        logger.debug(
            "Resolved payment sources",
            extra={
                "athlete_id": str(athlete_id),
                "event_id": str(event.event_id),
                "memberships": len(memberships),
                "packages": len(packages),
            },
        )
        return sources

    async def _rules_by_owner(self, column, owner_ids: list[UUID]) -> dict[UUID, list[CoverageRule]]:
        rules: dict[UUID, list[CoverageRule]] = defaultdict(list)
        if not owner_ids:
            return rules

        stmt = select(EntitlementRule).where(column.in_(owner_ids))
        async with datastore_guard("load entitlement rules"):
            result = await self.db.execute(stmt)

        for rule in result.scalars():
            owner_id = getattr(rule, column.key)
            rules[owner_id].append(
                CoverageRule(scope=rule.scope, category_id=rule.category_id, template_id=rule.template_id)
            )
        return rules

    async def _membership_sources(self, athlete_id: UUID, event: EventDetails) -> list[PaymentSource]:
        stmt = (
            select(Membership, MembershipType)
            .join(MembershipType, MembershipType.id == Membership.membership_type_id)
            .where(
                Membership.athlete_id == athlete_id,
                Membership.status.in_(USABLE_MEMBERSHIP_STATUSES),
            )
            .order_by(Membership.created_at, Membership.id)
            .execution_options(populate_existing=True)
        )
        async with datastore_guard("load memberships"):
            rows = (await self.db.execute(stmt)).all()

        coverage = await self._rules_by_owner(
            EntitlementRule.membership_type_id,
            list({membership_type.id for _, membership_type in rows}),
        )

        sources = []
        for membership, membership_type in rows:
            if not membership_covers(coverage.get(membership_type.id, []), event.category_id, event.template_id):
                continue
            sources.append(
                PaymentSource(
                    id=membership.id,
                    type=PaymentType.MEMBERSHIP,
                    name=membership_type.name,
                    subtitle=membership_subtitle(membership.current_period_end),
                    expiry_date=ensure_utc(membership.current_period_end),
                )
            )
        return sources

    async def _package_sources(
        self,
        athlete_id: UUID,
        event: EventDetails,
        now: datetime,
    ) -> list[PaymentSource]:
        stmt = (
            select(Package, PackageType)
            .join(PackageType, PackageType.id == Package.package_type_id)
            .where(
                Package.athlete_id == athlete_id,
                Package.status == PackageStatus.ACTIVE,
            )
            .order_by(Package.created_at, Package.id)
            .execution_options(populate_existing=True)
        )
        async with datastore_guard("load packages"):
            rows = (await self.db.execute(stmt)).all()

        rules = await self._rules_by_owner(
            EntitlementRule.package_type_id,
            list({package_type.id for _, package_type in rows}),
        )

        sources = []
        for package, package_type in rows:
            unlimited = package_type.is_unlimited
            if not package_has_uses(package.uses_remaining, unlimited):
                continue
            if not package_is_current(package.expiry_date, now):
                continue
            if not package_covers(rules.get(package_type.id, []), event.category_id, event.template_id):
                continue

            is_unlimited = unlimited or package.uses_remaining is None
            sources.append(
                PaymentSource(
                    id=package.id,
                    type=PaymentType.PACKAGE,
                    name=package_type.name,
                    subtitle=package_subtitle(package.uses_remaining, is_unlimited),
                    expiry_date=ensure_utc(package.expiry_date),
                    remaining_sessions=None if is_unlimited else package.uses_remaining,
                    is_unlimited=is_unlimited,
                )
            )
        return sources
