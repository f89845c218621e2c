"""Eligibility evaluator: the booking decision shown before an athlete commits."""

import logging
from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.observability import metrics_collector
from ..schemas.booking import BLOCKED, EligibilityResult, PaymentSource, PaymentType
from ..schemas.catalog import AthleteProfile, EventDetails, MissingRestriction
from .catalog_service import CatalogService
from .entitlement_service import EntitlementResolver

logger = logging.getLogger(__name__)

RESTRICTION_REASON = "Missing required restrictions"
NO_ENTITLEMENT_REASON = "No active membership or package"
FREE_SESSION_REASON = "Free session"


def missing_restriction_ids(required: Iterable[str], held: Iterable[str]) -> list[str]:
    """Required tag ids the athlete does not hold, in required order."""
    held_set = set(held)
    missing = []
    for tag_id in required:
        if tag_id not in held_set and tag_id not in missing:
            missing.append(tag_id)
    return missing


def format_price(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def drop_in_reason(price_cents: int) -> str:
    if price_cents == 0:
        return FREE_SESSION_REASON
    return f"Drop-in: {format_price(price_cents)}"


def decide_eligibility(
    missing_restrictions: Sequence[MissingRestriction],
    sources: Sequence[PaymentSource],
    drop_in_price_cents: int | None,
) -> EligibilityResult:
    """
    The eligibility cascade. The first applicable branch wins:

    1. any missing restriction blocks the booking outright;
    2. otherwise the first ranked payment source is the default;
    3. otherwise a drop-in, when the template offers one;
    4. otherwise the athlete cannot book.
    """
    if missing_restrictions:
        return EligibilityResult(
            can_book=False,
            source_type=BLOCKED,
            reason=RESTRICTION_REASON,
            missing_restrictions=list(missing_restrictions),
        )

    if sources:
        default = sources[0]
        return EligibilityResult(
            can_book=True,
            source_type=default.type.value,
            source_id=default.id,
            remaining_visits=default.remaining_sessions if default.type == PaymentType.PACKAGE else None,
        )

    if drop_in_price_cents is not None:
        return EligibilityResult(
            can_book=True,
            source_type=PaymentType.DROP_IN.value,
            reason=drop_in_reason(drop_in_price_cents),
            drop_in_price_cents=drop_in_price_cents,
        )

    return EligibilityResult(can_book=False, source_type=None, reason=NO_ENTITLEMENT_REASON)


class EligibilityEvaluator:
    """Combines restriction checks, entitlements and drop-in pricing."""

    def __init__(
        self,
        db: AsyncSession,
        catalog: CatalogService | None = None,
        resolver: EntitlementResolver | None = None,
    ):
        self.db = db
        self.catalog = catalog or CatalogService(db)
        self.resolver = resolver or EntitlementResolver(db, self.catalog)

    async def missing_restrictions(
        self,
        event: EventDetails,
        athlete: AthleteProfile,
    ) -> list[MissingRestriction]:
        missing = missing_restriction_ids(event.required_restriction_tag_ids, athlete.restriction_tag_ids)
        if not missing:
            return []
        return await self.catalog.describe_restriction_tags(missing)

    async def evaluate(self, athlete_id: UUID, event_id: UUID) -> EligibilityResult:
        """
        Decide whether the athlete may book the event and how they would pay.

        Read-only and safe to call on every refresh.

        Raises:
            NotFoundError: If the event or athlete does not exist
            DataIntegrityError: If the event's template or organization is missing
            UnavailableError: If the datastore cannot be reached
        """
        event = await self.catalog.get_event_details(event_id)
        athlete = await self.catalog.get_athlete_profile(athlete_id)

        missing = await self.missing_restrictions(event, athlete)

        # Restrictions dominate; entitlements are not even looked up
        sources: list[PaymentSource] = []
        if not missing:
            sources = await self.resolver.resolve_for_event(athlete_id, event)

        result = decide_eligibility(missing, sources, event.drop_in_price_cents)

        metrics_collector.record_eligibility(result.source_type)
        logger.info(
            "Eligibility evaluated",
            extra={
                "athlete_id": str(athlete_id),
                "event_id": str(event_id),
                "can_book": result.can_book,
                "source_type": result.source_type,
                "missing_restrictions": len(result.missing_restrictions),
            },
        )
        return result
