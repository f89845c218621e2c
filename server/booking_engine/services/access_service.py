"""Who may book and cancel on behalf of which athlete."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import datastore_guard
from ..core.exceptions import AuthorizationError, NotFoundError
from ..models import Athlete, AthleteGuardian
from ..schemas.athlete import LinkedAthlete

logger = logging.getLogger(__name__)


def is_staff(user: dict) -> bool:
    roles = user.get("roles") or []
    return any(role in settings.staff_roles for role in roles)


class AccessService:
    """Resolves the athletes an authenticated user may act for."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def ensure_can_act_for(self, user: dict, athlete_id: UUID) -> None:
        """
        Allow the athlete themself, a linked guardian, or staff.

        Raises:
            NotFoundError: If the athlete does not exist
            AuthorizationError: If the user has no link to the athlete
        """
        async with datastore_guard("load athlete"):
            athlete = await self.db.get(Athlete, athlete_id)

        if athlete is None:
            raise NotFoundError(resource_type="athlete", resource_id=str(athlete_id))

        user_id = str(user["user_id"])
        if athlete.user_id == user_id or is_staff(user):
            return

        stmt = select(AthleteGuardian.id).where(
            AthleteGuardian.guardian_user_id == user_id,
            AthleteGuardian.athlete_id == athlete_id,
        )
        async with datastore_guard("check guardian link"):
            linked = (await self.db.execute(stmt)).scalar_one_or_none()

        if linked is None:
            logger.warning(
                "User may not act for athlete",
                extra={"user_id": user_id, "athlete_id": str(athlete_id)},
            )
            raise AuthorizationError("You cannot manage bookings for this athlete")

    async def list_linked_athletes(self, user_id: str) -> list[LinkedAthlete]:
        """The user's own athlete profile plus every athlete they are guardian of, by name."""
        own = select(Athlete).where(Athlete.user_id == user_id)
        guarded = (
            select(Athlete, AthleteGuardian.relationship_label)
            .join(AthleteGuardian, AthleteGuardian.athlete_id == Athlete.id)
            .where(AthleteGuardian.guardian_user_id == user_id)
        )

        async with datastore_guard("list linked athletes"):
            own_rows = (await self.db.execute(own)).scalars().all()
            guarded_rows = (await self.db.execute(guarded)).all()

        athletes: dict[UUID, LinkedAthlete] = {}
        for athlete in own_rows:
            athletes[athlete.id] = LinkedAthlete(
                id=athlete.id,
                org_id=athlete.org_id,
                first_name=athlete.first_name,
                last_name=athlete.last_name,
                relationship="self",
            )
        for athlete, label in guarded_rows:
            athletes.setdefault(
                athlete.id,
                LinkedAthlete(
                    id=athlete.id,
                    org_id=athlete.org_id,
                    first_name=athlete.first_name,
                    last_name=athlete.last_name,
                    relationship=label,
                ),
            )

        return sorted(athletes.values(), key=lambda a: (a.last_name.lower(), a.first_name.lower()))
