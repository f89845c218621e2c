"""Athlete router."""

from uuid import UUID

from fastapi import APIRouter
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CURRENT_USER_DEPENDENCY, DB_DEPENDENCY
from ..schemas.athlete import LinkedAthlete
from ..schemas.waiver import AthleteWaiversResponse
from ..services.access_service import AccessService
from ..services.waiver_service import WaiverService

router = APIRouter(prefix="/v1/athletes", tags=["athletes"])


@router.get("/linked", response_model=list[LinkedAthlete])
async def list_linked_athletes(
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> list[LinkedAthlete]:
    """Athletes the caller can book for: their own profile and any they are guardian of."""
    return await AccessService(db).list_linked_athletes(user["user_id"])


@router.get("/{athlete_id}/waivers", response_model=AthleteWaiversResponse)
async def list_athlete_waivers(
    athlete_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> AthleteWaiversResponse:
    """Signed waivers, flagged when out of date, and those still to sign."""
    await AccessService(db).ensure_can_act_for(user, athlete_id)
    return await WaiverService(db).list_athlete_waivers(athlete_id)
