"""Waiver router: pending waiver checks and signing."""

from uuid import UUID

from fastapi import APIRouter, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CURRENT_USER_DEPENDENCY, DB_DEPENDENCY
from ..models import WaiverCheckType
from ..schemas.waiver import SignWaiverRequest, SignWaiverResponse, WaiverCheckResponse
from ..services.access_service import AccessService
from ..services.waiver_service import WaiverService

router = APIRouter(prefix="/v1/waivers", tags=["waivers"])

ATHLETE_ID_QUERY = Query(..., description="Athlete ID")
CHECK_TYPE_QUERY = Query(WaiverCheckType.BOOKING, description="booking or signup")


@router.get("/check", response_model=WaiverCheckResponse)
async def check_pending_waivers(
    athlete_id: UUID = ATHLETE_ID_QUERY,
    check_type: WaiverCheckType = CHECK_TYPE_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> WaiverCheckResponse:
    """Waivers the athlete must sign before booking (or signing up)."""
    await AccessService(db).ensure_can_act_for(user, athlete_id)
    pending = await WaiverService(db).pending_waivers(athlete_id, check_type)
    return WaiverCheckResponse(has_pending_waivers=bool(pending), pending_waivers=pending)


@router.post("/sign", response_model=SignWaiverResponse)
async def sign_waiver(
    request: SignWaiverRequest,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> SignWaiverResponse:
    """
    Sign the current version of a waiver for an athlete.

    The athlete, a linked guardian or staff may sign. Signing an already
    signed version returns the existing signature.
    """
    await AccessService(db).ensure_can_act_for(user, request.athlete_id)
    return await WaiverService(db).sign_waiver(user, request)
