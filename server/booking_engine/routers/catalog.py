"""Catalog router: the schedule an athlete books from."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CURRENT_USER_DEPENDENCY, DB_DEPENDENCY
from ..schemas.catalog import BookableEvent, CategorySummary
from ..services.access_service import AccessService
from ..services.catalog_service import CatalogService

router = APIRouter(prefix="/v1/catalog", tags=["catalog"])


@router.get("/events", response_model=list[BookableEvent])
async def list_events(
    athlete_id: UUID = Query(..., description="Athlete browsing the schedule"),
    day: date = Query(..., description="Calendar day (UTC)"),
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> list[BookableEvent]:
    """Scheduled events of the athlete's organization on a day."""
    await AccessService(db).ensure_can_act_for(user, athlete_id)
    return await CatalogService(db).list_bookable_events(athlete_id, day)


@router.get("/categories", response_model=list[CategorySummary])
async def list_categories(
    org_id: UUID = Query(..., description="Organization ID"),
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = CURRENT_USER_DEPENDENCY,
) -> list[CategorySummary]:
    return await CatalogService(db).list_categories(org_id)
