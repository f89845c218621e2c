"""Waivers: which ones an athlete still owes, and recording signatures."""

import logging
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import datastore_guard
from ..core.exceptions import NotFoundError, ValidationError, WaiverRequiredError
from ..models import Athlete, AthleteGuardian, SignatureType, Waiver, WaiverCheckType, WaiverSignature
from ..schemas.waiver import (
    AthleteWaiversResponse,
    PendingWaiver,
    SignedWaiver,
    SignWaiverRequest,
    SignWaiverResponse,
)
from .access_service import is_staff

logger = logging.getLogger(__name__)


def _pending(waiver: Waiver) -> PendingWaiver:
    return PendingWaiver(
        id=waiver.id,
        name=waiver.name,
        description=waiver.description,
        content=waiver.content,
        version=waiver.version,
        signature_type=waiver.signature_type,
        requires_guardian_signature=waiver.requires_guardian_signature,
        minor_age_threshold=waiver.minor_age_threshold,
    )


class WaiverService:
    """Tracks waiver signatures per athlete and gates booking on them."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def pending_waivers(
        self,
        athlete_id: UUID,
        check_type: WaiverCheckType | None = WaiverCheckType.BOOKING,
    ) -> list[PendingWaiver]:
        """
        Active waivers of the athlete's organization not signed at their current version.

        ``check_type`` narrows to waivers required for booking or signup;
        None returns every active waiver.

        Raises:
            NotFoundError: If the athlete does not exist
            UnavailableError: If the datastore cannot be reached
        """
        athlete = await self._athlete(athlete_id)
        waivers = await self._active_waivers(athlete.org_id, check_type)
        if not waivers:
            return []

        signed = select(WaiverSignature.waiver_id, WaiverSignature.waiver_version).where(
            WaiverSignature.athlete_id == athlete_id,
            WaiverSignature.waiver_id.in_([waiver.id for waiver in waivers]),
        )
        async with datastore_guard("load waiver signatures"):
            signed_versions = {(row.waiver_id, row.waiver_version) for row in (await self.db.execute(signed)).all()}

        return [_pending(waiver) for waiver in waivers if (waiver.id, waiver.version) not in signed_versions]

    async def ensure_signed(
        self,
        athlete_id: UUID,
        check_type: WaiverCheckType = WaiverCheckType.BOOKING,
    ) -> None:
        """
        Raises:
            WaiverRequiredError: If any required waiver is unsigned or out of date
        """
        pending = await self.pending_waivers(athlete_id, check_type)
        if pending:
            logger.warning(
                "Booking blocked by pending waivers",
                extra={
                    "athlete_id": str(athlete_id),
                    "check_type": check_type.value,
                    "waiver_ids": [str(waiver.id) for waiver in pending],
                },
            )
            raise WaiverRequiredError([waiver.model_dump(mode="json") for waiver in pending])

    async def list_athlete_waivers(self, athlete_id: UUID) -> AthleteWaiversResponse:
        """Latest signature per waiver plus everything still to sign."""
        athlete = await self._athlete(athlete_id)
        stmt = (
            select(WaiverSignature, Waiver)
            .join(Waiver, Waiver.id == WaiverSignature.waiver_id)
            .where(WaiverSignature.athlete_id == athlete_id, Waiver.org_id == athlete.org_id)
            .order_by(Waiver.name, WaiverSignature.waiver_version.desc())
        )
        async with datastore_guard("list athlete waivers"):
            rows = (await self.db.execute(stmt)).all()

        latest: dict[UUID, SignedWaiver] = {}
        for signature, waiver in rows:
            if waiver.id in latest:
                continue
            latest[waiver.id] = SignedWaiver(
                id=signature.id,
                waiver_id=waiver.id,
                waiver_name=waiver.name,
                waiver_version=signature.waiver_version,
                current_version=waiver.version,
                signature_type=signature.signature_type,
                signed_at=signature.signed_at,
                signed_by_relationship=signature.signed_by_relationship,
                needs_resigning=signature.waiver_version < waiver.version,
            )

        return AthleteWaiversResponse(
            signed_waivers=list(latest.values()),
            pending_waivers=await self.pending_waivers(athlete_id, check_type=None),
        )

    async def sign_waiver(self, user: dict, request: SignWaiverRequest) -> SignWaiverResponse:
        """
        Record a signature on the waiver's current version.

        Signing a version that is already signed returns the existing
        signature. The caller must already be allowed to act for the athlete.

        Raises:
            NotFoundError: If the athlete or an active waiver of their organization does not exist
            ValidationError: If the waiver requires a different signature type
            UnavailableError: If the datastore cannot be reached
        """
        athlete = await self._athlete(request.athlete_id)
        async with datastore_guard("load waiver"):
            waiver = await self.db.get(Waiver, request.waiver_id)

        if waiver is None or not waiver.is_active or waiver.org_id != athlete.org_id:
            raise NotFoundError(resource_type="waiver", resource_id=str(request.waiver_id))

        required = SignatureType(waiver.signature_type).value
        if waiver.signature_type != SignatureType.ANY and request.signature_type != waiver.signature_type:
            raise ValidationError(
                f"This waiver must be signed with a {required} signature",
                violations=[{"field": "signature_type", "message": f"expected {required}"}],
            )

        waiver_id, athlete_id, version = waiver.id, athlete.id, waiver.version
        existing = await self._signature(waiver_id, athlete_id, version)
        if existing is not None:
            return SignWaiverResponse(signature_id=existing.id, waiver_version=existing.waiver_version)

        user_id = str(user["user_id"])
        signature = WaiverSignature(
            waiver_id=waiver_id,
            athlete_id=athlete_id,
            waiver_version=version,
            signature_type=request.signature_type.value,
            signature_data=request.signature_data,
            signed_by_user_id=user_id,
            signed_by_relationship=await self._relationship(user, athlete),
        )
        try:
            async with datastore_guard("record waiver signature"):
                self.db.add(signature)
                await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self._signature(waiver_id, athlete_id, version)
            if existing is None:
                raise
            signature = existing

        logger.info(
            "Waiver signed",
            extra={
                "waiver_id": str(waiver_id),
                "waiver_version": version,
                "athlete_id": str(athlete_id),
                "signed_by": user_id,
            },
        )
        return SignWaiverResponse(signature_id=signature.id, waiver_version=signature.waiver_version)

    async def _athlete(self, athlete_id: UUID) -> Athlete:
        async with datastore_guard("load athlete"):
            athlete = await self.db.get(Athlete, athlete_id)
        if athlete is None:
            raise NotFoundError(resource_type="athlete", resource_id=str(athlete_id))
        return athlete

    async def _active_waivers(self, org_id: UUID, check_type: WaiverCheckType | None) -> list[Waiver]:
        stmt = select(Waiver).where(Waiver.org_id == org_id, Waiver.is_active.is_(True))
        if check_type == WaiverCheckType.BOOKING:
            stmt = stmt.where(Waiver.required_for_booking.is_(True))
        elif check_type == WaiverCheckType.SIGNUP:
            stmt = stmt.where(Waiver.required_for_signup.is_(True))
        else:
            stmt = stmt.where(or_(Waiver.required_for_booking.is_(True), Waiver.required_for_signup.is_(True)))

        async with datastore_guard("load waivers"):
            return list((await self.db.execute(stmt.order_by(Waiver.name))).scalars().all())

    async def _signature(self, waiver_id: UUID, athlete_id: UUID, version: int) -> WaiverSignature | None:
        stmt = select(WaiverSignature).where(
            WaiverSignature.waiver_id == waiver_id,
            WaiverSignature.athlete_id == athlete_id,
            WaiverSignature.waiver_version == version,
        )
        async with datastore_guard("load waiver signature"):
            return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _relationship(self, user: dict, athlete: Athlete) -> str | None:
        user_id = str(user["user_id"])
        if athlete.user_id == user_id:
            return "self"

        stmt = select(AthleteGuardian.relationship_label).where(
            AthleteGuardian.guardian_user_id == user_id,
            AthleteGuardian.athlete_id == athlete.id,
        )
        async with datastore_guard("load guardian link"):
            label = (await self.db.execute(stmt)).first()

        if label is not None:
            return label.relationship_label or "guardian"
        return "staff" if is_staff(user) else None
