"""Package ledger: atomic use debits and restorations."""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.database import datastore_guard
from ..core.exceptions import PackageDepletedError
from ..models import Package, PackageStatus

logger = logging.getLogger(__name__)


class PackageLedger:
    """
    Moves package uses in and out with single conditional UPDATE statements.

    Callers own the transaction: a debit followed by a failed booking insert
    is undone by rolling the session back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def debit_use(self, package_id: UUID) -> int:
        """
        Consume one use of a limited package.

        Unlimited packages carry no counter and must not be passed here.

        The decrement only applies while ``uses_remaining > 0`` and the package
        is active, so two concurrent debits can never push it below zero.
        Reaching exactly zero marks the package depleted.

        Returns:
            The remaining uses

        Raises:
            PackageDepletedError: If no use was left to consume
        """
        stmt = (
            update(Package)
            .where(
                Package.id == package_id,
                Package.status == PackageStatus.ACTIVE,
                Package.uses_remaining.is_not(None),
                Package.uses_remaining > 0,
            )
            .values(
                uses_remaining=Package.uses_remaining - 1,
                status=case(
                    (Package.uses_remaining - 1 == 0, PackageStatus.DEPLETED.value),
                    else_=Package.status,
                ),
            )
            .returning(Package.uses_remaining)
            .execution_options(synchronize_session=False)
        )

        async with datastore_guard("debit package"):
            remaining = (await self.db.execute(stmt)).scalar_one_or_none()

        if remaining is None:
            logger.warning("Package debit refused", extra={"package_id": str(package_id)})
            raise PackageDepletedError(str(package_id))

        logger.info(
            "Package use debited",
            extra={"package_id": str(package_id), "uses_remaining": remaining},
        )
        return remaining

    async def restore_use(self, package_id: UUID) -> bool:
        """
        Give one use back after a cancellation.

        A depleted package becomes active again. Unlimited packages are left
        untouched.

        Returns:
            True if a counter was incremented
        """
        stmt = (
            update(Package)
            .where(Package.id == package_id, Package.uses_remaining.is_not(None))
            .values(
                uses_remaining=Package.uses_remaining + 1,
                status=case(
                    (Package.status == PackageStatus.DEPLETED.value, PackageStatus.ACTIVE.value),
                    else_=Package.status,
                ),
            )
            .returning(Package.uses_remaining)
            .execution_options(synchronize_session=False)
        )

        async with datastore_guard("restore package use"):
            remaining = (await self.db.execute(stmt)).scalar_one_or_none()

        if remaining is None:
            logger.info("Package has no use counter to restore", extra={"package_id": str(package_id)})
            return False

        logger.info(
            "Package use restored",
            extra={"package_id": str(package_id), "uses_remaining": remaining},
        )
        return True

    async def expire_lapsed(self, now: datetime | None = None, batch_size: int = 500) -> int:
        """
        Mark active packages whose expiry date has passed as expired.

        Returns:
            Number of packages expired
        """
        now = now or utcnow()

        lapsed_ids = select(Package.id).where(
            Package.status == PackageStatus.ACTIVE,
            Package.expiry_date.is_not(None),
            Package.expiry_date <= now,
        ).limit(batch_size)

        async with datastore_guard("expire packages"):
            ids = list((await self.db.execute(lapsed_ids)).scalars())
            if not ids:
                return 0

            await self.db.execute(
                update(Package)
                .where(Package.id.in_(ids), Package.status == PackageStatus.ACTIVE)
                .values(status=PackageStatus.EXPIRED.value)
                .execution_options(synchronize_session=False)
            )

        logger.info("Expired lapsed packages", extra={"expired_count": len(ids)})
        return len(ids)

