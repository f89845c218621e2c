"""Background worker for expiring lapsed packages."""

import logging

from ..core.database import Database
from ..core.observability import metrics_collector
from ..services.package_service import PackageLedger
from .base import BaseWorker

logger = logging.getLogger(__name__)


class PackageExpiryWorker(BaseWorker):
    """
    Marks active packages past their expiry date as expired.

    Expired packages are already ignored when resolving entitlements; this
    keeps the stored status in line with what athletes see.
    """

    def __init__(self, database: Database, interval_seconds: int = 300, batch_size: int = 500):
        super().__init__(name="PackageExpiry", interval_seconds=interval_seconds)
        self.database = database
        self.batch_size = batch_size

    async def process(self) -> None:
        async with self.database.session_scope() as db:
            expired_count = await PackageLedger(db).expire_lapsed(batch_size=self.batch_size)
            await db.commit()

        metrics_collector.record_packages_expired(expired_count)
        if expired_count > 0:
            logger.info(
                f"Expired {expired_count} packages",
                extra={"expired_count": expired_count, "worker": self.name}
            )
