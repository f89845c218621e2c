"""Background worker purging expired idempotency records."""

import logging

from ..core.database import Database
from ..services.idempotency_service import IdempotencyService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class IdempotencyCleanupWorker(BaseWorker):
    def __init__(self, database: Database, interval_seconds: int = 3600):
        super().__init__(name="IdempotencyCleanup", interval_seconds=interval_seconds)
        self.database = database

    async def process(self) -> None:
        async with self.database.session_scope() as db:
            deleted = await IdempotencyService(db).cleanup_expired_records()

        if deleted:
            logger.info(
                f"Purged {deleted} idempotency records",
                extra={"deleted_count": deleted, "worker": self.name}
            )
