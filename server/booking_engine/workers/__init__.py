"""Background workers for the booking engine."""

from .idempotency_cleanup_worker import IdempotencyCleanupWorker
from .manager import WorkerManager
from .package_expiry_worker import PackageExpiryWorker

__all__ = ["IdempotencyCleanupWorker", "PackageExpiryWorker", "WorkerManager"]
