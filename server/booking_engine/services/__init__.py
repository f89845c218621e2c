"""Service layer package."""

from .access_service import AccessService
from .cancellation_service import CancellationHandler
from .catalog_service import CatalogService
from .drop_in_service import DropInPaymentService
from .eligibility_service import EligibilityEvaluator
from .entitlement_service import EntitlementResolver
from .idempotency_service import IdempotencyService
from .package_service import PackageLedger
from .reservation_service import ReservationCommitter
from .waiver_service import WaiverService

__all__ = [
    "AccessService",
    "CancellationHandler",
    "CatalogService",
    "DropInPaymentService",
    "EligibilityEvaluator",
    "EntitlementResolver",
    "IdempotencyService",
    "PackageLedger",
    "ReservationCommitter",
    "WaiverService",
]
