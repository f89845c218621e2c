"""FastAPI routers package."""

from .athletes import router as athletes_router
from .booking import router as booking_router
from .catalog import router as catalog_router
from .health import router as health_router
from .metrics import router as metrics_router
from .payment import router as payment_router
from .waivers import router as waivers_router

__all__ = [
    "athletes_router",
    "booking_router",
    "catalog_router",
    "health_router",
    "metrics_router",
    "payment_router",
    "waivers_router",
]
