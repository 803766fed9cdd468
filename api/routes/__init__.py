"""HTTP route modules."""

from .health_routes import router as health_router
from .legacy_routes import router as legacy_router

__all__ = [
    "health_router",
    "legacy_router",
]
