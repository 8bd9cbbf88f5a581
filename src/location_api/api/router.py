"""Root API router with /api/v1 prefix and middleware registration."""

from fastapi import APIRouter, FastAPI

from location_api.api.middleware import RequestLoggingMiddleware, setup_cors
from location_api.core.config import Settings


def create_router(settings: Settings) -> APIRouter:
    """Create the root API router with all sub-routers included.

    Args:
        settings: Application settings.

    Returns:
        Configured API router.
    """
    from location_api.api.v1.address_components import address_components_router
    from location_api.api.v1.location_address_components import location_address_components_router
    from location_api.api.v1.locations import locations_router

    root_router = APIRouter(prefix=settings.api_v1_prefix)
    root_router.include_router(address_components_router)
    root_router.include_router(locations_router)
    root_router.include_router(location_address_components_router)

    return root_router


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware on the FastAPI app.

    Args:
        app: The FastAPI application.
        settings: Application settings.
    """
    setup_cors(app, settings)
    app.add_middleware(RequestLoggingMiddleware)
