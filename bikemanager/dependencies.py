"""FastAPI dependencies shared by the feature routers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request, status

if TYPE_CHECKING:
    from bikemanager.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Return the service container owned by the app lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services are not initialized",
        )
    return services
