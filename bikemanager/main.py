"""
FastAPI application with service lifecycle management.
"""

import time
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from bikemanager.config import Settings, settings
from bikemanager.container import ServiceContainer, build_services
from bikemanager.features.maintenance_reminders import jobs_router
from bikemanager.features.password_reset import password_reset_router
from bikemanager.infrastructure.observability.logging import get_logger, log_request, setup_logging
from bikemanager.middleware import RequestContextMiddleware
from bikemanager.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)

ServicesFactory = Callable[[Settings], ServiceContainer]


def create_app(
    app_settings: Settings | None = None,
    services_factory: ServicesFactory = build_services,
) -> FastAPI:
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build services on startup and shut them down in reverse order."""
        logger.info(
            "Application starting",
            environment=app_settings.environment,
            debug=app_settings.debug,
        )

        services = services_factory(app_settings)
        try:
            await services.start()
        except Exception as e:
            logger.error("Failed to initialize services", error=str(e), error_type=type(e).__name__)
            await services.stop()
            raise

        app.state.services = services
        yield

        logger.info("Application shutting down")
        try:
            await services.stop()
        except Exception as e:
            logger.error("Error during shutdown", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            app.state.services = None

    app = FastAPI(
        title="BikeManager Notifications",
        description="Maintenance reminder emails and password reset tokens",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(jobs_router)
    app.include_router(password_reset_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        log_request(
            request.method,
            request.url.path,
            response.status_code,
            round((time.time() - start_time) * 1000, 2),
        )
        return response

    # Outermost, so request_id is already bound when request logging runs
    app.add_middleware(RequestContextMiddleware)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
