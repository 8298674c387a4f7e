"""
Main FastAPI application.

WHY: This is the entry point for the application. It configures logging,
middleware, routes, exception handlers and the escalation sweep scheduler.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from helpdesk.core.config import settings
from helpdesk.core.exceptions import AccessDeniedError, AppException
from helpdesk.core.exception_handlers import (
    access_denied_exception_handler,
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from helpdesk.core.logging_config import configure_logging
from helpdesk.middleware import RequestContextMiddleware
from helpdesk.api import access, escalation, sla, tickets
from helpdesk.services.scheduler import start_scheduler, shutdown_scheduler, get_scheduler_status


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern allows easier testing with different configurations
    and makes it possible to create multiple app instances if needed.

    Returns:
        Configured FastAPI application instance
    """
    configure_logging()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Access-scoped ticket authorization, SLA and escalation API",
        version=settings.VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Register exception handlers
    # WHY: One JSON error envelope for every failure; denial messages name
    # only the missing permission.
    app.add_exception_handler(AccessDeniedError, access_denied_exception_handler)
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Request context (client IP, user agent, request id) for audit facts
    # and log correlation. Added before CORS so it wraps every handler.
    app.add_middleware(RequestContextMiddleware)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """
        Health check endpoint.

        WHY: Allows load balancers and monitoring to verify service health
        without authentication, and shows whether the sweep is scheduled.
        """
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "scheduler": get_scheduler_status(),
        }

    @app.on_event("startup")
    async def startup_event():
        """Start the escalation sweep scheduler when enabled."""
        if settings.ESCALATION_SWEEP_ENABLED:
            await start_scheduler()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop background jobs gracefully."""
        await shutdown_scheduler()

    # Register API routers
    app.include_router(access.router, prefix=settings.API_V1_PREFIX)
    app.include_router(tickets.router, prefix=settings.API_V1_PREFIX)
    app.include_router(sla.router, prefix=settings.API_V1_PREFIX)
    app.include_router(escalation.router, prefix=settings.API_V1_PREFIX)

    return app


# Create app instance
# WHY: Creating the app instance here allows it to be imported by uvicorn.
app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Development only. In production, use `uvicorn helpdesk.main:app`.
    uvicorn.run(
        "helpdesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
