from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from notifier.config.logging import setup_logging
from notifier.config.settings import Settings, get_settings
from notifier.infra.database import Database
from notifier.v1.core.exceptions import (
    NotifierError,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    notifier_exception_handler,
)
from notifier.v1.core.registries import transport_registry
from notifier.v1.delivery import registry_init  # noqa: F401
from notifier.v1.healthz import router as health_router
from notifier.v1.jobs.broker import SqlBroker
from notifier.v1.jobs.routes import router as jobs_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.database.close()


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    # Initialize structured logging
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Notification queue administration and producer endpoints",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    app.state.database = database or Database(settings)
    app.state.broker = SqlBroker(app.state.database, settings)
    app.dependency_overrides[get_settings] = lambda: settings

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(NotifierError, notifier_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    # Freeze registries in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        transport_registry.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "notifier.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
