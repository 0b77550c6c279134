from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shortlinks_app.config import settings
from shortlinks_app.api.v1 import urls, redirect
from shortlinks_app.dependencies import ServiceContainer
from shortlinks_app.errors import ShortenerError
from shortlinks_app.logging_config import setup_logging

setup_logging(settings.log_level)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        container: Prebuilt services (tests); built from settings if None
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.container = container or ServiceContainer.from_settings()
        await app.state.container.start()
        try:
            yield
        finally:
            await app.state.container.stop()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="A URL shortener service built with FastAPI",
        debug=settings.debug,
        lifespan=lifespan,
    )

    @app.exception_handler(ShortenerError)
    async def shortener_error_handler(request: Request, exc: ShortenerError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.get("/")
    def read_root():
        """Root endpoint with API information"""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "docs": "/docs",
            "redoc": "/redoc"
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint; cache and events are reported, never fatal"""
        services = request.app.state.container
        return {
            "status": "healthy",
            "environment": settings.environment,
            "cache": await services.cache.is_healthy(),
            "events": services.events.is_healthy(),
        }

    ######## Include routers
    app.include_router(urls.router, prefix="/api/v1")
    app.include_router(redirect.router)

    return app


app = create_app()
