import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .api import health, stats
from .config import settings
from .errors import MoversError
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .services.datasets import DatasetRegistry

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": True, "message": message},
        headers=dict(stats.NO_CACHE_HEADERS),
    )


def create_app(registry: Optional[DatasetRegistry] = None) -> FastAPI:
    """Build the application; tests pass a registry wired to fakes."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        app.state.registry = registry if registry is not None else DatasetRegistry(settings)
        logger.info(
            "Crypto movers API started (store=%s, lease_mode=%s)",
            app.state.registry.entries.backend,
            settings.lease_mode,
        )
        try:
            yield
        finally:
            await app.state.registry.aclose()
            logger.info("Crypto movers API stopped")

    app = FastAPI(
        title="Crypto Movers API",
        description="Top crypto gainers and losers with a stale-while-revalidate cache",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(MoversError)
    async def movers_error_handler(request: Request, exc: MoversError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.__class__.__name__, request.url.path, exc.message)
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
        return error_response(500, "An unexpected error occurred")

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(stats.router, tags=["Movers"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Crypto Movers API",
            "version": __version__,
            "description": "Top crypto gainers and losers with a stale-while-revalidate cache",
            "endpoints": ["/api/stats", "/api/stats?network=<id>", "/api/dex-stats?network=<id>"],
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "cryptomovers.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
