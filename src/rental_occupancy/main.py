"""Main application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rental_occupancy import __version__
from rental_occupancy.api.routes import proxy_router, router as api_router
from rental_occupancy.config import Settings
from rental_occupancy.core.fetcher import FeedSource, ICalFetcher
from rental_occupancy.core.manager import OccupancyManager
from rental_occupancy.db.database import Database

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Settings,
    feed_source: Optional[FeedSource] = None,
    fetcher: Optional[ICalFetcher] = None,
) -> FastAPI:
    """Build the application from explicit settings.

    ``feed_source`` feeds listing imports; ``fetcher`` serves the
    ``/fetch-ical`` proxy endpoint. Both default to what the settings
    select.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting rental occupancy service...")

        database = Database(settings.database_url, echo=settings.debug)
        await database.init()

        app.state.fetcher = fetcher or ICalFetcher(
            timeout=settings.fetch_timeout_seconds,
            user_agent=settings.user_agent,
        )
        app.state.manager = OccupancyManager(settings, database, feed_source=feed_source)

        logger.info("Application started successfully")

        yield

        logger.info("Shutting down rental occupancy service...")
        await app.state.manager.close()
        await app.state.fetcher.close()
        await database.dispose()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Rental Occupancy",
        description="iCal booking import and occupancy-based pricing",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    app.include_router(proxy_router)
    app.include_router(api_router, prefix="/api")

    return app


def main():
    """Run the application."""
    import uvicorn

    settings = Settings()
    configure_logging(settings)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
