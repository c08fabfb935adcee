"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
import structlog

from evalgate import __version__
from evalgate.api.dependencies import build_services
from evalgate.api.routes import router
from evalgate.config import get_settings
from evalgate.db.database import close_db, init_db


def configure_logging():
    """Configure structured logging."""
    settings = get_settings()
    logging.basicConfig(format="%(message)s", level=settings.log_level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler. Configuration and storage errors halt startup."""
    configure_logging()
    logger = structlog.get_logger()
    settings = get_settings()

    session_factory = await init_db(settings.database_url)
    services = build_services(settings, session_factory)
    services.registry.freeze()
    app.state.services = services

    logger.info(
        "Starting evalgate API",
        evaluators=services.registry.names(),
        confidence_threshold=settings.confidence_threshold,
    )
    yield
    logger.info("Shutting down evalgate API")
    await close_db()


app = FastAPI(
    title="evalgate",
    description="""
    Interaction telemetry, confidence-gated escalation and evaluation harness.

    ## Workflow

    1. POST `/api/v1/sessions` to record an interaction's input
    2. POST `/api/v1/sessions/{id}/decision` with the scored output
    3. POST `/api/v1/evaluations/run` on a reference set or live sample
    4. GET `/api/v1/trends/{metric}` and `/api/v1/trends/{metric}/degradation`
    """,
    version=__version__,
    lifespan=lifespan,
)

# Include API routes
app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "evalgate",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
