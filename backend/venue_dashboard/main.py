"""
Venue Dashboard API application.

Serves the admin dashboard: calendar day summaries and slots, campaign
timing, business metrics and the admin list. Every route except the health
and root endpoints requires a session token.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from venue_dashboard import __version__
from venue_dashboard.api import admins, business, calendar, campaigns
from venue_dashboard.core.config import get_settings
from venue_dashboard.core.observability import (
    correlation_id_middleware,
    instrument_fastapi,
    setup_observability,
)

SERVICE_NAME = "Venue Dashboard API"

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check configuration and start tracing before serving requests."""
    logging.getLogger().setLevel(settings.log_level.upper())
    logging.info(f"🚀 Starting {SERVICE_NAME} {__version__} ({settings.environment})")

    if not settings.data_api_key:
        logging.warning("⚠️ DATA_API_KEY is not set; data API reads will be rejected")
    if not settings.data_api_service_key:
        logging.warning("⚠️ DATA_API_SERVICE_KEY is not set; snapshots use the anonymous key")
    if settings.jwt_secret == "change-me" and settings.environment != "dev":
        logging.error("❌ JWT_SECRET is not configured")
        raise RuntimeError("JWT_SECRET must be set outside dev")

    setup_observability("venue-dashboard-api", settings.otlp_endpoint)
    logging.info(f"✅ Ready, business timezone {settings.business_timezone}")

    yield

    logging.info(f"👋 {SERVICE_NAME} stopped")


app = FastAPI(
    title=SERVICE_NAME,
    description="Calendar, campaign timing and business metrics for the venue admin dashboard",
    version=__version__,
    lifespan=lifespan,
)

# Month calendars and cohort tables get large
app.add_middleware(GZipMiddleware, minimum_size=1024, compresslevel=6)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(correlation_id_middleware)
instrument_fastapi(app)

for module in (calendar, campaigns, business, admins):
    app.include_router(module.router, prefix="/api/v1")


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness check. Does not call the data API."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": __version__,
        "environment": settings.environment,
        "data_api_configured": bool(settings.data_api_key),
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": SERVICE_NAME,
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "venue_dashboard.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
