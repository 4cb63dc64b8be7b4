"""
FastAPI application for the cafe pricing backend.

Provides REST endpoints for:
- Browsing the ingredient catalog and editing prices
- Price history and trends per ingredient
- On-demand market price refreshes
- Price update settings

Run with:
    cd backend
    source venv/bin/activate
    uvicorn cafe_api.main:app --reload --port 8000
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from . import config
from .logging_config import setup_logging
from .models import utc_now
from .routes import ingredients, price_settings
from .services.database import db_pool


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes logging and the database connection on startup and closes
    the connection on shutdown.
    """
    # Startup
    setup_logging(prefix="api")
    try:
        db_pool.initialize()
        logger.info("Database connection initialized")
    except Exception as e:
        logger.warning("Could not initialize database: %s", e)
        logger.warning("Some endpoints may not work without database connection")

    yield

    # Shutdown
    db_pool.close()
    logger.info("Database connection closed")


app = FastAPI(
    title="Cafe Pricing API",
    description="Ingredient catalog and market price synchronization",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for the frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(ingredients.router)
app.include_router(price_settings.router)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    database: str


@app.get("/api/health", response_model=HealthResponse, tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        Health status including database connectivity
    """
    db_status = "unknown"

    try:
        with db_pool.get_cursor() as cursor:
            cursor.execute("SELECT 1")
            db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return HealthResponse(
        status="ok",
        timestamp=utc_now(),
        database=db_status,
    )


@app.get("/", tags=["root"])
def root():
    """
    Root endpoint with API information.

    Returns:
        API welcome message and documentation link
    """
    return {
        "message": "Cafe Pricing API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }
