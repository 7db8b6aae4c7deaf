"""
FastAPI application for the wholesale catalog sync backend.

Provides REST endpoints for:
- Triggering and monitoring Tropicana Wholesale sync runs
- Browsing the synced catalog and applying admin overrides
- Viewing and updating sync settings

Run with:
    cd backend
    source venv/bin/activate
    uvicorn catalog_sync.main:app --reload --port 8000
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .routes import catalog, settings, sync
from .services.database import db_pool


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes the database connection and schema on startup and closes it
    on shutdown.
    """
    try:
        db_pool.initialize()
        logger.info("Database connection initialized")
    except Exception as e:
        logger.warning("Could not initialize database: %s", e)
        logger.warning("Some endpoints may not work without database connection")

    yield

    db_pool.close()
    logger.info("Database connection closed")


app = FastAPI(
    title="Catalog Sync API",
    description="Backend API for syncing the Tropicana Wholesale catalog and reviewing sync runs",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for the admin dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # Storefront dev server
        "http://127.0.0.1:3000",
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sync.router)
app.include_router(catalog.router)
app.include_router(settings.router)


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
        timestamp=datetime.now(timezone.utc),
        database=db_status,
    )


@app.get("/", tags=["root"])
def root():
    """API information."""
    return {
        "message": "Catalog Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }
