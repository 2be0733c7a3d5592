"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from care_reminders.api.dependencies import get_services
from care_reminders.api.routes import router
from care_reminders.settings import load_settings

# Configure logging
logging.basicConfig(
    level=load_settings().log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.

    Startup:
    - Build services from settings
    - Initialize database connection pool and apply migrations (when configured)
    - Start the due-reminder trigger loop (when enabled)

    Shutdown:
    - Stop the trigger loop
    - Close delivery clients and the database connection pool
    """
    # Startup
    logger.info("Starting Care Reminders service...")

    try:
        services = get_services()
        logger.info("Settings loaded successfully")

        await services.startup()
        logger.info("Care Reminders service started successfully")

    except Exception as e:
        logger.error(f"Failed to start service: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down Care Reminders service...")
    await services.shutdown()
    logger.info("Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Care Reminders API",
    description="Medication, appointment and health check reminders with tracked notification delivery",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware (configure as needed for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Care Reminders API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "care_reminders.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
