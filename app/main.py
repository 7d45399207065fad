"""FastAPI application entry point."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.middleware import RequestIdMiddleware
from app.api.routes import api_router
from app.core.background import background_tasks
from app.logging_config import setup_logging
from app.settings import settings
from app.workers import maintenance_worker

# Setup logging
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    yield
    # Shutdown: let in-flight broadcasts and webhook deliveries finish
    if background_tasks.pending:
        logger.info(f"Waiting for {background_tasks.pending} background tasks")
    await background_tasks.drain()


# Create FastAPI app
app = FastAPI(
    title="Handoff Service API",
    description="Multi-tenant AI-to-human handoff and webhook delivery",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request id middleware
app.add_middleware(RequestIdMiddleware)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)

# Include worker routes (for Cloud Scheduler)
app.include_router(maintenance_worker.router, prefix="/workers", tags=["workers"])


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run."""
    return {"status": "healthy"}
