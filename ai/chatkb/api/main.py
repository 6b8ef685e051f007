"""FastAPI application main module."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from chatkb.api.deps import get_job_store, get_store, limiter
from chatkb.api.routes_admin import router as admin_router
from chatkb.api.routes_chat import router as chat_router
from chatkb.core.logging import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the job sweeper; on shutdown stop jobs and release the store."""
    logger.info("Starting chatkb API")
    jobs = get_job_store()
    jobs.start_sweeper()
    yield
    logger.info("Shutting down chatkb API")
    await jobs.shutdown()
    await get_store().close()


# Create FastAPI app
app = FastAPI(
    title="chatkb API",
    description="Knowledge ingestion and retrieval for website chatbots",
    version=VERSION,
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(chat_router, prefix="/v1", tags=["chat"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "chatkb API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    }
