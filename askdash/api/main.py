"""
FastAPI Application

Main FastAPI application for askdash with:
- Lifespan management for catalog and pipeline initialization/cleanup
- CORS middleware for frontend integration
- Exception handlers mapping stage errors to ``{error, stage, reason}``
- Ask, session, catalog and health endpoints

Usage:
    uvicorn askdash.api.main:app --reload --port 8000
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from askdash import __version__
from askdash.api.errors import error_response
from askdash.api.routes import ask, catalog, health
from askdash.catalog.store import CatalogLoadError, CatalogStore
from askdash.config import get_settings
from askdash.models.errors import AgentError
from askdash.pipeline.orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

# Global state for pipeline and components
app_state = {
    "catalog_store": None,
    "orchestrator": None,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan context manager for startup and shutdown.

    Initializes:
    - Catalog store (YAML snapshot from CATALOG_PATH, or empty)
    - Session orchestrator (language model, guard, execution router)
    """
    config = get_settings()
    logger.info("Starting askdash API server...")

    try:
        logger.info("Loading schema catalog...")
        if config.catalog.path:
            try:
                catalog_store = CatalogStore.from_file(config.catalog.path)
            except CatalogLoadError as e:
                logger.error(f"Catalog snapshot unavailable: {e}")
                catalog_store = CatalogStore()
        else:
            logger.warning("CATALOG_PATH not set; starting with an empty catalog.")
            catalog_store = CatalogStore()
        app_state["catalog_store"] = catalog_store

        logger.info("Initializing session orchestrator...")
        try:
            app_state["orchestrator"] = SessionOrchestrator(catalog_store)
        except (AgentError, ValueError) as e:
            logger.warning(f"Pipeline not initialized: {e}")
            app_state["orchestrator"] = None

        logger.info("askdash API server started successfully")

        yield  # Application runs here

    finally:
        logger.info("Shutting down askdash API server...")

        if app_state["orchestrator"]:
            try:
                await app_state["orchestrator"].close()
                logger.info("Connection pools closed")
            except Exception as e:
                logger.error(f"Error closing connection pools: {type(e).__name__}")

        logger.info("askdash API server shut down complete")


# Create FastAPI app
app = FastAPI(
    title="askdash API",
    description="Natural-language questions answered with guarded, read-only SQL",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware for frontend
config = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(AgentError)
async def agent_error_handler(request: Request, exc: AgentError) -> JSONResponse:
    """Stage errors raised outside a turn (none leak raw driver or model text)."""
    logger.error(
        f"Agent error: {exc.message}",
        extra={"agent": exc.agent, "recoverable": exc.recoverable},
    )
    return error_response(exc)


# Include routers
app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(ask.router, prefix="/api/v1", tags=["ask"])
app.include_router(catalog.router, prefix="/api/v1", tags=["catalog"])


# Root endpoint
@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "name": "askdash API",
        "version": __version__,
        "description": "Natural-language analytics over read-only SQL",
        "docs": "/docs",
    }

