"""
Health Check Routes

FastAPI endpoint for service health.
"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, status

from askdash import __version__
from askdash.models.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health() -> HealthResponse:
    """
    Liveness check with component status.

    Always returns 200 while the process is alive; ``status`` is
    ``unhealthy`` when the pipeline or catalog is missing.

    Checks:
    - catalog: a snapshot with at least one database is loaded
    - pipeline: the orchestrator is initialized
    - databases: every configured database has an open pool
    """
    from askdash.api.main import app_state

    checks: dict[str, bool] = {}

    store = app_state.get("catalog_store")
    checks["catalog"] = store is not None and bool(store.current.databases)

    orchestrator = app_state.get("orchestrator")
    checks["pipeline"] = orchestrator is not None

    if orchestrator is not None:
        router_ = orchestrator.executor.router
        open_databases = set(router_.open_databases)
        for database in router_.databases:
            checks[f"database:{database}"] = database in open_databases

    healthy = checks["catalog"] and checks["pipeline"]
    if not healthy:
        logger.warning(f"Health check degraded: {checks}")

    return HealthResponse(
        status="healthy" if healthy else "unhealthy",
        version=__version__,
        timestamp=datetime.now(UTC).isoformat(),
        checks=checks,
    )
