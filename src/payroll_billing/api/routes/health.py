"""Health and readiness endpoints for the billing API."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from payroll_billing import __version__
from payroll_billing.api.dependencies import DbSession
from payroll_billing.models import Base

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Tables versioning and billing write to
REQUIRED_TABLES = frozenset(Base.metadata.tables)


class HealthResponse(BaseModel):
    """Database connectivity of the billing API."""

    status: str
    version: str
    timestamp: datetime
    database: str


class ReadinessResponse(BaseModel):
    """Whether the billing schema is in place."""

    status: str
    missing_tables: list[str] = Field(default_factory=list)


def _table_names(session: Session) -> set[str]:
    return set(inspect(session.connection()).get_table_names())


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DbSession) -> HealthResponse:
    """Report whether the database answers."""
    database = "unhealthy"
    try:
        await db.execute(text("SELECT 1"))
        database = "healthy"
    except Exception:
        logger.warning("Database health check failed", exc_info=True)

    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        database=database,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    responses={503: {"model": ReadinessResponse}},
)
async def readiness_check(db: DbSession) -> ReadinessResponse | JSONResponse:
    """Ready once every billing and versioning table exists."""
    try:
        present = await db.run_sync(_table_names)
    except Exception:
        logger.warning("Readiness check could not inspect the schema", exc_info=True)
        present = set()

    missing = sorted(REQUIRED_TABLES - present)
    if missing:
        logger.warning("Billing schema incomplete, missing: %s", ", ".join(missing))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=ReadinessResponse(status="not_ready", missing_tables=missing).model_dump(),
        )
    return ReadinessResponse(status="ready")


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Process is up."""
    return {"status": "alive"}
