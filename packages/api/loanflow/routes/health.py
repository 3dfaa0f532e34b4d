# This project was developed with assistance from AI tools.
"""Liveness and dependency health."""

from db import DatabaseService, get_db_service
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from .. import __version__

router = APIRouter()


class HealthItem(BaseModel):
    name: str
    status: str
    message: str
    version: str | None = None


@router.get("/", response_model=list[HealthItem])
async def health(
    response: Response,
    db_service: DatabaseService = Depends(get_db_service),
) -> list[HealthItem]:
    """API and database health; 503 when the database is unreachable."""
    db_ok = await db_service.health_check()
    dialect = db_service.engine.dialect.name
    db_label = "PostgreSQL" if dialect == "postgresql" else dialect
    if not db_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return [
        HealthItem(name="API", status="healthy", message="API is running", version=__version__),
        HealthItem(
            name="Database",
            status="healthy" if db_ok else "unhealthy",
            message=f"{db_label} connection {'ok' if db_ok else 'failed'}",
        ),
    ]
