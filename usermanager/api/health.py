"""Health check endpoint with database and key-value store connectivity checks."""

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from usermanager.core import check_db_connection, settings
from usermanager.services.security import SecurityContext

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    store: str


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(response: Response) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if either the database or the key-value store is unreachable;
    without the store no token can be checked against the revocation list.
    """
    db_healthy = await check_db_connection()
    store_healthy = await SecurityContext.get_instance().store.ping()
    healthy = db_healthy and store_healthy

    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if healthy else "unhealthy",
        version=settings.app_version,
        database="connected" if db_healthy else "disconnected",
        store="connected" if store_healthy else "disconnected",
    )
