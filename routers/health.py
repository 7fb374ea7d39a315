from fastapi import APIRouter, status
import logging

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/health",
    tags=["health"]
)

@router.get(
    "/live",
    summary="Liveness Probe",
    description="Checks if the application instance is running. Returns HTTP 200 if alive.",
    status_code=status.HTTP_200_OK,
    responses={
        status.HTTP_200_OK: {
            "content": {"application/json": {"example": {"status": "alive"}}},
            "description": "Application is alive and running."
        }
    }
)
async def liveness_check():
    """
    Liveness probe endpoint.
    Returns HTTP 200 status code with a JSON body `{"status": "alive"}`
    if the service is running. The service keeps no state and has no
    downstream dependencies, so there is no separate readiness probe.
    """
    logger.info("Liveness check successful for /api/health/live.")
    return {"status": "alive"}
