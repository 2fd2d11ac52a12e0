from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.schemas.health import HealthResponse
from app.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def healthcheck() -> HealthResponse:
    return HealthService(get_settings()).get_status()


@router.get("/health/ready", response_model=HealthResponse)
def readiness() -> HealthResponse | JSONResponse:
    health = HealthService(get_settings()).get_status()
    if not health.meetgeek_configured:
        # Syncs would fail at the fetch step without an upstream key.
        return JSONResponse(status_code=503, content=health.model_dump(mode="json"))
    return health
