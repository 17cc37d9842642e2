"""Health endpoint."""

from fastapi import APIRouter, Depends

from finsight.api.dependencies import get_settings_dependency
from finsight.api.models import HealthResponse
from finsight.config.settings import Settings

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(settings: Settings = Depends(get_settings_dependency)) -> HealthResponse:
    """Liveness check."""
    return HealthResponse(status="ok", version=settings.app_version)
