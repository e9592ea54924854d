from fastapi import APIRouter, Depends

from app.api.dependencies import get_services
from app.schemas.health import HealthResponse
from app.services.health_service import HealthService
from app.services.service_container import ServiceContainer

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def healthcheck(services: ServiceContainer = Depends(get_services)) -> HealthResponse:
    service = HealthService(services.settings, ai_configured=services.ai_configured)
    return service.get_status()
