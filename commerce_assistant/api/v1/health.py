"""Health check endpoints."""

from fastapi import APIRouter

from commerce_assistant.core.config import settings
from commerce_assistant.core.deps import Registries
from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(registries: Registries) -> HealthResponse:
    """
    Health check endpoint.

    Reports whether the action registries are loaded and how many actions
    each mode exposes.
    """
    checks: dict[str, str] = {}
    status = "healthy"

    if registries.is_loaded:
        checks["registry"] = "healthy"
        for mode in AssistantMode:
            checks[f"actions_{mode}"] = str(len(registries.get(mode)))
        if registries.config is not None:
            checks["config_version"] = registries.config.version
    else:
        status = "unhealthy"
        checks["registry"] = "unhealthy: not loaded"

    return HealthResponse(
        status=status,
        version=settings.version,
        environment=settings.environment,
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """
    Liveness check for Kubernetes/container orchestration.

    Simple check that the service is running.
    """
    return {"status": "alive"}
