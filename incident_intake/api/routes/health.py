"""
Health check routes.

- /health: liveness (always 200 while the app runs)
- /health/providers: AI provider health and rate-limit usage
"""
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends

from incident_intake.api.deps import get_selector
from incident_intake.core.config import settings
from incident_intake.services.llm import ProviderSelector

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check():
    """Liveness check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.APP_NAME,
        "environment": settings.ENVIRONMENT,
    }


@router.get("/health/providers")
async def providers_health(selector: ProviderSelector = Depends(get_selector)):
    """Per-provider health snapshot and rate-limit usage."""
    report = selector.health_report()
    unhealthy = [
        name for name, entry in report.items()
        if entry.get("health", {}).get("status") == "unhealthy"
    ]
    if unhealthy:
        logger.warning(f"[Health] Unhealthy providers: {', '.join(unhealthy)}")
    return {
        "status": "degraded" if unhealthy else "healthy",
        "providers": report,
    }
