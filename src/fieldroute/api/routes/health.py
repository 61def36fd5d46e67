"""Health endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, status

from ...config import settings

router = APIRouter(tags=["health"])

logger = logging.getLogger(__name__)


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_routing_provider():
    """Lazy import to avoid startup failures."""
    from ...services.routing.providers import get_routing_provider

    return get_routing_provider()


@router.get("/health/routing", status_code=status.HTTP_200_OK)
def health_routing() -> dict:
    """Check the configured routing provider."""
    try:
        provider = _get_routing_provider()
        if provider is None:
            return {"provider": settings.routing_provider, "configured": False, "healthy": False}
        return {"provider": provider.name, "configured": True, "healthy": provider.check_health()}
    except Exception as e:
        logger.warning(f"Routing health check failed: {e}")
        return {"provider": settings.routing_provider, "configured": True, "healthy": False, "error": str(e)}
