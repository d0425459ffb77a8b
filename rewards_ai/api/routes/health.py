"""
Health check endpoints.
"""

from fastapi import APIRouter

from rewards_ai.api.deps import GatewayDep, SemanticCacheDep
from rewards_ai.db.database import check_database
from rewards_ai.models.schemas import CacheStats

router = APIRouter()


@router.get("/")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "message": "Rewards AI API is running"}


@router.get("/ready")
async def readiness_check(gateway: GatewayDep):
    """
    Readiness check - verify all critical services are available.
    Used by orchestration systems (K8s, Docker, etc.)
    """
    checks = {
        "api": "ready",
        "database": "ready" if await check_database() else "unavailable",
        "model_gateway": "ready" if gateway.configured else "not_configured",
    }

    all_ready = all(v == "ready" for v in checks.values())

    return {
        "status": "ready" if all_ready else "not_ready",
        "checks": checks,
    }


@router.get("/cache", response_model=CacheStats)
async def cache_stats(cache: SemanticCacheDep):
    """Active response cache entries and their accumulated hits."""
    return CacheStats(**await cache.get_stats())
