"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends

from educhain.config import get_settings
from educhain.container import Marketplace
from educhain.dependencies import get_marketplace

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: 200 while the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(market: Marketplace = Depends(get_marketplace)) -> dict[str, object]:
    """Readiness probe: the store (and its change relay) must answer."""
    checks: dict[str, object] = {}
    try:
        await market.store.ping()
        checks["store"] = "ok"
    except Exception as exc:
        checks["store"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
