import logging
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/healthz")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check endpoint that reports cache state per dataset"""
    registry = request.app.state.registry

    datasets: Dict[str, Any] = {}
    for refresher in registry.configured():
        try:
            datasets[refresher.key] = await refresher.status()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Status check failed for %s: %s", refresher.key, exc)
            datasets[refresher.key] = {"key": refresher.key, "error": str(exc)}

    reachable = all("error" not in status for status in datasets.values())
    failing = sum(1 for status in datasets.values() if status.get("lastUpdateFailed"))

    return {
        "status": "healthy" if reachable and failing == 0 else "degraded",
        "store": registry.entries.backend,
        "leaseMode": "strict" if registry.leases.strict else "advisory",
        "datasets": datasets,
        "cached_datasets": sum(1 for status in datasets.values() if status.get("cached")),
        "total_datasets": len(datasets),
        "background_refreshes": len(registry.tasks),
    }
