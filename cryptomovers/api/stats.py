"""
Movers endpoints

GET /api/stats                  CEX movers
GET /api/stats?network=<id>     DEX pool movers for one network (or "all")
GET /api/dex-stats?network=<id> DEX spot pair movers

Freshness is reported in the ``X-Source`` header. This service is the only
cache layer, so intermediaries are told not to store responses.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ..services.datasets import ALL_NETWORKS, DatasetRegistry
from ..services.freshness import ServeResult

router = APIRouter(prefix="/api")

NO_CACHE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Access-Control-Allow-Origin": "*",
}


def get_registry(request: Request) -> DatasetRegistry:
    return request.app.state.registry


def movers_body(result: ServeResult, network: Optional[str] = None) -> Dict[str, Any]:
    payload = result.payload
    body: Dict[str, Any] = {"timestamp": payload.timestamp}
    if network:
        body["network"] = network
    body["gainers"] = [item.model_dump(by_alias=True, exclude_none=True) for item in payload.gainers]
    body["losers"] = [item.model_dump(by_alias=True, exclude_none=True) for item in payload.losers]
    body["isPartial"] = payload.is_partial
    body["lastUpdateFailed"] = result.last_update_failed
    return body


def movers_response(result: ServeResult, network: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        content=movers_body(result, network),
        headers={**NO_CACHE_HEADERS, "X-Source": result.source.value},
    )


@router.get("/stats")
async def get_stats(
    network: Optional[str] = Query(None, description="solana, eth, bsc, base or all; omit for CEX movers"),
    registry: DatasetRegistry = Depends(get_registry),
) -> JSONResponse:
    """Top gainers and losers over 24h."""
    if network is None:
        return movers_response(await registry.cex().serve())

    refresher = registry.dex_pools(network)
    return movers_response(await refresher.serve(), network=network.strip().lower())


@router.get("/dex-stats")
async def get_dex_stats(
    network: str = Query(ALL_NETWORKS, description="solana, eth, bsc, base or all"),
    registry: DatasetRegistry = Depends(get_registry),
) -> JSONResponse:
    refresher = registry.dex_pairs(network)
    return movers_response(await refresher.serve(), network=network.strip().lower())
