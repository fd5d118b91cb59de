from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from ...repositories.node_monitor import NodeMonitorRepository
from ...schemas import NetworkNode, StatusHistory
from ._deps import get_collector, get_repository

router = APIRouter(prefix="/api/nodes", tags=["nodes"])


@router.get("", response_model=list[NetworkNode])
async def list_nodes(
    repository: NodeMonitorRepository = Depends(get_repository),
) -> list[NetworkNode]:
    """Return the nodes stored from the most recent directory refreshes."""
    return await repository.nodes()


@router.get("/live", response_model=list[NetworkNode])
async def list_live_nodes(request: Request) -> list[NetworkNode]:
    """Return the collector's in-memory node list (empty when the collector is not running)."""
    collector = get_collector(request)
    if collector is None:
        return []
    return list(collector.nodes)


@router.get("/{node_id}/history", response_model=list[StatusHistory])
async def node_history(
    node_id: str,
    repository: NodeMonitorRepository = Depends(get_repository),
) -> list[StatusHistory]:
    """Return the sync history of one node over the availability window, newest first."""
    history = [
        StatusHistory(synced=item.synced, timestamp=item.timestamp)
        for item in await repository.node_history()
        if item.id == node_id
    ]
    if not history:
        raise HTTPException(status_code=404, detail=f"No polling history for node {node_id}")
    return history
