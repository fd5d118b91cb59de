from __future__ import annotations

from fastapi import APIRouter, Depends

from ...repositories.node_monitor import NodeMonitorRepository
from ...schemas import NodeAvailability, NodeStats
from ._deps import get_repository

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("", response_model=list[NodeStats])
async def list_stats(
    repository: NodeMonitorRepository = Depends(get_repository),
) -> list[NodeStats]:
    """Return availability, latest status and recent history for every polled node."""
    return await repository.stats()


@router.get("/availability", response_model=list[NodeAvailability])
async def list_availability(
    repository: NodeMonitorRepository = Depends(get_repository),
) -> list[NodeAvailability]:
    return await repository.node_availabilities()
