from __future__ import annotations

from fastapi import APIRouter, Depends

from ...repositories.node_monitor import NodeMonitorRepository
from ...schemas import NodePollingEvent
from ._deps import get_repository

router = APIRouter(prefix="/api/polling", tags=["polling"])


@router.get("/latest", response_model=list[NodePollingEvent])
async def latest_polling(
    repository: NodeMonitorRepository = Depends(get_repository),
) -> list[NodePollingEvent]:
    """Return every event recorded at the most recent polling tick."""
    latest = await repository.max_timestamp()
    if latest is None:
        return []
    return await repository.events(latest)
