from __future__ import annotations

from fastapi import Request

from ... import database
from ...repositories.node_monitor import NodeMonitorRepository
from ...services.collector import Collector


def get_repository() -> NodeMonitorRepository:
    """Provide a repository bound to the configured storage backend."""
    return NodeMonitorRepository(database.get_backend())


def get_collector(request: Request) -> Collector | None:
    collector = getattr(request.app.state, "collector", None)
    if isinstance(collector, Collector):
        return collector
    return None
