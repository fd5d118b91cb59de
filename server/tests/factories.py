from __future__ import annotations

from datetime import datetime, timedelta, timezone

from server.src.schemas import NetworkNode, NodePollingEvent
from server.src.services.directory import generate_node_id

EPOCH = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_node(name: str, hostname: str | None = None, port: int = 11898, ssl: bool = False) -> NetworkNode:
    hostname = hostname or f"{name.lower()}.example"
    return NetworkNode(
        id=generate_node_id(hostname, port, ssl),
        name=name,
        hostname=hostname,
        port=port,
        ssl=ssl,
        cache=False,
    )


def make_event(node: NetworkNode, timestamp: datetime, *, synced: bool = True, height: int = 100) -> NodePollingEvent:
    return NodePollingEvent(
        id=node.id,
        timestamp=timestamp,
        synced=synced,
        fee_address="TRTLfee",
        fee_amount=5000,
        height=height,
        version="1.0.0",
        connections_in=4,
        connections_out=8,
        difficulty=250000,
        hashrate=8333,
        transaction_pool_size=2,
    )


def tick(index: int) -> datetime:
    """Polling tick `index` minutes after EPOCH."""
    return EPOCH + timedelta(minutes=index)
