from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


OFFLINE_VERSION = "offline"


class NetworkNode(BaseModel):
    """A node/daemon as published by the directory and stored in `nodes`."""

    id: str = Field(..., description="Deterministic node identifier")
    name: str
    hostname: str
    port: int
    ssl: bool = False
    cache: bool = False

    model_config = ConfigDict(from_attributes=True, frozen=True)


class NodeStatus(BaseModel):
    """Health metrics reported by a node at one polling tick."""

    timestamp: datetime
    synced: bool = False
    fee_address: str = ""
    fee_amount: int = 0
    height: int = 0
    version: str = OFFLINE_VERSION
    connections_in: int = 0
    connections_out: int = 0
    difficulty: int = 0
    hashrate: int = 0
    transaction_pool_size: int = 0


class NodePollingEvent(NodeStatus):
    """A polling sample tied to the node it was taken from."""

    id: str

    @property
    def is_offline(self) -> bool:
        return self.version == OFFLINE_VERSION

    @classmethod
    def offline(cls, node_id: str, timestamp: datetime) -> "NodePollingEvent":
        """Sentinel record used when a node cannot be probed."""
        return cls(id=node_id, timestamp=timestamp)


class StatusHistory(BaseModel):
    synced: bool
    timestamp: datetime


class NodeStatusHistory(StatusHistory):
    id: str


class NodeAvailability(BaseModel):
    id: str
    availability: float = Field(..., ge=0, le=100, description="Percentage of synced samples in the window")


class NodeStats(NetworkNode):
    """Node with its availability, latest status and recent history."""

    availability: float
    info: NodeStatus
    history: list[StatusHistory] = Field(default_factory=list)

