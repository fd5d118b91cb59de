from __future__ import annotations

from datetime import datetime
from typing import Iterable, Iterator, Optional, Sequence, TypeVar

from sqlalchemy import Float, case, cast, delete, func, select

from server.src.core.logging import get_logger

from ..backend import Row, StorageBackend
from ..core.time import from_millis, to_millis
from ..models import TABLES, node_polling_table, nodes_table
from ..schemas import (
    NetworkNode,
    NodeAvailability,
    NodePollingEvent,
    NodeStats,
    NodeStatus,
    NodeStatusHistory,
    StatusHistory,
)

logger = get_logger(__name__)

# Rows per multi-row statement; bounds statement size on every backend.
BATCH_SIZE = 25
# Number of most recent distinct polling ticks used for availability and history.
HISTORY_WINDOW = 20

NODE_UPDATE_COLUMNS = ("name", "hostname", "port", "ssl", "cache")

T = TypeVar("T")


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class NodeMonitorRepository:
    """Encapsulates storage of nodes and their polling history.

    All writes go through `StorageBackend.transaction` so a batch either
    commits completely or not at all.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend

    async def init(self) -> None:
        """Create the schema if required."""
        statements = []
        for table in TABLES:
            statements.extend(self._backend.prepare_create_table(table))
        await self._backend.transaction(statements)

    async def nodes(self) -> list[NetworkNode]:
        """Return every stored node ordered by name."""
        stmt = select(nodes_table).order_by(nodes_table.c.name, nodes_table.c.id)
        result = await self._backend.query(stmt)
        return [self._node_from_row(row) for row in result.rows]

    async def save_nodes(self, nodes: Iterable[NetworkNode]) -> None:
        """Upsert nodes by id. Repeating the call with the same list is a no-op."""
        # A single upsert statement must not touch the same key twice.
        unique: dict[str, NetworkNode] = {}
        for node in nodes:
            unique.pop(node.id, None)
            unique[node.id] = node

        if not unique:
            return

        rows = [
            {
                "id": node.id,
                "name": node.name,
                "hostname": node.hostname,
                "port": node.port,
                "ssl": node.ssl,
                "cache": node.cache,
            }
            for node in unique.values()
        ]

        statements = [
            self._backend.prepare_multi_update(nodes_table, ["id"], NODE_UPDATE_COLUMNS, chunk)
            for chunk in _chunks(rows, BATCH_SIZE)
        ]
        await self._backend.transaction(statements)
        logger.debug("Saved %d node(s) in %d statement(s)", len(rows), len(statements))

    async def save_polling_events(self, events: Sequence[NodePollingEvent]) -> None:
        """Append a batch of polling events in one transaction."""
        if not events:
            return

        rows = [self._row_from_event(event) for event in events]
        statements = [
            self._backend.prepare_multi_insert(node_polling_table, chunk)
            for chunk in _chunks(rows, BATCH_SIZE)
        ]
        await self._backend.transaction(statements)
        logger.debug("Saved %d polling event(s) in %d statement(s)", len(rows), len(statements))

    async def clean_history(self, before: datetime) -> int:
        """Delete polling rows strictly older than `before`. Returns the number deleted."""
        stmt = delete(node_polling_table).where(node_polling_table.c.utc_timestamp < to_millis(before))
        result = await self._backend.query(stmt)
        return result.count

    async def delete_node(self, node_id: str) -> int:
        """Remove a node; its polling history goes with it through the cascade."""
        stmt = delete(nodes_table).where(nodes_table.c.id == node_id)
        result = await self._backend.query(stmt)
        return result.count

    async def max_timestamp(self) -> Optional[datetime]:
        """Return the most recent polling tick, or None when nothing was recorded."""
        stmt = select(func.max(node_polling_table.c.utc_timestamp).label("utc_timestamp"))
        result = await self._backend.query(stmt)
        if result.count != 1 or result.rows[0]["utc_timestamp"] is None:
            return None
        return from_millis(result.rows[0]["utc_timestamp"])

    async def events(self, timestamp: datetime) -> list[NodePollingEvent]:
        """Return all polling events recorded at exactly `timestamp`."""
        stmt = (
            select(node_polling_table)
            .where(node_polling_table.c.utc_timestamp == to_millis(timestamp))
            .order_by(node_polling_table.c.id)
        )
        result = await self._backend.query(stmt)
        return [self._event_from_row(row) for row in result.rows]

    async def node_availabilities(self) -> list[NodeAvailability]:
        """Percentage of synced samples per node over the last 20 polling ticks."""
        polling = node_polling_table
        last = self._window()
        synced = func.sum(case((polling.c.synced, 1), else_=0))
        availability = cast(100.0 * synced / func.count(), Float).label("availability")

        stmt = (
            select(polling.c.id, availability)
            .select_from(last.join(polling, polling.c.utc_timestamp == last.c.utc_timestamp))
            .group_by(polling.c.id)
            .order_by(polling.c.id)
        )
        result = await self._backend.query(stmt)
        return [
            NodeAvailability(id=row["id"], availability=float(row["availability"] or 0.0))
            for row in result.rows
        ]

    async def node_history(self) -> list[NodeStatusHistory]:
        """Sync state per node over the last 20 polling ticks, newest first within each node."""
        polling = node_polling_table
        last = self._window()
        stmt = (
            select(polling.c.id, polling.c.synced, polling.c.utc_timestamp)
            .select_from(last.join(polling, polling.c.utc_timestamp == last.c.utc_timestamp))
            .order_by(polling.c.id.asc(), polling.c.utc_timestamp.desc())
        )
        result = await self._backend.query(stmt)
        return [
            NodeStatusHistory(
                id=row["id"],
                synced=bool(row["synced"]),
                timestamp=from_millis(row["utc_timestamp"]),
            )
            for row in result.rows
        ]

    async def stats(self) -> list[NodeStats]:
        """Join nodes with availability, latest status and history.

        Nodes missing any of the three (for example never polled, or absent
        from the latest tick) are left out.
        """
        nodes = await self.nodes()
        availabilities = {item.id: item.availability for item in await self.node_availabilities()}

        latest = await self.max_timestamp()
        last_events = {event.id: event for event in await self.events(latest)} if latest else {}

        histories: dict[str, list[StatusHistory]] = {}
        for entry in await self.node_history():
            histories.setdefault(entry.id, []).append(
                StatusHistory(synced=entry.synced, timestamp=entry.timestamp)
            )

        results: list[NodeStats] = []
        for node in nodes:
            if node.id not in availabilities or node.id not in last_events or node.id not in histories:
                continue
            event = last_events[node.id]
            results.append(
                NodeStats(
                    **node.model_dump(),
                    availability=availabilities[node.id],
                    info=NodeStatus(**event.model_dump(exclude={"id"})),
                    history=histories[node.id],
                )
            )
        return results

    def _window(self):
        polling = node_polling_table
        return (
            select(polling.c.utc_timestamp)
            .group_by(polling.c.utc_timestamp)
            .order_by(polling.c.utc_timestamp.desc())
            .limit(HISTORY_WINDOW)
            .subquery("last")
        )

    @staticmethod
    def _node_from_row(row: Row) -> NetworkNode:
        return NetworkNode(
            id=row["id"],
            name=row["name"],
            hostname=row["hostname"],
            port=int(row["port"]),
            ssl=bool(row["ssl"]),
            cache=bool(row["cache"]),
        )

    @staticmethod
    def _row_from_event(event: NodePollingEvent) -> dict:
        return {
            "id": event.id,
            "utc_timestamp": to_millis(event.timestamp),
            "synced": event.synced,
            "fee_address": event.fee_address,
            "fee_amount": event.fee_amount,
            "height": event.height,
            "version": event.version,
            "connections_in": event.connections_in,
            "connections_out": event.connections_out,
            "difficulty": event.difficulty,
            "hashrate": event.hashrate,
            "transaction_pool_size": event.transaction_pool_size,
        }

    @staticmethod
    def _event_from_row(row: Row) -> NodePollingEvent:
        return NodePollingEvent(
            id=row["id"],
            timestamp=from_millis(row["utc_timestamp"]),
            synced=bool(row["synced"]),
            fee_address=row["fee_address"] or "",
            fee_amount=int(row["fee_amount"] or 0),
            height=int(row["height"] or 0),
            version=row["version"],
            connections_in=int(row["connections_in"] or 0),
            connections_out=int(row["connections_out"] or 0),
            difficulty=int(row["difficulty"] or 0),
            hashrate=int(row["hashrate"] or 0),
            transaction_pool_size=int(row["transaction_pool_size"] or 0),
        )
