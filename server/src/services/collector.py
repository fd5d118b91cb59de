from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple

import httpx

from server.src.core.logging import get_logger

from ..config import Settings
from ..core.time import utc_now
from ..errors import CollectorError, FetchError, PersistenceError
from ..repositories.node_monitor import NodeMonitorRepository
from ..schemas import NetworkNode, NodePollingEvent
from .directory import fetch_node_list, unique_nodes
from .periodic import PeriodicTask
from .probe import probe_node

logger = get_logger(__name__)

NodeListFetcher = Callable[[httpx.AsyncClient, str], Awaitable[List[NetworkNode]]]
NodeProber = Callable[[httpx.AsyncClient, NetworkNode, datetime], Awaitable[NodePollingEvent]]


class CollectorListener(Protocol):
    """Notifications emitted by the collector."""

    def on_info(self, message: str) -> None: ...

    def on_error(self, error: CollectorError) -> None: ...

    def on_update(self, nodes: Sequence[NetworkNode]) -> None: ...

    def on_polling(self, events: Sequence[NodePollingEvent]) -> None: ...


class LoggingListener:
    """Default listener that reports collector activity through logging."""

    def on_info(self, message: str) -> None:
        logger.info(message)

    def on_error(self, error: CollectorError) -> None:
        logger.error("%s", error)

    def on_update(self, nodes: Sequence[NetworkNode]) -> None:
        logger.info("Updated node list with %d nodes", len(nodes))

    def on_polling(self, events: Sequence[NodePollingEvent]) -> None:
        logger.info("Saved polling events for %d nodes", len(events))


class Collector:
    """Keeps the public node list fresh and records periodic health samples.

    Two independent timers drive the work:

    * the update timer downloads the node directory, replaces the in-memory
      node list, upserts it and prunes polling history older than the
      retention window;
    * the polling timer probes every node of a snapshot of that list
      concurrently and stores the batch in a single transaction.

    The polling timer starts paused and is released, with an immediate first
    cycle, once the first update cycle has completed. Failures in either
    workflow are reported to the listener and never stop the collector; a
    failed cycle is dropped, not retried.
    """

    def __init__(
        self,
        settings: Settings,
        repository: NodeMonitorRepository,
        *,
        client: Optional[httpx.AsyncClient] = None,
        listener: Optional[CollectorListener] = None,
        fetch_nodes: Optional[NodeListFetcher] = None,
        probe: Optional[NodeProber] = None,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._client = client
        self._owns_client = client is None
        self._listener: CollectorListener = listener or LoggingListener()
        self._fetch_nodes = fetch_nodes
        self._probe = probe
        self._nodes: Tuple[NetworkNode, ...] = ()
        self._bootstrapped = False
        self._close_task: Optional[asyncio.Task] = None

        self._update_timer = PeriodicTask("node-list-update", settings.update_interval, self._update_cycle)
        self._polling_timer = PeriodicTask("node-polling", settings.polling_interval, self._polling_cycle)

    @property
    def nodes(self) -> Tuple[NetworkNode, ...]:
        """Current node list. The tuple is replaced, never mutated."""
        return self._nodes

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def update_timer(self) -> PeriodicTask:
        return self._update_timer

    @property
    def polling_timer(self) -> PeriodicTask:
        return self._polling_timer

    async def start(self) -> None:
        """Initialize storage and start the update timer with an immediate cycle."""
        await self._repository.init()

        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)

        self._update_timer.paused = False
        self._update_timer.start()
        self._polling_timer.start()
        self._update_timer.tick()
        logger.info(
            "Collector started (update every %ss, polling every %ss, history %s day(s))",
            self._settings.update_interval,
            self._settings.polling_interval,
            self._settings.history_days,
        )

    async def stop(self) -> None:
        """Disable both timers. Cycles already running finish on their own."""
        await self._polling_timer.stop()
        await self._update_timer.stop()

        if self._owns_client and self._client is not None:
            client = self._client
            self._client = None
            if self._update_timer.busy or self._polling_timer.busy:
                # In-flight cycles still hold the client; close it once they end.
                self._close_task = asyncio.create_task(
                    self._close_client_after(client), name="collector-client-close"
                )
                self._close_task.add_done_callback(self._log_close_failure)
            else:
                await client.aclose()
        logger.info("Collector stopped")

    async def join(self) -> None:
        """Wait for in-flight cycles and, after stop(), the deferred client close."""
        await self._join_cycles()
        if self._close_task is not None:
            close_task, self._close_task = self._close_task, None
            await close_task

    async def _join_cycles(self) -> None:
        await self._update_timer.join()
        await self._polling_timer.join()

    async def _close_client_after(self, client: httpx.AsyncClient) -> None:
        await self._join_cycles()
        await client.aclose()

    @staticmethod
    def _log_close_failure(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Could not close the HTTP client", exc_info=task.exception())

    async def _update_cycle(self) -> None:
        try:
            await self._update_nodes()
            await self._clean_history()
        finally:
            if not self._bootstrapped:
                self._bootstrapped = True
                self._polling_timer.paused = False
                self._polling_timer.tick()

    async def _update_nodes(self) -> None:
        client = self._ensure_client()
        try:
            nodes = await self._fetch_directory(client)
        except Exception as exc:  # noqa: BLE001
            self._listener.on_error(FetchError(f"Could not update the public node list: {exc!s}"))
            return

        # One probe per id per tick; duplicates would collide in node_polling.
        self._nodes = tuple(unique_nodes(nodes))

        try:
            await self._repository.save_nodes(self._nodes)
        except Exception as exc:  # noqa: BLE001
            self._listener.on_error(
                PersistenceError(f"Could not save {len(self._nodes)} node(s) in the database: {exc!s}")
            )
            return

        self._listener.on_update(self._nodes)

    async def _clean_history(self) -> None:
        cutoff = utc_now() - timedelta(seconds=self._settings.history_seconds)
        try:
            deleted = await self._repository.clean_history(cutoff)
        except Exception as exc:  # noqa: BLE001
            self._listener.on_error(
                PersistenceError(f"Could not clear old history from before {cutoff.isoformat()}: {exc!s}")
            )
            return

        logger.debug("Deleted %d polling row(s) older than %s", deleted, cutoff.isoformat())
        self._listener.on_info(f"Cleaned old polling history before: {cutoff.isoformat()}")

    async def _polling_cycle(self) -> None:
        client = self._ensure_client()
        snapshot = self._nodes
        timestamp = utc_now()

        events = list(
            await asyncio.gather(*(self._probe_one(client, node, timestamp) for node in snapshot))
        )

        try:
            await self._repository.save_polling_events(events)
        except Exception as exc:  # noqa: BLE001
            self._listener.on_error(
                PersistenceError(
                    f"Could not save polling event for {len(snapshot)} node(s) in the database: {exc!s}"
                )
            )
            return

        self._listener.on_polling(events)

    async def _probe_one(
        self, client: httpx.AsyncClient, node: NetworkNode, timestamp: datetime
    ) -> NodePollingEvent:
        if self._probe is None:
            return await probe_node(client, node, timestamp, timeout=self._settings.probe_timeout)
        try:
            return await self._probe(client, node, timestamp)
        except Exception:  # noqa: BLE001
            logger.debug("Probe for node %s raised; recording it offline", node.name, exc_info=True)
            return NodePollingEvent.offline(node.id, timestamp)

    async def _fetch_directory(self, client: httpx.AsyncClient) -> List[NetworkNode]:
        if self._fetch_nodes is not None:
            return await self._fetch_nodes(client, self._settings.node_list_url)
        return await fetch_node_list(
            client, self._settings.node_list_url, timeout=self._settings.directory_timeout
        )

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Collector is not running")
        return self._client
