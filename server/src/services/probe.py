from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict

import httpx

from server.src.core.logging import get_logger

from ..errors import ProbeError
from ..schemas import NetworkNode, NodePollingEvent

logger = get_logger(__name__)

PROBE_TIMEOUT = 5.0


def node_base_url(node: NetworkNode) -> str:
    scheme = "https" if node.ssl else "http"
    return f"{scheme}://{node.hostname}:{node.port}"


def _to_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        raise ProbeError(f"Expected a number, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ProbeError(f"Expected a number, got {value!r}") from exc


def _format_version(version: Any) -> str:
    if isinstance(version, dict):
        return "{}.{}.{}".format(
            version.get("major", 0), version.get("minor", 0), version.get("patch", 0)
        )
    if version is None:
        raise ProbeError("Info response has no version")
    return str(version)


def _is_current_shape(info: Dict[str, Any]) -> bool:
    version = info.get("version")
    if not isinstance(version, dict):
        return False
    try:
        major = int(version.get("major", 0))
    except (TypeError, ValueError):
        return False
    return major >= 1 and not info.get("isCacheApi", False)


def parse_info(info: Any) -> Dict[str, Any]:
    """Normalize the two historical `info` response shapes into one record.

    Daemons with a 1.x version object use camelCase counters; older daemons
    and cache APIs report `incoming_connections_count`,
    `outgoing_connections_count` and `tx_pool_size`.
    """
    if not isinstance(info, dict):
        raise ProbeError("Info response was not a JSON object")

    if _is_current_shape(info):
        connections_in = info.get("incomingConnections")
        connections_out = info.get("outgoingConnections")
        pool_size = info.get("transactionsPoolSize")
    else:
        connections_in = info.get("incoming_connections_count")
        connections_out = info.get("outgoing_connections_count")
        pool_size = info.get("tx_pool_size")

    return {
        "height": _to_int(info.get("height")),
        "version": _format_version(info.get("version")),
        "synced": bool(info.get("synced", False)),
        "difficulty": _to_int(info.get("difficulty")),
        "hashrate": _to_int(info.get("hashrate")),
        "connections_in": _to_int(connections_in),
        "connections_out": _to_int(connections_out),
        "transaction_pool_size": _to_int(pool_size),
    }


def parse_fee(fee: Any) -> Dict[str, Any]:
    if not isinstance(fee, dict):
        raise ProbeError("Fee response was not a JSON object")
    return {
        "fee_address": str(fee.get("address") or ""),
        "fee_amount": _to_int(fee.get("amount") or 0),
    }


async def _call(client: httpx.AsyncClient, url: str, timeout: float) -> Any:
    try:
        response = await asyncio.wait_for(client.get(url, timeout=timeout), timeout=timeout)
        response.raise_for_status()
        return response.json()
    except asyncio.TimeoutError as exc:
        raise ProbeError(f"{url}: timed out after {timeout:.1f}s") from exc
    except httpx.HTTPError as exc:
        raise ProbeError(f"{url}: {exc.__class__.__name__}: {exc!s}") from exc
    except ValueError as exc:
        raise ProbeError(f"{url}: response was not valid JSON") from exc


async def probe_node(
    client: httpx.AsyncClient,
    node: NetworkNode,
    timestamp: datetime,
    *,
    timeout: float = PROBE_TIMEOUT,
) -> NodePollingEvent:
    """Query a node's `info` then `fee` endpoints and return one polling event.

    Never raises: any failure yields the offline sentinel for the node so a
    fan-out over many nodes always produces one record per node.
    """
    base_url = node_base_url(node)
    try:
        info = parse_info(await _call(client, f"{base_url}/info", timeout))
        fee = parse_fee(await _call(client, f"{base_url}/fee", timeout))
    except ProbeError as exc:
        logger.debug("Node %s (%s) is offline: %s", node.name, base_url, exc)
        return NodePollingEvent.offline(node.id, timestamp)
    except Exception:  # noqa: BLE001
        logger.debug("Unexpected failure probing node %s (%s)", node.name, base_url, exc_info=True)
        return NodePollingEvent.offline(node.id, timestamp)

    return NodePollingEvent(id=node.id, timestamp=timestamp, **info, **fee)
