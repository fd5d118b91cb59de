from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Iterable, List

import httpx

from server.src.core.logging import get_logger

from ..errors import FetchError
from ..schemas import NetworkNode

logger = get_logger(__name__)

DEFAULT_PORT = 11898

_TRUTHY = {"1", "true", "yes", "on", "y", "t"}


def generate_node_id(hostname: str, port: int, ssl: bool) -> str:
    """Return the stable identifier of a node.

    The id is the hex HMAC-SHA256 keyed with the compact JSON form of the
    connection parameters, so it only changes when hostname, port or the ssl
    flag changes.
    """
    key = json.dumps(
        {"hostname": hostname, "port": port, "ssl": 1 if ssl else 0},
        separators=(",", ":"),
    )
    return hmac.new(key.encode("utf-8"), digestmod=hashlib.sha256).hexdigest()


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in _TRUTHY


def sanitize_name(value: Any) -> str:
    return str(value if value is not None else "").replace("'", "").strip()


def normalize_entry(entry: Any) -> NetworkNode:
    """Convert one directory entry into a NetworkNode with a fresh id."""
    if not isinstance(entry, dict):
        raise FetchError(f"Node directory entry is not an object: {entry!r}")

    hostname = str(entry.get("url") or "").strip()
    if not hostname:
        raise FetchError(f"Node directory entry has no url: {entry!r}")

    raw_port = entry.get("port", DEFAULT_PORT)
    try:
        port = int(raw_port)
    except (TypeError, ValueError) as exc:
        raise FetchError(f"Node directory entry has an invalid port: {raw_port!r}") from exc

    ssl = coerce_bool(entry.get("ssl"))
    return NetworkNode(
        id=generate_node_id(hostname, port, ssl),
        name=sanitize_name(entry.get("name") or hostname),
        hostname=hostname,
        port=port,
        ssl=ssl,
        cache=coerce_bool(entry.get("cache")),
    )


def unique_nodes(nodes: Iterable[NetworkNode]) -> List[NetworkNode]:
    """Collapse nodes sharing an id; the last entry wins and takes the last position."""
    unique: dict[str, NetworkNode] = {}
    for node in nodes:
        unique.pop(node.id, None)
        unique[node.id] = node
    return list(unique.values())


def parse_node_list(payload: Any) -> List[NetworkNode]:
    if not isinstance(payload, dict) or "nodes" not in payload:
        raise FetchError("Node directory response has no 'nodes' field")

    entries = payload["nodes"]
    if not isinstance(entries, list):
        raise FetchError("Node directory 'nodes' field is not a list")

    return unique_nodes(normalize_entry(entry) for entry in entries)


async def fetch_node_list(client: httpx.AsyncClient, url: str, *, timeout: float = 10.0) -> List[NetworkNode]:
    """Download and normalize the public node directory.

    Raises FetchError on transport errors, non-2xx responses, invalid JSON or
    a payload without `nodes`. A single malformed entry (no url, bad port)
    fails the whole refresh; nothing partial is returned, so the caller keeps
    its previous list. Entries repeating the same url, port and ssl flag are
    collapsed to the last one.
    """
    try:
        response = await client.get(url, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise FetchError(f"Node directory returned HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"Node directory request failed: {exc!s}") from exc

    try:
        payload = response.json()
    except ValueError as exc:
        raise FetchError("Node directory response was not valid JSON") from exc

    nodes = parse_node_list(payload)
    logger.debug("Fetched %d node(s) from %s", len(nodes), url)
    return nodes
