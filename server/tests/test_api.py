from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from server.src import database
from server.src.config import Settings
from server.src.core.app import create_app
from server.src.repositories.node_monitor import NodeMonitorRepository

from factories import make_event, make_node, tick


async def _seed() -> tuple:
    await database.init_database()
    repository = NodeMonitorRepository(database.get_backend())
    alpha = make_node("Alpha")
    beta = make_node("Beta")
    idle = make_node("Idle")
    await repository.save_nodes([alpha, beta, idle])
    for index in range(4):
        await repository.save_polling_events(
            [
                make_event(alpha, tick(index), synced=True, height=100 + index),
                make_event(beta, tick(index), synced=index % 2 == 0, height=50),
            ]
        )
    return alpha, beta, idle


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.asyncio
async def test_list_nodes_returns_stored_nodes() -> None:
    app = create_app(Settings(), start_collector=False)
    alpha, beta, idle = await _seed()

    async with _client(app) as client:
        response = await client.get("/api/nodes")

    assert response.status_code == 200
    body = response.json()
    assert [item["name"] for item in body] == ["Alpha", "Beta", "Idle"]
    assert body[0]["id"] == alpha.id
    assert body[0]["hostname"] == "alpha.example"


@pytest.mark.asyncio
async def test_live_nodes_empty_without_collector() -> None:
    app = create_app(Settings(), start_collector=False)

    async with _client(app) as client:
        response = await client.get("/api/nodes/live")

    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_stats_exclude_unpolled_nodes() -> None:
    app = create_app(Settings(), start_collector=False)
    alpha, beta, idle = await _seed()

    async with _client(app) as client:
        response = await client.get("/api/stats")

    assert response.status_code == 200
    body = response.json()
    assert [item["id"] for item in body] == [alpha.id, beta.id]

    alpha_stats, beta_stats = body
    assert alpha_stats["availability"] == pytest.approx(100.0)
    assert alpha_stats["info"]["height"] == 103
    assert len(alpha_stats["history"]) == 4
    assert beta_stats["availability"] == pytest.approx(50.0)
    assert [item["synced"] for item in beta_stats["history"]] == [False, True, False, True]


@pytest.mark.asyncio
async def test_availability_endpoint() -> None:
    app = create_app(Settings(), start_collector=False)
    alpha, beta, _ = await _seed()

    async with _client(app) as client:
        response = await client.get("/api/stats/availability")

    assert response.status_code == 200
    values = {item["id"]: item["availability"] for item in response.json()}
    assert values == {alpha.id: pytest.approx(100.0), beta.id: pytest.approx(50.0)}


@pytest.mark.asyncio
async def test_latest_polling_returns_last_tick() -> None:
    app = create_app(Settings(), start_collector=False)
    alpha, beta, _ = await _seed()

    async with _client(app) as client:
        response = await client.get("/api/polling/latest")

    assert response.status_code == 200
    body = response.json()
    assert {item["id"] for item in body} == {alpha.id, beta.id}
    assert all(item["height"] in (103, 50) for item in body)


@pytest.mark.asyncio
async def test_latest_polling_empty_database() -> None:
    app = create_app(Settings(), start_collector=False)
    await database.init_database()

    async with _client(app) as client:
        response = await client.get("/api/polling/latest")

    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_node_history_endpoint() -> None:
    app = create_app(Settings(), start_collector=False)
    alpha, _, idle = await _seed()

    async with _client(app) as client:
        found = await client.get(f"/api/nodes/{alpha.id}/history")
        missing = await client.get(f"/api/nodes/{idle.id}/history")

    assert found.status_code == 200
    assert len(found.json()) == 4
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_logger_levels_can_be_changed() -> None:
    app = create_app(Settings(), start_collector=False)

    async with _client(app) as client:
        updated = await client.post(
            "/api/admin/loggers/", json={"name": "services.collector", "level": "debug"}
        )
        rejected = await client.post(
            "/api/admin/loggers/", json={"name": "services.collector", "level": "chatty"}
        )
        listed = await client.get("/api/admin/loggers/")

    assert updated.status_code == 200
    assert updated.json() == {"name": "services.collector", "level": "DEBUG"}
    assert rejected.status_code == 400
    names = [item["name"] for item in listed.json()]
    assert names[0] == "root"
    assert "services.collector" in names
