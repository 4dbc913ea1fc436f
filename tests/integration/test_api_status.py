import asyncio
from pathlib import Path

from fastapi.testclient import TestClient

from preview_agent.api.app import create_app
from preview_agent.db.store import ProjectRegistry
from preview_agent.models.project import ProjectStatus
from tests.support.agent_helpers import FakeControlAdapter, make_agent


def test_missing_project_parameter(tmp_path: Path) -> None:
    with TestClient(create_app(make_agent(tmp_path, ["alpha"]), run_loops=False)) as client:
        response = client.get("/__status__")

    assert response.status_code == 400
    assert response.json() == {"error": "Missing project parameter"}


def test_running_project_is_ready(tmp_path: Path) -> None:
    agent = make_agent(tmp_path, ["alpha"], control=FakeControlAdapter(running={"alpha"}))

    with TestClient(create_app(agent, run_loops=False)) as client:
        response = client.get("/__status__", params={"project": "alpha"})

    assert response.status_code == 200
    assert response.json() == {"name": "alpha", "status": "running", "ready": True}


def test_stopped_project_is_not_ready(tmp_path: Path) -> None:
    agent = make_agent(tmp_path, ["alpha"])

    with TestClient(create_app(agent, run_loops=False)) as client:
        response = client.get("/__status__", params={"project": "alpha"})

    assert response.json() == {"name": "alpha", "status": "stopped", "ready": False}


def test_unknown_project_is_not_found(tmp_path: Path) -> None:
    with TestClient(create_app(make_agent(tmp_path, ["alpha"]), run_loops=False)) as client:
        response = client.get("/__status__", params={"project": "ghost"})

    assert response.status_code == 404


def test_registry_status_used_when_describe_fails(tmp_path: Path) -> None:
    class _BlindControl(FakeControlAdapter):
        async def describe(self, name: str) -> None:
            return None

    agent = make_agent(tmp_path, ["alpha"], control=_BlindControl())

    async def seed() -> None:
        async with ProjectRegistry(agent.config.db_path) as registry:
            await registry.set_status("alpha", ProjectStatus.RUNNING)

    asyncio.run(seed())

    with TestClient(create_app(agent, run_loops=False)) as client:
        response = client.get("/__status__", params={"project": "alpha"})

    assert response.json() == {"name": "alpha", "status": "running", "ready": False}
