from datetime import timedelta
from pathlib import Path

import pytest

from preview_agent.db.store import ProjectRegistry
from preview_agent.errors import RegistryError
from preview_agent.models.project import AccessLogEntry, ProjectStatus
from tests.support.agent_helpers import AgentTestClock


@pytest.mark.asyncio
async def test_upsert_access_creates_running_project(tmp_path: Path) -> None:
    clock = AgentTestClock()
    async with ProjectRegistry(tmp_path / "agent.sqlite", clock=clock) as registry:
        await registry.upsert_access("alpha")

        record = await registry.get("alpha")
        assert record is not None
        assert record.status is ProjectStatus.RUNNING
        assert record.last_access_at == clock.current


@pytest.mark.asyncio
async def test_upsert_access_revives_stopped_but_keeps_starting(tmp_path: Path) -> None:
    clock = AgentTestClock()
    async with ProjectRegistry(tmp_path / "agent.sqlite", clock=clock) as registry:
        await registry.set_status("alpha", ProjectStatus.STOPPED)
        await registry.set_status("beta", ProjectStatus.STARTING)
        clock.advance(minutes=5)

        await registry.upsert_access("alpha")
        await registry.upsert_access("beta")

        alpha = await registry.get("alpha")
        assert alpha is not None
        assert alpha.status is ProjectStatus.RUNNING
        assert alpha.last_access_at == clock.current
        assert await registry.get_status("beta") is ProjectStatus.STARTING


@pytest.mark.asyncio
async def test_set_status_keeps_last_access(tmp_path: Path) -> None:
    clock = AgentTestClock()
    async with ProjectRegistry(tmp_path / "agent.sqlite", clock=clock) as registry:
        await registry.upsert_access("alpha")
        accessed_at = clock.current
        clock.advance(minutes=10)

        await registry.set_status("alpha", ProjectStatus.STOPPED)

        record = await registry.get("alpha")
        assert record is not None
        assert record.status is ProjectStatus.STOPPED
        assert record.last_access_at == accessed_at


@pytest.mark.asyncio
async def test_claim_starting_succeeds_once(tmp_path: Path) -> None:
    async with ProjectRegistry(tmp_path / "agent.sqlite") as registry:
        assert await registry.claim_starting("alpha") is True
        assert await registry.claim_starting("alpha") is False

        await registry.set_status("alpha", ProjectStatus.STOPPED)
        assert await registry.claim_starting("alpha") is True


@pytest.mark.asyncio
async def test_reset_stale_starting(tmp_path: Path) -> None:
    async with ProjectRegistry(tmp_path / "agent.sqlite") as registry:
        await registry.claim_starting("alpha")
        await registry.upsert_access("beta")

        assert await registry.reset_stale_starting() == 1
        assert await registry.get_status("alpha") is ProjectStatus.STOPPED
        assert await registry.get_status("beta") is ProjectStatus.RUNNING


@pytest.mark.asyncio
async def test_idle_since_returns_only_idle_running_projects(tmp_path: Path) -> None:
    clock = AgentTestClock()
    async with ProjectRegistry(tmp_path / "agent.sqlite", clock=clock) as registry:
        await registry.upsert_access("old")
        await registry.upsert_access("old-stopped")
        await registry.set_status("old-stopped", ProjectStatus.STOPPED)
        clock.advance(minutes=40)
        await registry.upsert_access("fresh")

        idle = await registry.idle_since(timedelta(minutes=30))

        assert [record.name for record in idle] == ["old"]


@pytest.mark.asyncio
async def test_access_log_append_list_and_prune(tmp_path: Path) -> None:
    clock = AgentTestClock()
    async with ProjectRegistry(tmp_path / "agent.sqlite", clock=clock) as registry:
        await registry.append_access_log(
            AccessLogEntry(
                project="alpha",
                timestamp=clock.current - timedelta(days=40),
                client_ip="10.0.0.1",
                path="/old",
            )
        )
        await registry.append_access_log(
            AccessLogEntry(
                project="alpha",
                timestamp=clock.current,
                client_ip="10.0.0.2",
                user_agent="curl/8",
                path="/new",
            )
        )

        logs = await registry.recent_access_logs("alpha")
        assert [entry.path for entry in logs] == ["/new", "/old"]
        assert logs[0].user_agent == "curl/8"
        assert logs[0].id is not None

        assert await registry.prune_logs_older_than(30) == 1
        remaining = await registry.recent_access_logs("alpha")
        assert [entry.path for entry in remaining] == ["/new"]


@pytest.mark.asyncio
async def test_state_survives_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "agent.sqlite"
    async with ProjectRegistry(db_path) as registry:
        await registry.upsert_access("alpha")

    async with ProjectRegistry(db_path) as registry:
        listed = await registry.list_projects()

    assert [record.name for record in listed] == ["alpha"]


@pytest.mark.asyncio
async def test_snapshot_to_writes_copy(tmp_path: Path) -> None:
    async with ProjectRegistry(tmp_path / "agent.sqlite") as registry:
        await registry.upsert_access("alpha")
        destination = await registry.snapshot_to(tmp_path / "backup" / "agent-db.sqlite")

    async with ProjectRegistry(destination) as copy:
        assert await copy.get_status("alpha") is ProjectStatus.RUNNING


@pytest.mark.asyncio
async def test_operations_fail_when_registry_is_closed(tmp_path: Path) -> None:
    registry = ProjectRegistry(tmp_path / "agent.sqlite")

    with pytest.raises(RegistryError, match="not open"):
        await registry.get("alpha")


@pytest.mark.asyncio
async def test_open_fails_for_unusable_path(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    registry = ProjectRegistry(blocker / "agent.sqlite")

    with pytest.raises(RegistryError):
        await registry.open()
